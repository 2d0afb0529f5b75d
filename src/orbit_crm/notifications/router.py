"""Notifications API router."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from orbit_crm.common.security import UserContext, require_api_key, require_user

router = APIRouter(prefix="/api/notifications")


class NotificationResponse(BaseModel):
    id: str
    type: str
    title: str
    message: str
    priority: str
    related_id: Optional[str]
    related_type: Optional[str]
    action_url: Optional[str]
    read_at: Optional[datetime]
    created_at: datetime

    model_config = {"from_attributes": True}


class PreferencesBody(BaseModel):
    notify_invoice_overdue: Optional[bool] = None
    notify_task_due: Optional[bool] = None
    notify_task_overdue: Optional[bool] = None
    notify_follow_up: Optional[bool] = None
    enable_email: Optional[bool] = None


class PreferencesResponse(BaseModel):
    notify_invoice_overdue: bool
    notify_task_due: bool
    notify_task_overdue: bool
    notify_follow_up: bool
    enable_email: bool

    model_config = {"from_attributes": True}


def _get_service():
    from orbit_crm.deps import get_notification_service
    return get_notification_service()


def _get_db():
    from orbit_crm.deps import get_db
    return get_db()


@router.post("/check-triggers")
async def check_triggers(_=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        results = await svc.check_triggers(session)
    return {
        "success": True,
        "message": "Notification check complete",
        "results": results.to_dict(),
    }


@router.get("", response_model=list[NotificationResponse])
async def list_notifications(
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    user: UserContext = Depends(require_user),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        items = await svc.list_notifications(session, user.user_id, unread_only=unread_only, limit=limit)
        return [NotificationResponse.model_validate(n) for n in items]


@router.post("/read-all")
async def mark_all_read(user: UserContext = Depends(require_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        count = await svc.mark_all_read(session, user.user_id)
    return {"marked": count}


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(notification_id: str, user: UserContext = Depends(require_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        notification = await svc.mark_read(session, user.user_id, notification_id)
        return NotificationResponse.model_validate(notification)


@router.get("/preferences", response_model=PreferencesResponse)
async def get_preferences(user: UserContext = Depends(require_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        prefs = await svc.get_preferences(session, user.user_id)
        return PreferencesResponse.model_validate(prefs)


@router.put("/preferences", response_model=PreferencesResponse)
async def update_preferences(body: PreferencesBody, user: UserContext = Depends(require_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        prefs = await svc.update_preferences(session, user.user_id, **body.model_dump())
        return PreferencesResponse.model_validate(prefs)
