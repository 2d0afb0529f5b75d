"""Activity log API router."""

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from orbit_crm.common.security import UserContext, require_tenant_user

router = APIRouter()


class ActivityResponse(BaseModel):
    id: str
    user_id: Optional[str]
    event_type: str
    entity_type: str
    entity_id: str
    entity_name: Optional[str]
    description: Optional[str]
    metadata: dict[str, Any]
    created_at: datetime


def _get_service():
    from orbit_crm.deps import get_activity_service
    return get_activity_service()


def _get_db():
    from orbit_crm.deps import get_db
    return get_db()


@router.get("/api/activity", response_model=list[ActivityResponse])
async def list_activity(
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: UserContext = Depends(require_tenant_user),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        entries = await svc.list_activity(
            session, user.tenant_id,
            entity_type=entity_type, entity_id=entity_id,
            limit=limit, offset=offset,
        )
        return [
            ActivityResponse(
                id=e.id, user_id=e.user_id, event_type=e.event_type,
                entity_type=e.entity_type, entity_id=e.entity_id,
                entity_name=e.entity_name, description=e.description,
                metadata=e.metadata_, created_at=e.created_at,
            )
            for e in entries
        ]
