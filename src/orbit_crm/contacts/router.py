"""Contacts API router."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from orbit_crm.common.security import UserContext, require_tenant_user
from orbit_crm.contacts.export import export_contacts, parse_fields
from orbit_crm.contacts.schemas import (
    BulkArchiveRequest,
    ContactCreate,
    ContactListResponse,
    ContactResponse,
    ContactUpdate,
    DuplicateCheckResponse,
    GdprDeleteResponse,
    MergeRequest,
)

router = APIRouter(prefix="/api/contacts")


def _get_service():
    from orbit_crm.deps import get_contact_service
    return get_contact_service()


def _get_db():
    from orbit_crm.deps import get_db
    return get_db()


def _split(value: Optional[str]) -> list[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


@router.get("", response_model=ContactListResponse)
async def list_contacts(
    search: str = "",
    status: Optional[str] = Query(None, description="Comma-separated statuses"),
    tags: Optional[str] = Query(None, description="Comma-separated tags, all must match"),
    sort: str = "created_at",
    order: str = Query("desc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    user: UserContext = Depends(require_tenant_user),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        result = await svc.list_contacts(
            session, user.tenant_id,
            search=search, statuses=_split(status), tags=_split(tags),
            sort=sort, ascending=order == "asc",
            page=page, page_size=page_size,
        )
        return ContactListResponse(
            items=[ContactResponse.from_model(c) for c in result["items"]],
            total=result["total"], page=result["page"],
            page_size=result["page_size"], pages=result["pages"],
        )


@router.post("", response_model=ContactResponse, status_code=201)
async def create_contact(body: ContactCreate, user: UserContext = Depends(require_tenant_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        contact = await svc.create_contact(
            session, user.tenant_id, body.model_dump(), user_id=user.user_id
        )
        return ContactResponse.from_model(contact)


@router.get("/export")
async def export(
    format: str = "csv",
    fields: Optional[str] = None,
    user: UserContext = Depends(require_tenant_user),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        contacts = await svc.list_for_export(session, user.tenant_id)
        content, media_type, filename = export_contacts(contacts, format, parse_fields(fields))
    return Response(
        content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/duplicates", response_model=DuplicateCheckResponse)
async def check_duplicate(
    email: Optional[str] = None,
    phone: Optional[str] = None,
    exclude_id: Optional[str] = None,
    user: UserContext = Depends(require_tenant_user),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        match = await svc.check_duplicate(
            session, user.tenant_id, email=email, phone=phone, exclude_id=exclude_id
        )
        return DuplicateCheckResponse(
            duplicate=ContactResponse.from_model(match) if match else None
        )


@router.post("/bulk-archive")
async def bulk_archive(body: BulkArchiveRequest, user: UserContext = Depends(require_tenant_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        count = await svc.bulk_archive(session, user.tenant_id, body.ids)
        return {"archived": count}


@router.post("/merge", response_model=ContactResponse)
async def merge_contacts(body: MergeRequest, user: UserContext = Depends(require_tenant_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        contact = await svc.merge_contacts(
            session, user.tenant_id, body.primary_id, body.secondary_id,
            body.merged.model_dump(exclude_none=True), user_id=user.user_id,
        )
        return ContactResponse.from_model(contact)


@router.get("/{contact_id}", response_model=ContactResponse)
async def get_contact(contact_id: str, user: UserContext = Depends(require_tenant_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        contact = await svc.get_contact(session, user.tenant_id, contact_id)
        return ContactResponse.from_model(contact)


@router.patch("/{contact_id}", response_model=ContactResponse)
async def update_contact(
    contact_id: str, body: ContactUpdate, user: UserContext = Depends(require_tenant_user)
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        contact = await svc.update_contact(
            session, user.tenant_id, contact_id,
            body.model_dump(exclude_none=True), user_id=user.user_id,
        )
        return ContactResponse.from_model(contact)


@router.delete("/{contact_id}", response_model=ContactResponse)
async def archive_contact(contact_id: str, user: UserContext = Depends(require_tenant_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        contact = await svc.archive_contact(session, user.tenant_id, contact_id)
        return ContactResponse.from_model(contact)


@router.delete("/{contact_id}/gdpr-delete", response_model=GdprDeleteResponse)
async def gdpr_delete(contact_id: str, user: UserContext = Depends(require_tenant_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        certificate = await svc.gdpr_delete(session, user.tenant_id, contact_id, user.user_id)
    return GdprDeleteResponse(
        message="Contact and all related data permanently deleted (GDPR compliant)",
        deletion_certificate=certificate,
    )
