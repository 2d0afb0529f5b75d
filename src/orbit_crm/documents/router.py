"""Document vault API router."""

from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel

from orbit_crm.common.security import UserContext, require_tenant_user
from orbit_crm.documents.service import content_disposition

router = APIRouter(prefix="/api/documents")


class DocumentResponse(BaseModel):
    id: str
    name: str
    mime_type: str
    size_bytes: int
    visibility: str
    project_id: Optional[str]
    contact_id: Optional[str]
    content_summary: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}


class DocumentUpdate(BaseModel):
    name: Optional[str] = None
    visibility: Optional[Literal["internal", "shared"]] = None
    content_summary: Optional[str] = None


def _get_service():
    from orbit_crm.deps import get_document_service
    return get_document_service()


def _get_activity():
    from orbit_crm.deps import get_activity_service
    return get_activity_service()


def _get_db():
    from orbit_crm.deps import get_db
    return get_db()


@router.post("", response_model=DocumentResponse, status_code=201)
async def upload_document(
    file: UploadFile = File(...),
    visibility: str = Form("internal"),
    project_id: Optional[str] = Form(None),
    contact_id: Optional[str] = Form(None),
    content_summary: Optional[str] = Form(None),
    user: UserContext = Depends(require_tenant_user),
):
    svc = _get_service()
    db = _get_db()
    content = await file.read()
    async with db.get_session() as session:
        doc = await svc.upload_document(
            session, user.tenant_id,
            name=file.filename or "upload",
            content=content,
            mime_type=file.content_type,
            project_id=project_id,
            contact_id=contact_id,
            visibility=visibility,
            content_summary=content_summary,
        )
        await _get_activity().log_activity(
            session, user.tenant_id, "uploaded", "document", doc.id,
            user_id=user.user_id, entity_name=doc.name,
        )
        return DocumentResponse.model_validate(doc)


@router.get("", response_model=list[DocumentResponse])
async def list_documents(
    project_id: Optional[str] = None,
    contact_id: Optional[str] = None,
    visibility: Optional[str] = None,
    user: UserContext = Depends(require_tenant_user),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        docs = await svc.list_documents(
            session, user.tenant_id,
            project_id=project_id, contact_id=contact_id, visibility=visibility,
        )
        return [DocumentResponse.model_validate(d) for d in docs]


@router.patch("/{document_id}", response_model=DocumentResponse)
async def update_document(
    document_id: str, body: DocumentUpdate,
    user: UserContext = Depends(require_tenant_user),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        doc = await svc.update_document(
            session, user.tenant_id, document_id, **body.model_dump(exclude_none=True)
        )
        return DocumentResponse.model_validate(doc)


@router.get("/{document_id}/download")
async def download_document(
    document_id: str, user: UserContext = Depends(require_tenant_user)
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        doc = await svc.get_document(session, user.tenant_id, document_id)
        content = svc.read_content(doc)
        return Response(
            content,
            media_type=doc.mime_type,
            headers={"Content-Disposition": content_disposition(doc.name)},
        )


@router.delete("/{document_id}", status_code=204)
async def delete_document(
    document_id: str, user: UserContext = Depends(require_tenant_user)
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        await svc.delete_document(session, user.tenant_id, document_id)
