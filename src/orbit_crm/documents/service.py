"""Document vault: metadata rows plus file bytes on local storage."""

import logging
import re
from pathlib import Path
from urllib.parse import quote

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from orbit_crm.common.config import OrbitSettings
from orbit_crm.common.exceptions import NotFoundError, ValidationError
from orbit_crm.contacts.models import ContactModel
from orbit_crm.documents.models import DocumentModel
from orbit_crm.projects.models import ProjectModel

logger = logging.getLogger(__name__)

VISIBILITIES = ("internal", "shared")
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def _safe_filename(name: str) -> str:
    cleaned = _UNSAFE_CHARS.sub("_", Path(name).name).strip("._")
    return cleaned or "file"


def content_disposition(name: str) -> str:
    """Attachment header with an ASCII fallback and the RFC 5987 UTF-8 name."""
    return f"attachment; filename=\"{_safe_filename(name)}\"; filename*=UTF-8''{quote(name, safe='')}"


class DocumentService:
    """Document CRUD and storage."""

    def __init__(self, settings: OrbitSettings):
        self.settings = settings
        self.root = Path(settings.storage_dir)

    # ── Storage ──

    def _write(self, storage_path: str, content: bytes) -> None:
        target = self.root / storage_path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)

    def read_content(self, document: DocumentModel) -> bytes:
        if not document.storage_path:
            raise NotFoundError("Document file not found")
        target = self.root / document.storage_path
        if not target.is_file():
            raise NotFoundError("Document file not found")
        return target.read_bytes()

    def _remove(self, storage_path: str | None) -> None:
        if not storage_path:
            return
        target = self.root / storage_path
        try:
            target.unlink(missing_ok=True)
        except OSError:
            logger.exception("Failed to remove stored file %s", storage_path)

    async def _check_links(
        self, session: AsyncSession, tenant_id: str, project_id: str | None, contact_id: str | None
    ) -> None:
        links = ((ProjectModel, project_id, "Project"), (ContactModel, contact_id, "Contact"))
        for model, entity_id, label in links:
            if entity_id:
                obj = await session.get(model, entity_id)
                if obj is None or obj.tenant_id != tenant_id:
                    raise NotFoundError(f"{label} not found")

    # ── CRUD ──

    async def upload_document(
        self,
        session: AsyncSession,
        tenant_id: str,
        name: str,
        content: bytes,
        mime_type: str | None = None,
        project_id: str | None = None,
        contact_id: str | None = None,
        visibility: str = "internal",
        content_summary: str | None = None,
    ) -> DocumentModel:
        if visibility not in VISIBILITIES:
            raise ValidationError(f"Unknown visibility: {visibility}")
        await self._check_links(session, tenant_id, project_id, contact_id)
        doc = DocumentModel(
            tenant_id=tenant_id,
            name=name,
            mime_type=mime_type or "application/octet-stream",
            size_bytes=len(content),
            project_id=project_id,
            contact_id=contact_id,
            visibility=visibility,
            content_summary=content_summary,
        )
        session.add(doc)
        await session.flush()

        doc.storage_path = f"{tenant_id}/{doc.id}/{_safe_filename(name)}"
        self._write(doc.storage_path, content)
        await session.flush()
        return doc

    async def get_document(
        self, session: AsyncSession, tenant_id: str, document_id: str
    ) -> DocumentModel:
        doc = await session.get(DocumentModel, document_id)
        if doc is None or doc.tenant_id != tenant_id:
            raise NotFoundError("Document not found")
        return doc

    async def list_documents(
        self,
        session: AsyncSession,
        tenant_id: str,
        project_id: str | None = None,
        contact_id: str | None = None,
        visibility: str | None = None,
    ) -> list[DocumentModel]:
        query = select(DocumentModel).where(DocumentModel.tenant_id == tenant_id)
        if project_id:
            query = query.where(DocumentModel.project_id == project_id)
        if contact_id:
            query = query.where(DocumentModel.contact_id == contact_id)
        if visibility:
            query = query.where(DocumentModel.visibility == visibility)
        result = await session.execute(query.order_by(DocumentModel.created_at.desc()))
        return list(result.scalars().all())

    async def update_document(
        self, session: AsyncSession, tenant_id: str, document_id: str, **updates
    ) -> DocumentModel:
        doc = await self.get_document(session, tenant_id, document_id)
        if updates.get("visibility") and updates["visibility"] not in VISIBILITIES:
            raise ValidationError(f"Unknown visibility: {updates['visibility']}")
        await self._check_links(session, tenant_id, updates.get("project_id"), updates.get("contact_id"))
        for field in ("name", "visibility", "content_summary", "project_id", "contact_id"):
            if updates.get(field) is not None:
                setattr(doc, field, updates[field])
        await session.flush()
        return doc

    async def delete_document(
        self, session: AsyncSession, tenant_id: str, document_id: str
    ) -> None:
        doc = await self.get_document(session, tenant_id, document_id)
        await self.delete_rows(session, [doc])

    async def delete_rows(self, session: AsyncSession, documents: list[DocumentModel]) -> None:
        """Hard-delete documents and their stored files."""
        for doc in documents:
            self._remove(doc.storage_path)
            await session.delete(doc)
        await session.flush()

    async def search_documents(
        self,
        session: AsyncSession,
        tenant_id: str,
        query: str,
        visibilities: list[str],
        limit: int = 5,
    ) -> list[DocumentModel]:
        """Case-insensitive keyword search over document names and summaries."""
        terms = [t for t in query.split() if t]
        stmt = select(DocumentModel).where(
            DocumentModel.tenant_id == tenant_id,
            DocumentModel.visibility.in_(visibilities),
        )
        if terms:
            stmt = stmt.where(
                or_(*[
                    or_(
                        DocumentModel.name.ilike(f"%{term}%"),
                        DocumentModel.content_summary.ilike(f"%{term}%"),
                    )
                    for term in terms
                ])
            )
        result = await session.execute(
            stmt.order_by(DocumentModel.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())
