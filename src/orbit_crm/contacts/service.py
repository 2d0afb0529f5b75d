"""Contact service: CRUD, merge, archive and GDPR erasure."""

import logging
import math
import uuid
from typing import Any

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from orbit_crm.common.exceptions import ConflictError, NotFoundError, ValidationError
from orbit_crm.common.models import utcnow
from orbit_crm.contacts.models import ContactModel
from orbit_crm.contacts.validation import is_valid_email, is_valid_phone, normalize_email, to_e164
from orbit_crm.documents.models import DocumentModel
from orbit_crm.invoices.models import InvoiceLineItemModel, InvoiceModel
from orbit_crm.portal.models import PortalSessionModel
from orbit_crm.projects.models import MilestoneModel, ProjectModel, TaskModel

logger = logging.getLogger(__name__)

SORTABLE_COLUMNS = {"created_at", "updated_at", "first_name", "last_name", "email", "status", "company_name"}
_EDITABLE_FIELDS = ("first_name", "last_name", "is_company", "company_name", "email", "phone", "status", "tags")

GDPR_DATA_CATEGORIES = [
    "Personal information (name, email, phone, company)",
    "Contact tags and notes",
    "Portal access credentials",
    "Related invoices and payment records",
    "Related tasks and assignments",
    "Related projects",
    "Related documents",
    "All associated metadata",
]


class ContactService:
    """Tenant-scoped contact operations."""

    def __init__(self, activity_service=None, document_service=None):
        self.activity_service = activity_service
        self.document_service = document_service

    # ── Helpers ──

    @staticmethod
    def _clean(fields: dict[str, Any]) -> dict[str, Any]:
        """Validate and normalise email/phone in an incoming field dict."""
        cleaned = dict(fields)
        if cleaned.get("email") is not None:
            email = normalize_email(cleaned["email"])
            if not is_valid_email(email):
                raise ValidationError("Invalid email format")
            cleaned["email"] = email
        if cleaned.get("phone") is not None:
            phone = cleaned["phone"].strip()
            if phone and not is_valid_phone(phone):
                raise ValidationError("Invalid phone number")
            cleaned["phone"] = to_e164(phone) or None
        return cleaned

    async def _log(self, session, tenant_id, event_type, contact, user_id=None, **kwargs):
        if self.activity_service:
            await self.activity_service.log_activity(
                session, tenant_id, event_type, "contact", contact.id,
                user_id=user_id, entity_name=contact.name, **kwargs,
            )

    # ── Read ──

    async def get_contact(
        self, session: AsyncSession, tenant_id: str, contact_id: str
    ) -> ContactModel:
        contact = await session.get(ContactModel, contact_id)
        if contact is None or contact.tenant_id != tenant_id:
            raise NotFoundError("Contact not found")
        return contact

    async def list_contacts(
        self,
        session: AsyncSession,
        tenant_id: str,
        search: str = "",
        statuses: list[str] | None = None,
        tags: list[str] | None = None,
        sort: str = "created_at",
        ascending: bool = False,
        page: int = 1,
        page_size: int = 50,
    ) -> dict:
        """Paginated, filtered list of non-archived contacts."""
        if sort not in SORTABLE_COLUMNS:
            raise ValidationError(f"Cannot sort by {sort}")

        query = select(ContactModel).where(
            ContactModel.tenant_id == tenant_id,
            ContactModel.archived_at.is_(None),
        )
        if statuses:
            query = query.where(ContactModel.status.in_(statuses))
        if search:
            term = f"%{search}%"
            query = query.where(or_(
                ContactModel.first_name.ilike(term),
                ContactModel.last_name.ilike(term),
                ContactModel.email.ilike(term),
                ContactModel.company_name.ilike(term),
            ))

        column = getattr(ContactModel, sort)
        query = query.order_by(column.asc() if ascending else column.desc())
        offset = (page - 1) * page_size

        if tags:
            # Tag containment is filtered in Python to stay portable across JSON backends
            result = await session.execute(query)
            wanted = set(tags)
            matching = [c for c in result.scalars().all() if wanted.issubset(c.tags or [])]
            total = len(matching)
            items = matching[offset:offset + page_size]
        else:
            count_result = await session.execute(
                select(func.count()).select_from(query.order_by(None).subquery())
            )
            total = count_result.scalar() or 0
            result = await session.execute(query.offset(offset).limit(page_size))
            items = list(result.scalars().all())

        return {
            "items": items,
            "total": total,
            "page": page,
            "page_size": page_size,
            "pages": math.ceil(total / page_size) if total else 0,
        }

    async def check_duplicate(
        self,
        session: AsyncSession,
        tenant_id: str,
        email: str | None = None,
        phone: str | None = None,
        exclude_id: str | None = None,
    ) -> ContactModel | None:
        """Find an active contact sharing the email or phone number."""
        conditions = []
        if email:
            conditions.append(ContactModel.email == normalize_email(email))
        if phone:
            conditions.append(ContactModel.phone == to_e164(phone))
        if not conditions:
            return None

        query = select(ContactModel).where(
            ContactModel.tenant_id == tenant_id,
            ContactModel.archived_at.is_(None),
            or_(*conditions),
        )
        if exclude_id:
            query = query.where(ContactModel.id != exclude_id)
        result = await session.execute(query.limit(1))
        return result.scalar_one_or_none()

    async def list_for_export(self, session: AsyncSession, tenant_id: str) -> list[ContactModel]:
        result = await session.execute(
            select(ContactModel)
            .where(ContactModel.tenant_id == tenant_id, ContactModel.archived_at.is_(None))
            .order_by(ContactModel.created_at.desc())
        )
        return list(result.scalars().all())

    # ── Write ──

    async def create_contact(
        self,
        session: AsyncSession,
        tenant_id: str,
        fields: dict[str, Any],
        user_id: str | None = None,
    ) -> ContactModel:
        data = self._clean(fields)
        if await self.check_duplicate(session, tenant_id, email=data.get("email")):
            raise ConflictError("A contact with this email already exists")

        contact = ContactModel(tenant_id=tenant_id, **{
            k: v for k, v in data.items() if k in _EDITABLE_FIELDS
        })
        session.add(contact)
        await session.flush()
        await self._log(session, tenant_id, "created", contact, user_id=user_id)
        return contact

    async def update_contact(
        self,
        session: AsyncSession,
        tenant_id: str,
        contact_id: str,
        updates: dict[str, Any],
        user_id: str | None = None,
    ) -> ContactModel:
        contact = await self.get_contact(session, tenant_id, contact_id)
        data = self._clean({k: v for k, v in updates.items() if v is not None})

        if "email" in data and data["email"] != contact.email:
            if await self.check_duplicate(session, tenant_id, email=data["email"], exclude_id=contact_id):
                raise ConflictError("A contact with this email already exists")

        old_status = contact.status
        for field in _EDITABLE_FIELDS:
            if field in data:
                setattr(contact, field, data[field])
        if "notes" in data:
            contact.notes = "\n".join(data["notes"])
        await session.flush()

        if contact.status != old_status:
            await self._log(
                session, tenant_id, "status_changed", contact, user_id=user_id,
                metadata={"from": old_status, "to": contact.status},
            )
        else:
            await self._log(session, tenant_id, "updated", contact, user_id=user_id)
        return contact

    async def archive_contact(
        self, session: AsyncSession, tenant_id: str, contact_id: str
    ) -> ContactModel:
        """Soft delete: invoice and project history keep their contact."""
        contact = await self.get_contact(session, tenant_id, contact_id)
        contact.archived_at = utcnow()
        await session.flush()
        return contact

    async def bulk_archive(
        self, session: AsyncSession, tenant_id: str, ids: list[str]
    ) -> int:
        if not ids:
            return 0
        result = await session.execute(
            update(ContactModel)
            .where(ContactModel.tenant_id == tenant_id, ContactModel.id.in_(ids))
            .values(archived_at=utcnow(), updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def merge_contacts(
        self,
        session: AsyncSession,
        tenant_id: str,
        primary_id: str,
        secondary_id: str,
        merged: dict[str, Any],
        user_id: str | None = None,
    ) -> ContactModel:
        """Fold the secondary contact into the primary.

        Tags are unioned and notes concatenated; the secondary is archived
        and its invoices, tasks and projects move to the primary.
        """
        if primary_id == secondary_id:
            raise ValidationError("Cannot merge a contact into itself")
        primary = await self.get_contact(session, tenant_id, primary_id)
        secondary = await self.get_contact(session, tenant_id, secondary_id)

        data = self._clean({k: v for k, v in merged.items() if v is not None})
        for field in ("first_name", "last_name", "is_company", "company_name", "email", "phone", "status"):
            if field in data:
                setattr(primary, field, data[field])
        primary.tags = list(dict.fromkeys([*(primary.tags or []), *(secondary.tags or [])]))
        primary.notes = "\n".join([*primary.note_list, *secondary.note_list]) or None

        secondary.archived_at = utcnow()
        secondary.notes = f"Merged into {primary.name} ({primary.id})"
        await session.flush()

        for model in (InvoiceModel, TaskModel, ProjectModel):
            await session.execute(
                update(model)
                .where(model.contact_id == secondary_id)
                .values(contact_id=primary_id)
                .execution_options(synchronize_session=False)
            )

        await self._log(
            session, tenant_id, "updated", primary, user_id=user_id,
            description=f"Merged contact {secondary_id}",
            metadata={"merged_from": secondary_id},
        )
        return primary

    async def gdpr_delete(
        self,
        session: AsyncSession,
        tenant_id: str,
        contact_id: str,
        requester_id: str,
    ) -> dict:
        """Permanently erase a contact and everything that references it.

        The activity entry is written before any row is removed and is kept,
        so the erasure itself stays auditable. Returns the deletion
        certificate.
        """
        contact = await self.get_contact(session, tenant_id, contact_id)
        deleted_at = utcnow()
        contact_name = contact.name
        contact_email = contact.email

        if self.activity_service:
            await self.activity_service.log_activity(
                session, tenant_id, "deleted", "contact", contact_id,
                user_id=requester_id,
                entity_name=contact_name,
                description="GDPR: Right to be Forgotten - Permanent deletion of contact and all related data",
                metadata={
                    "gdpr_deletion": True,
                    "deleted_at": deleted_at.isoformat(),
                    "requester_id": requester_id,
                },
            )

        project_ids = select(ProjectModel.id).where(
            ProjectModel.tenant_id == tenant_id, ProjectModel.contact_id == contact_id
        )
        invoice_ids = select(InvoiceModel.id).where(
            InvoiceModel.tenant_id == tenant_id, InvoiceModel.contact_id == contact_id
        )

        await session.execute(
            delete(PortalSessionModel).where(PortalSessionModel.contact_id == contact_id)
        )
        await session.execute(
            delete(TaskModel).where(TaskModel.tenant_id == tenant_id, or_(
                TaskModel.contact_id == contact_id,
                TaskModel.project_id.in_(project_ids),
            ))
        )
        await session.execute(
            delete(MilestoneModel).where(
                MilestoneModel.tenant_id == tenant_id, MilestoneModel.project_id.in_(project_ids)
            )
        )

        docs = await session.execute(
            select(DocumentModel).where(DocumentModel.tenant_id == tenant_id, or_(
                DocumentModel.contact_id == contact_id,
                DocumentModel.project_id.in_(project_ids),
            ))
        )
        documents = list(docs.scalars().all())
        if self.document_service:
            await self.document_service.delete_rows(session, documents)
        else:
            for doc in documents:
                await session.delete(doc)

        await session.execute(
            delete(InvoiceLineItemModel).where(InvoiceLineItemModel.invoice_id.in_(invoice_ids))
        )
        await session.execute(delete(InvoiceModel).where(
            InvoiceModel.tenant_id == tenant_id, InvoiceModel.contact_id == contact_id
        ))
        # Invoices of other contacts only lose the project link
        await session.execute(
            update(InvoiceModel)
            .where(InvoiceModel.tenant_id == tenant_id, InvoiceModel.project_id.in_(project_ids))
            .values(project_id=None)
            .execution_options(synchronize_session=False)
        )
        await session.execute(delete(ProjectModel).where(
            ProjectModel.tenant_id == tenant_id, ProjectModel.contact_id == contact_id
        ))
        await session.execute(delete(ContactModel).where(
            ContactModel.tenant_id == tenant_id, ContactModel.id == contact_id
        ))
        await session.flush()

        logger.info("GDPR erasure completed", extra={"tenant_id": tenant_id, "contact_id": contact_id})
        return {
            "certificate_id": str(uuid.uuid4()),
            "deletion_type": "GDPR Right to be Forgotten",
            "contact_id": contact_id,
            "contact_name": contact_name,
            "contact_email": contact_email,
            "deleted_at": deleted_at,
            "deleted_by": requester_id,
            "data_deleted": list(GDPR_DATA_CATEGORIES),
            "legal_basis": "GDPR Article 17 - Right to Erasure",
            "retention_period": "Data deleted permanently, no retention",
        }
