"""Client portal: access toggling, magic-link invitations and token exchange."""

import logging
import secrets
from datetime import timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from orbit_crm.common.config import OrbitSettings
from orbit_crm.common.exceptions import (
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    UpstreamError,
    ValidationError,
)
from orbit_crm.common.models import as_utc, utcnow
from orbit_crm.contacts.models import ContactModel
from orbit_crm.documents.models import DocumentModel
from orbit_crm.email import templates
from orbit_crm.invoices.models import InvoiceModel
from orbit_crm.portal.models import PortalSessionModel
from orbit_crm.portal.session import PortalSession
from orbit_crm.projects.models import ProjectModel
from orbit_crm.tenants.models import OrganizationModel

logger = logging.getLogger(__name__)


def generate_token() -> str:
    return secrets.token_urlsafe(32)


class PortalService:
    """Portal access management for contacts."""

    def __init__(self, settings: OrbitSettings, email_sender, document_service=None):
        self.settings = settings
        self.email_sender = email_sender
        self.document_service = document_service

    async def _get_contact(self, session: AsyncSession, tenant_id: str, contact_id: str) -> ContactModel:
        contact = await session.get(ContactModel, contact_id)
        if contact is None or contact.tenant_id != tenant_id:
            raise NotFoundError("Contact not found")
        return contact

    async def toggle_access(
        self, session: AsyncSession, tenant_id: str, contact_id: str, enabled: bool
    ) -> ContactModel:
        """Enable or disable the portal; enabling issues a portal token once."""
        contact = await self._get_contact(session, tenant_id, contact_id)
        contact.portal_enabled = enabled
        if enabled and not contact.portal_token:
            contact.portal_token = generate_token()
        await session.flush()
        return contact

    def magic_link(self, token: str) -> str:
        return f"{self.settings.app_url.rstrip('/')}/portal/auth/{token}"

    async def invite(
        self,
        session: AsyncSession,
        tenant_id: str,
        contact_id: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> ContactModel:
        """Create a one-time session token and email the magic link."""
        contact = await self._get_contact(session, tenant_id, contact_id)
        if not contact.email:
            raise ValidationError("Contact has no email address")
        if not contact.portal_enabled:
            raise ValidationError("Portal access not enabled for this contact")
        if not contact.portal_token:
            raise ValidationError("Contact has no portal token")

        org = await session.get(OrganizationModel, tenant_id)
        company_name = org.name if org else "Your Company"

        ttl = self.settings.portal_link_ttl
        portal_session = PortalSessionModel(
            contact_id=contact.id,
            token=generate_token(),
            expires_at=utcnow() + timedelta(seconds=ttl),
            ip_address=ip_address,
            user_agent=user_agent,
        )
        session.add(portal_session)
        await session.flush()

        content = templates.portal_invitation(
            contact_name=contact.name or contact.email,
            company_name=company_name,
            magic_link=self.magic_link(portal_session.token),
            expires_in_hours=max(1, ttl // 3600),
        )
        if not await self.email_sender.send(contact.email, content):
            raise UpstreamError("Failed to send invitation email")

        contact.portal_invited_at = utcnow()
        await session.flush()
        logger.info("Portal invitation sent", extra={"tenant_id": contact.tenant_id, "contact_id": contact.id})
        return contact

    async def _lookup(self, session: AsyncSession, token: str):
        result = await session.execute(
            select(PortalSessionModel, ContactModel)
            .join(ContactModel, ContactModel.id == PortalSessionModel.contact_id)
            .where(PortalSessionModel.token == token)
        )
        return result.first()

    @staticmethod
    def _is_valid(portal_session: PortalSessionModel) -> bool:
        return portal_session.used_at is None and as_utc(portal_session.expires_at) > utcnow()

    async def verify_token(self, session: AsyncSession, tenant_id: str, token: str) -> dict:
        row = await self._lookup(session, token)
        if row is None or row[1].tenant_id != tenant_id:
            raise NotFoundError("Invalid or expired token")
        portal_session, contact = row
        return {
            "valid": self._is_valid(portal_session) and contact.portal_enabled,
            "contact_id": contact.id,
            "contact_name": contact.name,
            "contact_email": contact.email,
        }

    async def exchange_token(self, session: AsyncSession, token: str) -> PortalSession:
        """Consume a magic-link token exactly once and return the portal session."""
        now = utcnow()
        result = await session.execute(
            update(PortalSessionModel)
            .where(
                PortalSessionModel.token == token,
                PortalSessionModel.used_at.is_(None),
                PortalSessionModel.expires_at > now,
            )
            .values(used_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise UnauthorizedError("Invalid or expired link")

        row = await self._lookup(session, token)
        _, contact = row
        if not contact.portal_enabled or not contact.email:
            raise UnauthorizedError("Portal access is disabled")

        contact.last_portal_login = now
        await session.flush()
        logger.info("Portal login", extra={"tenant_id": contact.tenant_id, "contact_id": contact.id})
        return PortalSession(
            contact_id=contact.id,
            contact_email=contact.email,
            contact_name=contact.name,
            tenant_id=contact.tenant_id,
            authenticated_at=now.isoformat(),
        )

    async def dashboard(self, session: AsyncSession, portal: PortalSession) -> dict:
        projects = await session.execute(
            select(ProjectModel)
            .where(
                ProjectModel.tenant_id == portal.tenant_id,
                ProjectModel.contact_id == portal.contact_id,
                ProjectModel.archived_at.is_(None),
            )
            .order_by(ProjectModel.created_at.desc())
        )
        invoices = await session.execute(
            select(InvoiceModel)
            .where(
                InvoiceModel.tenant_id == portal.tenant_id,
                InvoiceModel.contact_id == portal.contact_id,
            )
            .order_by(InvoiceModel.created_at.desc())
        )
        documents = await session.execute(
            select(DocumentModel)
            .where(
                DocumentModel.tenant_id == portal.tenant_id,
                DocumentModel.contact_id == portal.contact_id,
                DocumentModel.visibility == "shared",
            )
            .order_by(DocumentModel.created_at.desc())
        )
        return {
            "contact_id": portal.contact_id,
            "contact_name": portal.contact_name,
            "contact_email": portal.contact_email,
            "projects": list(projects.scalars().all()),
            "invoices": list(invoices.scalars().all()),
            "documents": list(documents.scalars().all()),
        }

    async def get_shared_document(
        self, session: AsyncSession, portal: PortalSession, document_id: str
    ) -> tuple[DocumentModel, bytes]:
        doc = await session.get(DocumentModel, document_id)
        if doc is None or doc.tenant_id != portal.tenant_id:
            raise NotFoundError("Document not found")
        if doc.contact_id != portal.contact_id:
            raise ForbiddenError("This document does not belong to you")
        if doc.visibility != "shared":
            raise ForbiddenError("This document is not shared with you")
        return doc, self.document_service.read_content(doc)
