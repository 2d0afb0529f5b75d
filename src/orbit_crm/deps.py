"""Dependency injection singletons for OrbitCRM."""

from orbit_crm.activity.service import ActivityService
from orbit_crm.chat.service import ChatService
from orbit_crm.common.config import get_settings
from orbit_crm.common.database import DatabaseManager
from orbit_crm.contacts.service import ContactService
from orbit_crm.documents.service import DocumentService
from orbit_crm.email.sender import EmailSender
from orbit_crm.invoices.service import InvoiceService
from orbit_crm.notifications.service import NotificationService
from orbit_crm.portal.service import PortalService
from orbit_crm.projects.service import ProjectService
from orbit_crm.ratelimit.limiter import create_rate_limiter
from orbit_crm.tenants.service import TenantService

_db: DatabaseManager | None = None
_tenants: TenantService | None = None
_activity: ActivityService | None = None
_documents: DocumentService | None = None
_contacts: ContactService | None = None
_projects: ProjectService | None = None
_invoices: InvoiceService | None = None
_email: EmailSender | None = None
_portal: PortalService | None = None
_notifications: NotificationService | None = None
_chat: ChatService | None = None
_chat_limiter = None
_invite_limiter = None


def get_db() -> DatabaseManager:
    global _db
    if _db is None:
        _db = DatabaseManager(get_settings())
    return _db


def get_tenant_service() -> TenantService:
    global _tenants
    if _tenants is None:
        _tenants = TenantService()
    return _tenants


def get_activity_service() -> ActivityService:
    global _activity
    if _activity is None:
        _activity = ActivityService()
    return _activity


def get_document_service() -> DocumentService:
    global _documents
    if _documents is None:
        _documents = DocumentService(get_settings())
    return _documents


def get_contact_service() -> ContactService:
    global _contacts
    if _contacts is None:
        _contacts = ContactService(
            activity_service=get_activity_service(),
            document_service=get_document_service(),
        )
    return _contacts


def get_project_service() -> ProjectService:
    global _projects
    if _projects is None:
        _projects = ProjectService(activity_service=get_activity_service())
    return _projects


def get_invoice_service() -> InvoiceService:
    global _invoices
    if _invoices is None:
        _invoices = InvoiceService(activity_service=get_activity_service())
    return _invoices


def get_email_sender() -> EmailSender:
    global _email
    if _email is None:
        settings = get_settings()
        _email = EmailSender(
            provider=settings.email_provider,
            api_key=settings.email_api_key,
            from_email=settings.email_from,
            from_name=settings.email_from_name,
        )
    return _email


def get_portal_service() -> PortalService:
    global _portal
    if _portal is None:
        _portal = PortalService(
            get_settings(), get_email_sender(),
            document_service=get_document_service(),
        )
    return _portal


def get_notification_service() -> NotificationService:
    global _notifications
    if _notifications is None:
        _notifications = NotificationService(get_settings(), email_sender=get_email_sender())
    return _notifications


def get_chat_service() -> ChatService:
    global _chat
    if _chat is None:
        _chat = ChatService(
            get_settings(), get_db(), get_tenant_service(), get_document_service()
        )
    return _chat


def get_chat_limiter():
    global _chat_limiter
    if _chat_limiter is None:
        settings = get_settings()
        _chat_limiter = create_rate_limiter(
            settings.chat_rate_limit, settings.chat_rate_window, "chat", settings.redis_url
        )
    return _chat_limiter


def get_invite_limiter():
    global _invite_limiter
    if _invite_limiter is None:
        settings = get_settings()
        _invite_limiter = create_rate_limiter(
            settings.invite_rate_limit, settings.invite_rate_window, "invite", settings.redis_url
        )
    return _invite_limiter


def reset_singletons() -> None:
    """Reset all singletons (for testing)."""
    global _db, _tenants, _activity, _documents, _contacts, _projects, _invoices
    global _email, _portal, _notifications, _chat, _chat_limiter, _invite_limiter
    _db = None
    _tenants = None
    _activity = None
    _documents = None
    _contacts = None
    _projects = None
    _invoices = None
    _email = None
    _portal = None
    _notifications = None
    _chat = None
    _chat_limiter = None
    _invite_limiter = None
