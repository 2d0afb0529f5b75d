"""In-app notifications and the daily trigger sweep."""

import logging
from dataclasses import asdict, dataclass
from datetime import timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from orbit_crm.common.config import OrbitSettings
from orbit_crm.common.exceptions import NotFoundError
from orbit_crm.common.models import as_utc, utcnow
from orbit_crm.contacts.models import ContactModel
from orbit_crm.email import templates
from orbit_crm.invoices.models import InvoiceModel
from orbit_crm.notifications.models import NotificationModel, NotificationPreferenceModel
from orbit_crm.projects.models import TaskModel
from orbit_crm.tenants.models import OrganizationModel, ProfileModel

logger = logging.getLogger(__name__)

FOLLOW_UP_AFTER_DAYS = 30
HIGH_PRIORITY_OVERDUE_DAYS = 30


@dataclass
class TriggerResults:
    invoices_checked: int = 0
    tasks_checked: int = 0
    contacts_checked: int = 0
    notifications_created: int = 0
    emails_sent: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class NotificationService:
    """Creates, lists and sweeps notifications."""

    def __init__(self, settings: OrbitSettings, email_sender=None):
        self.settings = settings
        self.email_sender = email_sender

    # ── User-facing ──

    async def create_notification(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
        type: str,
        title: str,
        message: str,
        priority: str = "medium",
        related_id: str | None = None,
        related_type: str | None = None,
        action_url: str | None = None,
    ) -> NotificationModel:
        notification = NotificationModel(
            tenant_id=tenant_id,
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            priority=priority,
            related_id=related_id,
            related_type=related_type,
            action_url=action_url,
        )
        session.add(notification)
        await session.flush()
        return notification

    async def list_notifications(
        self, session: AsyncSession, user_id: str, unread_only: bool = False, limit: int = 50
    ) -> list[NotificationModel]:
        query = select(NotificationModel).where(NotificationModel.user_id == user_id)
        if unread_only:
            query = query.where(NotificationModel.read_at.is_(None))
        result = await session.execute(
            query.order_by(NotificationModel.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def mark_read(self, session: AsyncSession, user_id: str, notification_id: str) -> NotificationModel:
        notification = await session.get(NotificationModel, notification_id)
        if notification is None or notification.user_id != user_id:
            raise NotFoundError("Notification not found")
        if notification.read_at is None:
            notification.read_at = utcnow()
            await session.flush()
        return notification

    async def mark_all_read(self, session: AsyncSession, user_id: str) -> int:
        result = await session.execute(
            update(NotificationModel)
            .where(NotificationModel.user_id == user_id, NotificationModel.read_at.is_(None))
            .values(read_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def get_preferences(self, session: AsyncSession, user_id: str) -> NotificationPreferenceModel:
        """Stored preferences, or unsaved defaults when the user has none."""
        prefs = await session.get(NotificationPreferenceModel, user_id)
        if prefs is None:
            prefs = NotificationPreferenceModel(
                user_id=user_id,
                notify_invoice_overdue=True,
                notify_task_due=True,
                notify_task_overdue=True,
                notify_follow_up=True,
                enable_email=False,
            )
        return prefs

    async def update_preferences(self, session: AsyncSession, user_id: str, **updates) -> NotificationPreferenceModel:
        prefs = await self.get_preferences(session, user_id)
        for field, value in updates.items():
            if value is not None and hasattr(prefs, field):
                setattr(prefs, field, value)
        session.add(prefs)
        await session.flush()
        return prefs

    # ── Trigger sweep ──

    def _url(self, path: str) -> str:
        return f"{self.settings.app_url.rstrip('/')}{path}"

    async def _email(self, to: str, content) -> bool:
        if self.email_sender is None:
            return False
        try:
            return await self.email_sender.send(to, content)
        except Exception:
            logger.exception("Notification email to %s failed", to)
            return False

    async def check_triggers(self, session: AsyncSession) -> TriggerResults:
        """Run the sweep over every organization.

        Each matching record notifies every user of its organization whose
        preferences allow it and is then flagged so it fires only once.
        """
        results = TriggerResults()
        orgs = await session.execute(select(OrganizationModel))
        for org in orgs.scalars().all():
            users = await session.execute(
                select(ProfileModel).where(ProfileModel.tenant_id == org.id)
            )
            users = list(users.scalars().all())
            if not users:
                continue
            prefs = {u.id: await self.get_preferences(session, u.id) for u in users}

            await self._overdue_invoices(session, org.id, users, prefs, results)
            await self._tasks_due_soon(session, org.id, users, prefs, results)
            await self._overdue_tasks(session, org.id, users, prefs, results)
            await self._stale_leads(session, org.id, users, prefs, results)

        logger.info("Notification sweep complete: %s", results.to_dict())
        return results

    async def _overdue_invoices(self, session, tenant_id, users, prefs, results) -> None:
        now = utcnow()
        rows = await session.execute(
            select(InvoiceModel, ContactModel)
            .outerjoin(ContactModel, ContactModel.id == InvoiceModel.contact_id)
            .where(
                InvoiceModel.tenant_id == tenant_id,
                InvoiceModel.status.in_(["sent", "overdue"]),
                InvoiceModel.due_date < now,
                InvoiceModel.notified_overdue.is_(False),
            )
        )
        rows = rows.all()
        results.invoices_checked += len(rows)
        for invoice, contact in rows:
            days = (now - as_utc(invoice.due_date)).days
            customer = (contact.name if contact else "") or "customer"
            for user in users:
                p = prefs[user.id]
                if not p.notify_invoice_overdue:
                    continue
                await self.create_notification(
                    session, tenant_id, user.id,
                    type="invoice_overdue",
                    title=f"Invoice #{invoice.invoice_number} is overdue",
                    message=f"Invoice for {customer} is {days} days overdue ({invoice.currency} {invoice.total})",
                    priority="high" if days > HIGH_PRIORITY_OVERDUE_DAYS else "medium",
                    related_id=invoice.id,
                    related_type="invoice",
                    action_url=f"/admin/invoices/{invoice.id}",
                )
                results.notifications_created += 1
                if p.enable_email:
                    content = templates.overdue_invoice(
                        user_name=user.full_name or user.email,
                        invoice_number=invoice.invoice_number,
                        contact_name=customer,
                        amount=invoice.total,
                        currency=invoice.currency,
                        days_overdue=days,
                        invoice_url=self._url(f"/admin/invoices/{invoice.id}"),
                    )
                    if await self._email(user.email, content):
                        results.emails_sent += 1
            invoice.notified_overdue = True
        await session.flush()

    async def _tasks_due_soon(self, session, tenant_id, users, prefs, results) -> None:
        now = utcnow()
        rows = await session.execute(
            select(TaskModel, ContactModel)
            .outerjoin(ContactModel, ContactModel.id == TaskModel.contact_id)
            .where(
                TaskModel.tenant_id == tenant_id,
                TaskModel.status == "todo",
                TaskModel.due_date >= now,
                TaskModel.due_date <= now + timedelta(days=1),
                TaskModel.notified_due_soon.is_(False),
            )
        )
        rows = rows.all()
        results.tasks_checked += len(rows)
        for task, contact in rows:
            for user in users:
                p = prefs[user.id]
                if not p.notify_task_due:
                    continue
                await self.create_notification(
                    session, tenant_id, user.id,
                    type="task_due_soon",
                    title="Task due tomorrow",
                    message=f'"{task.title}" is due tomorrow',
                    related_id=task.id,
                    related_type="task",
                    action_url=f"/admin/tasks/{task.id}",
                )
                results.notifications_created += 1
                if p.enable_email:
                    content = templates.task_reminder(
                        user_name=user.full_name or user.email,
                        task_title=task.title,
                        due_date=as_utc(task.due_date),
                        task_url=self._url(f"/admin/tasks/{task.id}"),
                        contact_name=contact.name if contact else None,
                    )
                    if await self._email(user.email, content):
                        results.emails_sent += 1
            task.notified_due_soon = True
        await session.flush()

    async def _overdue_tasks(self, session, tenant_id, users, prefs, results) -> None:
        rows = await session.execute(
            select(TaskModel).where(
                TaskModel.tenant_id == tenant_id,
                TaskModel.status != "done",
                TaskModel.due_date < utcnow(),
                TaskModel.notified_overdue.is_(False),
            )
        )
        for task in rows.scalars().all():
            for user in users:
                if not prefs[user.id].notify_task_overdue:
                    continue
                await self.create_notification(
                    session, tenant_id, user.id,
                    type="task_overdue",
                    title="Task is overdue",
                    message=f'"{task.title}" is overdue',
                    priority="high",
                    related_id=task.id,
                    related_type="task",
                    action_url=f"/admin/tasks/{task.id}",
                )
                results.notifications_created += 1
            task.notified_overdue = True
        await session.flush()

    async def _stale_leads(self, session, tenant_id, users, prefs, results) -> None:
        cutoff = utcnow() - timedelta(days=FOLLOW_UP_AFTER_DAYS)
        rows = await session.execute(
            select(ContactModel).where(
                ContactModel.tenant_id == tenant_id,
                ContactModel.status == "lead",
                ContactModel.archived_at.is_(None),
                ContactModel.updated_at < cutoff,
                ContactModel.notified_follow_up.is_(False),
            )
        )
        contacts = list(rows.scalars().all())
        results.contacts_checked += len(contacts)
        for contact in contacts:
            for user in users:
                if not prefs[user.id].notify_follow_up:
                    continue
                await self.create_notification(
                    session, tenant_id, user.id,
                    type="follow_up_reminder",
                    title="Follow up needed",
                    message=f"{contact.name or contact.email} has had no activity in {FOLLOW_UP_AFTER_DAYS} days",
                    priority="low",
                    related_id=contact.id,
                    related_type="contact",
                    action_url=f"/admin/contacts/{contact.id}",
                )
                results.notifications_created += 1
        # Flagging must not bump updated_at, which drives the staleness check
        if contacts:
            await session.execute(
                update(ContactModel)
                .where(ContactModel.id.in_([c.id for c in contacts]))
                .values(notified_follow_up=True, updated_at=ContactModel.updated_at)
                .execution_options(synchronize_session=False)
            )
