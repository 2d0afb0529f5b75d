"""Tests for notifications and the trigger sweep."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from orbit_crm.common.config import OrbitSettings
from orbit_crm.common.database import DatabaseManager
from orbit_crm.common.exceptions import NotFoundError
from orbit_crm.common.models import utcnow
from orbit_crm.contacts.models import ContactModel
from orbit_crm.invoices.models import InvoiceModel
from orbit_crm.notifications.models import NotificationModel
from orbit_crm.notifications.service import NotificationService
from orbit_crm.projects.models import TaskModel
from orbit_crm.tenants.service import TenantService


def make_settings(**overrides) -> OrbitSettings:
    defaults = {"db_url": "sqlite+aiosqlite://", "app_url": "https://crm.example.com"}
    defaults.update(overrides)
    return OrbitSettings(**defaults)


@pytest.fixture
async def db():
    manager = DatabaseManager(make_settings())
    await manager.init()
    await manager.create_all()
    yield manager
    await manager.close()


@pytest.fixture
def svc(fake_sender):
    return NotificationService(make_settings(), email_sender=fake_sender)


@pytest.fixture
async def world(db):
    """One org, one owner and one record per trigger."""
    now = utcnow()
    async with db.get_session() as session:
        tenants = TenantService()
        org = await tenants.create_organization(session, "Acme", subscription_tier="pro")
        owner, _ = await tenants.create_profile(
            session, email="owner@acme.test", tenant_id=org.id, full_name="Olive Owner", role="owner"
        )
        client = ContactModel(tenant_id=org.id, first_name="Ivy", email="ivy@client.test", status="client")
        stale = ContactModel(
            tenant_id=org.id, first_name="Sam", email="sam@lead.test", status="lead",
            updated_at=now - timedelta(days=40),
        )
        fresh_lead = ContactModel(tenant_id=org.id, first_name="New", email="new@lead.test", status="lead")
        session.add_all([client, stale, fresh_lead])
        await session.flush()

        invoice = InvoiceModel(
            tenant_id=org.id, contact_id=client.id, invoice_number="INV-00001",
            status="sent", total=1200.0, due_date=now - timedelta(days=40),
        )
        draft = InvoiceModel(
            tenant_id=org.id, contact_id=client.id, invoice_number="INV-00002",
            status="draft", total=10.0, due_date=now - timedelta(days=40),
        )
        due_soon = TaskModel(tenant_id=org.id, title="Send proposal", status="todo",
                             due_date=now + timedelta(hours=12))
        overdue = TaskModel(tenant_id=org.id, title="Call back", status="in_progress",
                            due_date=now - timedelta(days=1))
        done = TaskModel(tenant_id=org.id, title="Done already", status="done",
                         due_date=now - timedelta(days=2))
        session.add_all([invoice, draft, due_soon, overdue, done])
        await session.flush()
        return {"org": org, "owner": owner, "stale": stale, "invoice": invoice}


class TestNotifications:
    async def test_create_list_and_read(self, db, svc, world):
        owner = world["owner"]
        async with db.get_session() as session:
            first = await svc.create_notification(
                session, owner.tenant_id, owner.id, type="system", title="Hi", message="Welcome"
            )
            await svc.create_notification(
                session, owner.tenant_id, owner.id, type="system", title="Again", message="Welcome"
            )
            assert len(await svc.list_notifications(session, owner.id)) == 2

            await svc.mark_read(session, owner.id, first.id)
            unread = await svc.list_notifications(session, owner.id, unread_only=True)
            assert [n.title for n in unread] == ["Again"]

            assert await svc.mark_all_read(session, owner.id) == 1

    async def test_mark_read_other_user(self, db, svc, world):
        owner = world["owner"]
        async with db.get_session() as session:
            note = await svc.create_notification(
                session, owner.tenant_id, owner.id, type="system", title="Hi", message="x"
            )
            with pytest.raises(NotFoundError):
                await svc.mark_read(session, "intruder", note.id)

    async def test_default_preferences(self, db, svc, world):
        async with db.get_session() as session:
            prefs = await svc.get_preferences(session, world["owner"].id)
            assert prefs.notify_follow_up is True
            assert prefs.enable_email is False

    async def test_update_preferences(self, db, svc, world):
        owner_id = world["owner"].id
        async with db.get_session() as session:
            await svc.update_preferences(session, owner_id, enable_email=True, notify_follow_up=None)
        async with db.get_session() as session:
            prefs = await svc.get_preferences(session, owner_id)
            assert prefs.enable_email is True
            assert prefs.notify_follow_up is True


class TestCheckTriggers:
    async def test_sweep_fires_once(self, db, svc, world, fake_sender):
        async with db.get_session() as session:
            results = await svc.check_triggers(session)
        assert results.to_dict() == {
            "invoices_checked": 1,
            "tasks_checked": 1,
            "contacts_checked": 1,
            "notifications_created": 4,
            "emails_sent": 0,
        }
        assert fake_sender.sent == []

        async with db.get_session() as session:
            again = await svc.check_triggers(session)
        assert again.notifications_created == 0
        assert again.invoices_checked == 0

    async def test_notification_content(self, db, svc, world):
        async with db.get_session() as session:
            await svc.check_triggers(session)
        async with db.get_session() as session:
            rows = (await session.execute(select(NotificationModel))).scalars().all()
        by_type = {n.type: n for n in rows}
        assert set(by_type) == {"invoice_overdue", "task_due_soon", "task_overdue", "follow_up_reminder"}

        invoice_note = by_type["invoice_overdue"]
        assert invoice_note.priority == "high"
        assert invoice_note.title == "Invoice #INV-00001 is overdue"
        assert "40 days overdue" in invoice_note.message
        assert invoice_note.related_id == world["invoice"].id
        assert by_type["follow_up_reminder"].related_id == world["stale"].id

    async def test_flagging_keeps_lead_stale(self, db, svc, world):
        stale_id = world["stale"].id
        async with db.get_session() as session:
            await svc.check_triggers(session)
        async with db.get_session() as session:
            contact = await session.get(ContactModel, stale_id)
            assert contact.notified_follow_up is True
            assert contact.updated_at.replace(tzinfo=None) < (utcnow() - timedelta(days=30)).replace(tzinfo=None)

    async def test_email_when_enabled(self, db, svc, world, fake_sender):
        async with db.get_session() as session:
            await svc.update_preferences(session, world["owner"].id, enable_email=True)
        async with db.get_session() as session:
            results = await svc.check_triggers(session)
        assert results.emails_sent == 2
        subjects = sorted(content.subject for _, content in fake_sender.sent)
        assert subjects == ["Invoice INV-00001 is overdue", "Task reminder: Send proposal"]
        assert all(to == "owner@acme.test" for to, _ in fake_sender.sent)

    async def test_failed_email_not_counted(self, db, svc, world, fake_sender):
        fake_sender.ok = False
        async with db.get_session() as session:
            await svc.update_preferences(session, world["owner"].id, enable_email=True)
        async with db.get_session() as session:
            results = await svc.check_triggers(session)
        assert results.emails_sent == 0
        assert results.notifications_created == 4

    async def test_disabled_preference_skips(self, db, svc, world):
        async with db.get_session() as session:
            await svc.update_preferences(
                session, world["owner"].id, notify_invoice_overdue=False, notify_follow_up=False
            )
        async with db.get_session() as session:
            results = await svc.check_triggers(session)
        assert results.invoices_checked == 1
        assert results.notifications_created == 2

    async def test_org_without_users_skipped(self, db, svc):
        async with db.get_session() as session:
            org = await TenantService().create_organization(session, "Empty")
            session.add(InvoiceModel(
                tenant_id=org.id, invoice_number="INV-00001", status="sent",
                due_date=utcnow() - timedelta(days=3),
            ))
        async with db.get_session() as session:
            results = await svc.check_triggers(session)
        assert results.invoices_checked == 0
