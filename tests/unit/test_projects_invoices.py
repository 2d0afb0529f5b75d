"""Tests for project, task, milestone and invoice services."""

import pytest

from orbit_crm.activity.service import ActivityService
from orbit_crm.common.config import OrbitSettings
from orbit_crm.common.database import DatabaseManager
from orbit_crm.common.exceptions import ConflictError, NotFoundError, ValidationError
from orbit_crm.contacts.service import ContactService
from orbit_crm.invoices.service import InvoiceService
from orbit_crm.projects.service import ProjectService
from orbit_crm.tenants.service import TenantService


def make_settings(**overrides) -> OrbitSettings:
    defaults = {"db_url": "sqlite+aiosqlite://"}
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
def activity():
    return ActivityService()


@pytest.fixture
def projects(activity):
    return ProjectService(activity_service=activity)


@pytest.fixture
def invoices(activity):
    return InvoiceService(activity_service=activity)


@pytest.fixture
async def setup(db):
    async with db.get_session() as session:
        org = await TenantService().create_organization(session, "Acme", subscription_tier="pro")
        contact = await ContactService().create_contact(session, org.id, {"email": "ivy@client.test"})
        return org.id, contact.id


class TestProjects:
    async def test_create_and_status_change(self, db, projects, activity, setup):
        tenant_id, contact_id = setup
        async with db.get_session() as session:
            project = await projects.create_project(
                session, tenant_id, {"name": "Website", "contact_id": contact_id}, "u1"
            )
            await projects.update_project(session, tenant_id, project.id, {"status": "active"}, "u1")
            entries = await activity.list_activity(session, tenant_id, entity_id=project.id)
            assert sorted(e.event_type for e in entries) == ["created", "status_changed"]

    async def test_unknown_contact(self, db, projects, setup):
        tenant_id, _ = setup
        async with db.get_session() as session:
            with pytest.raises(NotFoundError):
                await projects.create_project(session, tenant_id, {"name": "X", "contact_id": "missing"})

    async def test_archive_hides_from_list(self, db, projects, setup):
        tenant_id, _ = setup
        async with db.get_session() as session:
            project = await projects.create_project(session, tenant_id, {"name": "Old"})
            await projects.archive_project(session, tenant_id, project.id)
            assert await projects.list_projects(session, tenant_id) == []
            assert len(await projects.list_projects(session, tenant_id, include_archived=True)) == 1


class TestTasksAndMilestones:
    async def test_completion_logged_once(self, db, projects, activity, setup):
        tenant_id, _ = setup
        async with db.get_session() as session:
            task = await projects.create_task(session, tenant_id, {"title": "Call"})
            await projects.update_task(session, tenant_id, task.id, {"status": "done"})
            await projects.update_task(session, tenant_id, task.id, {"status": "done"})
            entries = await activity.list_activity(session, tenant_id, entity_id=task.id)
            assert [e.event_type for e in entries].count("completed") == 1

    async def test_new_due_date_rearms_reminders(self, db, projects, setup):
        tenant_id, _ = setup
        async with db.get_session() as session:
            task = await projects.create_task(session, tenant_id, {"title": "Call"})
            task.notified_overdue = True
            task = await projects.update_task(session, tenant_id, task.id, {"due_date": None})
            assert task.notified_overdue is False

    async def test_deleting_milestone_unassigns_tasks(self, db, projects, setup):
        tenant_id, _ = setup
        async with db.get_session() as session:
            project = await projects.create_project(session, tenant_id, {"name": "Site"})
            milestone = await projects.create_milestone(session, tenant_id, project.id, {"name": "Beta"})
            task = await projects.create_task(session, tenant_id, {
                "title": "QA", "project_id": project.id, "milestone_id": milestone.id,
            })
            task_id, milestone_id = task.id, milestone.id
        async with db.get_session() as session:
            await projects.delete_milestone(session, tenant_id, milestone_id)
        async with db.get_session() as session:
            task = await projects.get_task(session, tenant_id, task_id)
            assert task.milestone_id is None

    async def test_milestones_ordered(self, db, projects, setup):
        tenant_id, _ = setup
        async with db.get_session() as session:
            project = await projects.create_project(session, tenant_id, {"name": "Site"})
            await projects.create_milestone(session, tenant_id, project.id, {"name": "Launch", "order_index": 2})
            await projects.create_milestone(session, tenant_id, project.id, {"name": "Design", "order_index": 1})
            names = [m.name for m in await projects.list_milestones(session, tenant_id, project.id)]
            assert names == ["Design", "Launch"]


class TestInvoices:
    async def test_numbering_and_total(self, db, invoices, setup):
        tenant_id, contact_id = setup
        async with db.get_session() as session:
            first = await invoices.create_invoice(session, tenant_id, {
                "contact_id": contact_id,
                "line_items": [
                    {"description": "Design", "quantity": 3, "unit_price": 120.0},
                    {"description": "Hosting", "quantity": 1, "unit_price": 19.99},
                ],
            })
            second = await invoices.create_invoice(session, tenant_id, {"contact_id": contact_id})
            assert first.invoice_number == "INV-00001"
            assert second.invoice_number == "INV-00002"
            assert first.total == 379.99
            items = await invoices.get_line_items(session, first.id)
            assert [i.description for i in items] == ["Design", "Hosting"]

    async def test_status_transitions(self, db, invoices, activity, setup):
        tenant_id, contact_id = setup
        async with db.get_session() as session:
            invoice = await invoices.create_invoice(session, tenant_id, {"contact_id": contact_id})
            with pytest.raises(ValidationError):
                await invoices.update_invoice(session, tenant_id, invoice.id, {"status": "paid"})
            await invoices.update_invoice(session, tenant_id, invoice.id, {"status": "sent"})
            await invoices.update_invoice(session, tenant_id, invoice.id, {"status": "paid"})
            with pytest.raises(ValidationError):
                await invoices.update_invoice(session, tenant_id, invoice.id, {"status": "draft"})
            events = [e.event_type for e in await activity.list_activity(session, tenant_id, entity_id=invoice.id)]
            assert sorted(events) == ["invoiced", "paid"]

    async def test_line_items_locked_after_draft(self, db, invoices, setup):
        tenant_id, contact_id = setup
        async with db.get_session() as session:
            invoice = await invoices.create_invoice(session, tenant_id, {"contact_id": contact_id})
            await invoices.update_invoice(session, tenant_id, invoice.id, {"status": "sent"})
            with pytest.raises(ValidationError):
                await invoices.update_invoice(
                    session, tenant_id, invoice.id, {"line_items": [{"description": "Extra"}]}
                )
            with pytest.raises(ValidationError):
                await invoices.delete_invoice(session, tenant_id, invoice.id)

    async def test_delete_draft(self, db, invoices, setup):
        tenant_id, contact_id = setup
        async with db.get_session() as session:
            invoice = await invoices.create_invoice(session, tenant_id, {
                "contact_id": contact_id, "line_items": [{"description": "x", "unit_price": 1}],
            })
            await invoices.delete_invoice(session, tenant_id, invoice.id)
            with pytest.raises(NotFoundError):
                await invoices.get_invoice(session, tenant_id, invoice.id)
            assert await invoices.get_line_items(session, invoice.id) == []

    async def test_number_not_reused_after_delete(self, db, invoices, setup):
        tenant_id, contact_id = setup
        async with db.get_session() as session:
            first = await invoices.create_invoice(session, tenant_id, {"contact_id": contact_id})
            second = await invoices.create_invoice(session, tenant_id, {"contact_id": contact_id})
            await invoices.delete_invoice(session, tenant_id, first.id)
            third = await invoices.create_invoice(session, tenant_id, {"contact_id": contact_id})
            assert second.invoice_number == "INV-00002"
            assert third.invoice_number == "INV-00003"

    async def test_numbering_skips_custom_numbers(self, db, invoices, setup):
        tenant_id, contact_id = setup
        async with db.get_session() as session:
            await invoices.create_invoice(session, tenant_id, {"contact_id": contact_id, "invoice_number": "INV-00041"})
            await invoices.create_invoice(session, tenant_id, {"contact_id": contact_id, "invoice_number": "2026-A"})
            nxt = await invoices.create_invoice(session, tenant_id, {"contact_id": contact_id})
            assert nxt.invoice_number == "INV-00042"

    async def test_duplicate_custom_number(self, db, invoices, setup):
        tenant_id, contact_id = setup
        async with db.get_session() as session:
            await invoices.create_invoice(session, tenant_id, {"contact_id": contact_id})
            with pytest.raises(ConflictError):
                await invoices.create_invoice(
                    session, tenant_id, {"contact_id": contact_id, "invoice_number": "INV-00001"}
                )

    async def test_contact_from_other_tenant(self, db, invoices, setup):
        _, contact_id = setup
        async with db.get_session() as session:
            other = await TenantService().create_organization(session, "Other")
            with pytest.raises(NotFoundError):
                await invoices.create_invoice(session, other.id, {"contact_id": contact_id})
