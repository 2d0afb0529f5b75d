"""Invoice service with line items."""

import re
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from orbit_crm.common.exceptions import ConflictError, NotFoundError, ValidationError
from orbit_crm.contacts.models import ContactModel
from orbit_crm.invoices.models import InvoiceLineItemModel, InvoiceModel
from orbit_crm.projects.models import ProjectModel

# Allowed status transitions; paid and cancelled are terminal
TRANSITIONS = {
    "draft": {"sent", "cancelled"},
    "sent": {"paid", "overdue", "cancelled"},
    "overdue": {"paid", "cancelled"},
    "paid": set(),
    "cancelled": set(),
}

_NUMBER_PATTERN = re.compile(r"^INV-(\d+)$")


class InvoiceService:
    """Tenant-scoped invoices."""

    def __init__(self, activity_service=None):
        self.activity_service = activity_service

    async def _next_number(self, session: AsyncSession, tenant_id: str) -> str:
        """One past the highest existing ``INV-`` number; gaps left by deletions are not refilled."""
        result = await session.execute(
            select(InvoiceModel.invoice_number).where(
                InvoiceModel.tenant_id == tenant_id,
                InvoiceModel.invoice_number.like("INV-%"),
            )
        )
        highest = 0
        for number in result.scalars():
            match = _NUMBER_PATTERN.match(number)
            if match:
                highest = max(highest, int(match.group(1)))
        return f"INV-{highest + 1:05d}"

    async def _number_taken(self, session: AsyncSession, tenant_id: str, number: str) -> bool:
        result = await session.execute(
            select(InvoiceModel.id).where(
                InvoiceModel.tenant_id == tenant_id, InvoiceModel.invoice_number == number
            )
        )
        return result.first() is not None

    async def _replace_items(self, session: AsyncSession, invoice: InvoiceModel, items: list[dict]) -> None:
        await session.execute(
            delete(InvoiceLineItemModel).where(InvoiceLineItemModel.invoice_id == invoice.id)
        )
        total = 0.0
        for index, item in enumerate(items):
            line = InvoiceLineItemModel(
                invoice_id=invoice.id,
                description=item["description"],
                quantity=item.get("quantity", 1.0),
                unit_price=item.get("unit_price", 0.0),
                sort_order=index,
            )
            session.add(line)
            total += line.amount
        invoice.total = round(total, 2)

    async def get_line_items(self, session: AsyncSession, invoice_id: str) -> list[InvoiceLineItemModel]:
        result = await session.execute(
            select(InvoiceLineItemModel)
            .where(InvoiceLineItemModel.invoice_id == invoice_id)
            .order_by(InvoiceLineItemModel.sort_order)
        )
        return list(result.scalars().all())

    async def create_invoice(
        self, session: AsyncSession, tenant_id: str, fields: dict[str, Any], user_id: str | None = None
    ) -> InvoiceModel:
        contact = await session.get(ContactModel, fields["contact_id"])
        if contact is None or contact.tenant_id != tenant_id:
            raise NotFoundError("Contact not found")
        if fields.get("project_id"):
            project = await session.get(ProjectModel, fields["project_id"])
            if project is None or project.tenant_id != tenant_id:
                raise NotFoundError("Project not found")

        number = fields.get("invoice_number")
        if number:
            if await self._number_taken(session, tenant_id, number):
                raise ConflictError(f"Invoice number {number} already exists")
        else:
            number = await self._next_number(session, tenant_id)

        invoice = InvoiceModel(
            tenant_id=tenant_id,
            contact_id=contact.id,
            project_id=fields.get("project_id"),
            invoice_number=number,
            currency=fields.get("currency", "CHF"),
            due_date=fields.get("due_date"),
        )
        session.add(invoice)
        await session.flush()
        await self._replace_items(session, invoice, fields.get("line_items") or [])
        await session.flush()

        if self.activity_service:
            await self.activity_service.log_activity(
                session, tenant_id, "invoiced", "invoice", invoice.id,
                user_id=user_id, entity_name=invoice.invoice_number,
                metadata={"contact_id": contact.id, "total": invoice.total},
            )
        return invoice

    async def get_invoice(self, session: AsyncSession, tenant_id: str, invoice_id: str) -> InvoiceModel:
        invoice = await session.get(InvoiceModel, invoice_id)
        if invoice is None or invoice.tenant_id != tenant_id:
            raise NotFoundError("Invoice not found")
        return invoice

    async def list_invoices(
        self,
        session: AsyncSession,
        tenant_id: str,
        contact_id: str | None = None,
        project_id: str | None = None,
        status: str | None = None,
    ) -> list[InvoiceModel]:
        query = select(InvoiceModel).where(InvoiceModel.tenant_id == tenant_id)
        if contact_id:
            query = query.where(InvoiceModel.contact_id == contact_id)
        if project_id:
            query = query.where(InvoiceModel.project_id == project_id)
        if status:
            query = query.where(InvoiceModel.status == status)
        result = await session.execute(query.order_by(InvoiceModel.created_at.desc()))
        return list(result.scalars().all())

    async def update_invoice(
        self, session: AsyncSession, tenant_id: str, invoice_id: str,
        updates: dict[str, Any], user_id: str | None = None,
    ) -> InvoiceModel:
        invoice = await self.get_invoice(session, tenant_id, invoice_id)

        if updates.get("line_items") is not None:
            if invoice.status != "draft":
                raise ValidationError("Only draft invoices can change line items")
            await self._replace_items(session, invoice, updates["line_items"])

        new_status = updates.get("status")
        if new_status and new_status != invoice.status:
            if new_status not in TRANSITIONS[invoice.status]:
                raise ValidationError(
                    f"Cannot change invoice status from {invoice.status} to {new_status}"
                )
            invoice.status = new_status
            if self.activity_service and new_status == "paid":
                await self.activity_service.log_activity(
                    session, tenant_id, "paid", "invoice", invoice.id,
                    user_id=user_id, entity_name=invoice.invoice_number,
                )

        if "due_date" in updates:
            invoice.due_date = updates["due_date"]
            invoice.notified_overdue = False
        if updates.get("currency"):
            invoice.currency = updates["currency"]
        await session.flush()
        return invoice

    async def delete_invoice(self, session: AsyncSession, tenant_id: str, invoice_id: str) -> None:
        invoice = await self.get_invoice(session, tenant_id, invoice_id)
        if invoice.status != "draft":
            raise ValidationError("Only draft invoices can be deleted")
        await session.execute(
            delete(InvoiceLineItemModel).where(InvoiceLineItemModel.invoice_id == invoice.id)
        )
        await session.delete(invoice)
        await session.flush()
