"""Invoices API router."""

from typing import Optional

from fastapi import APIRouter, Depends

from orbit_crm.common.security import UserContext, require_tenant_user
from orbit_crm.invoices.schemas import (
    InvoiceCreate,
    InvoiceResponse,
    InvoiceUpdate,
    LineItemResponse,
)

router = APIRouter(prefix="/api/invoices")


def _get_service():
    from orbit_crm.deps import get_invoice_service
    return get_invoice_service()


def _get_db():
    from orbit_crm.deps import get_db
    return get_db()


async def _to_response(svc, session, invoice, with_items: bool = True) -> InvoiceResponse:
    items = await svc.get_line_items(session, invoice.id) if with_items else []
    return InvoiceResponse(
        id=invoice.id,
        contact_id=invoice.contact_id,
        project_id=invoice.project_id,
        invoice_number=invoice.invoice_number,
        status=invoice.status,
        currency=invoice.currency,
        total=invoice.total,
        due_date=invoice.due_date,
        created_at=invoice.created_at,
        line_items=[LineItemResponse.model_validate(i) for i in items],
    )


@router.post("", response_model=InvoiceResponse, status_code=201)
async def create_invoice(body: InvoiceCreate, user: UserContext = Depends(require_tenant_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        invoice = await svc.create_invoice(session, user.tenant_id, body.model_dump(), user.user_id)
        return await _to_response(svc, session, invoice)


@router.get("", response_model=list[InvoiceResponse])
async def list_invoices(
    contact_id: Optional[str] = None,
    project_id: Optional[str] = None,
    status: Optional[str] = None,
    user: UserContext = Depends(require_tenant_user),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        invoices = await svc.list_invoices(
            session, user.tenant_id,
            contact_id=contact_id, project_id=project_id, status=status,
        )
        return [await _to_response(svc, session, i, with_items=False) for i in invoices]


@router.get("/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(invoice_id: str, user: UserContext = Depends(require_tenant_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        invoice = await svc.get_invoice(session, user.tenant_id, invoice_id)
        return await _to_response(svc, session, invoice)


@router.patch("/{invoice_id}", response_model=InvoiceResponse)
async def update_invoice(
    invoice_id: str, body: InvoiceUpdate, user: UserContext = Depends(require_tenant_user)
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        invoice = await svc.update_invoice(
            session, user.tenant_id, invoice_id,
            body.model_dump(exclude_unset=True), user.user_id,
        )
        return await _to_response(svc, session, invoice)


@router.delete("/{invoice_id}", status_code=204)
async def delete_invoice(invoice_id: str, user: UserContext = Depends(require_tenant_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        await svc.delete_invoice(session, user.tenant_id, invoice_id)
