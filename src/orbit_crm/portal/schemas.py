"""Pydantic schemas for the client portal."""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel


class PortalToggleRequest(BaseModel):
    contact_id: str
    enabled: bool


class PortalToggleResponse(BaseModel):
    success: bool = True
    portal_enabled: bool
    portal_token: Optional[str]


class PortalInviteRequest(BaseModel):
    contact_id: str


class PortalInviteResponse(BaseModel):
    success: bool = True
    message: str = "Portal invitation sent successfully"
    email: str


class PortalVerifyResponse(BaseModel):
    valid: bool
    contact_id: str
    contact_name: str
    contact_email: Optional[str]


class PortalProject(BaseModel):
    id: str
    name: str
    status: str
    deadline: Optional[date]

    model_config = {"from_attributes": True}


class PortalInvoice(BaseModel):
    id: str
    invoice_number: str
    status: str
    currency: str
    total: float
    due_date: Optional[datetime]

    model_config = {"from_attributes": True}


class PortalDocument(BaseModel):
    id: str
    name: str
    mime_type: str
    size_bytes: int
    created_at: datetime

    model_config = {"from_attributes": True}


class PortalDashboard(BaseModel):
    contact_id: str
    contact_name: str
    contact_email: str
    projects: list[PortalProject]
    invoices: list[PortalInvoice]
    documents: list[PortalDocument]
