"""Pydantic schemas for contact endpoints."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

ContactStatus = Literal["lead", "opportunity", "client", "churned"]


class ContactCreate(BaseModel):
    first_name: str = ""
    last_name: str = ""
    is_company: bool = False
    company_name: Optional[str] = None
    email: str = Field(..., min_length=1, max_length=255)
    phone: Optional[str] = None
    status: ContactStatus = "lead"
    tags: list[str] = Field(default_factory=list)


class ContactUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_company: Optional[bool] = None
    company_name: Optional[str] = None
    email: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = None
    status: Optional[ContactStatus] = None
    tags: Optional[list[str]] = None
    notes: Optional[list[str]] = None


class ContactResponse(BaseModel):
    id: str
    name: str
    first_name: str
    last_name: str
    is_company: bool
    company_name: Optional[str]
    email: Optional[str]
    phone: Optional[str]
    status: str
    tags: list[str]
    notes: list[str]
    portal_enabled: bool
    portal_invited_at: Optional[datetime]
    last_portal_login: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, c) -> "ContactResponse":
        return cls(
            id=c.id, name=c.name, first_name=c.first_name or "",
            last_name=c.last_name or "", is_company=bool(c.is_company),
            company_name=c.company_name, email=c.email, phone=c.phone,
            status=c.status, tags=list(c.tags or []), notes=c.note_list,
            portal_enabled=bool(c.portal_enabled),
            portal_invited_at=c.portal_invited_at,
            last_portal_login=c.last_portal_login,
            created_at=c.created_at, updated_at=c.updated_at,
        )


class ContactListResponse(BaseModel):
    items: list[ContactResponse]
    total: int
    page: int
    page_size: int
    pages: int


class BulkArchiveRequest(BaseModel):
    ids: list[str] = Field(..., min_length=1)


class MergeRequest(BaseModel):
    primary_id: str
    secondary_id: str
    merged: ContactUpdate = Field(default_factory=ContactUpdate)


class DuplicateCheckResponse(BaseModel):
    duplicate: Optional[ContactResponse] = None


class DeletionCertificate(BaseModel):
    certificate_id: str
    deletion_type: str
    contact_id: str
    contact_name: str
    contact_email: Optional[str]
    deleted_at: datetime
    deleted_by: str
    data_deleted: list[str]
    legal_basis: str
    retention_period: str


class GdprDeleteResponse(BaseModel):
    success: bool = True
    message: str
    deletion_certificate: DeletionCertificate
