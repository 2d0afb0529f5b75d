"""Pydantic schemas for invoices."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

InvoiceStatus = Literal["draft", "sent", "paid", "overdue", "cancelled"]


class LineItem(BaseModel):
    description: str = Field(..., min_length=1, max_length=500)
    quantity: float = Field(default=1.0, gt=0)
    unit_price: float = Field(default=0.0, ge=0)


class InvoiceCreate(BaseModel):
    contact_id: str
    project_id: Optional[str] = None
    invoice_number: Optional[str] = Field(default=None, max_length=50)
    currency: str = Field(default="CHF", min_length=3, max_length=3)
    due_date: Optional[datetime] = None
    line_items: list[LineItem] = Field(default_factory=list)


class InvoiceUpdate(BaseModel):
    status: Optional[InvoiceStatus] = None
    due_date: Optional[datetime] = None
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    line_items: Optional[list[LineItem]] = None


class LineItemResponse(BaseModel):
    id: str
    description: str
    quantity: float
    unit_price: float
    amount: float

    model_config = {"from_attributes": True}


class InvoiceResponse(BaseModel):
    id: str
    contact_id: Optional[str]
    project_id: Optional[str]
    invoice_number: str
    status: str
    currency: str
    total: float
    due_date: Optional[datetime]
    created_at: datetime
    line_items: list[LineItemResponse] = Field(default_factory=list)
