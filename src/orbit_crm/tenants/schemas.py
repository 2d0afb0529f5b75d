"""Pydantic schemas for organization and user endpoints."""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

Tier = Literal["free", "pro", "business", "enterprise"]


class OrganizationCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    subscription_tier: Tier = "free"
    token_balance: Optional[int] = Field(default=None, ge=0)
    token_pack_balance: int = Field(default=0, ge=0)
    token_daily_balance: Optional[int] = Field(default=None, ge=0)
    settings: dict[str, Any] = {}


class OrganizationResponse(BaseModel):
    id: str
    name: str
    subscription_tier: str
    token_balance: int
    token_pack_balance: int
    token_daily_balance: int
    token_packs_granted: int = 0
    settings: dict[str, Any]
    created_at: datetime

    model_config = {"from_attributes": True}


class ProfileCreate(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    full_name: Optional[str] = None
    role: Literal["owner", "member"] = "member"


class ProfileResponse(BaseModel):
    id: str
    tenant_id: Optional[str]
    email: str
    full_name: Optional[str]
    role: str
    created_at: datetime

    model_config = {"from_attributes": True}


class ProfileCreateResponse(ProfileResponse):
    """Includes the raw API key; only returned once at creation time."""
    api_key: str


class TokenPackGrant(BaseModel):
    pack_id: str


class TokenBalanceResponse(BaseModel):
    tier: str
    token_balance: int
    token_pack_balance: int
    token_daily_balance: int
    total_available: int
    allocation: int
    daily_cap: int
    status: str
