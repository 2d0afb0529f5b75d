"""SQLAlchemy models for organizations and their users."""

from sqlalchemy import JSON, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from orbit_crm.common.models import Base, TimestampMixin, generate_uuid


class OrganizationModel(Base, TimestampMixin):
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    subscription_tier: Mapped[str] = mapped_column(String(20), nullable=False, default="free")
    # Effective-token counters; only check_and_deduct_tokens and pack grants write them
    token_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    token_pack_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    token_daily_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Packs granted in the current billing period; cleared by the monthly reset
    token_packs_granted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    settings: Mapped[dict] = mapped_column(JSON, default=dict)


class ProfileModel(Base, TimestampMixin):
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    tenant_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("organizations.id"), nullable=True, index=True
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="member")
    api_key_hash: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False, index=True
    )
