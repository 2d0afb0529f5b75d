"""SQLAlchemy model for contacts."""

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from orbit_crm.common.models import Base, TimestampMixin, generate_uuid


class ContactModel(Base, TimestampMixin):
    __tablename__ = "contacts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    tenant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("organizations.id"), nullable=False, index=True
    )
    first_name: Mapped[str] = mapped_column(String(255), default="")
    last_name: Mapped[str] = mapped_column(String(255), default="")
    is_company: Mapped[bool] = mapped_column(Boolean, default=False)
    company_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="lead")
    tags: Mapped[list] = mapped_column(JSON, default=list)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    portal_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    portal_token: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    portal_invited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_portal_login: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    notified_follow_up: Mapped[bool] = mapped_column(Boolean, default=False)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def name(self) -> str:
        if self.is_company:
            return self.company_name or ""
        return " ".join(p for p in (self.first_name, self.last_name) if p)

    @property
    def note_list(self) -> list[str]:
        return [n for n in (self.notes or "").split("\n") if n]
