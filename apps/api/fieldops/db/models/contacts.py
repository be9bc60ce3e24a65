"""SQLAlchemy ORM models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from fieldops.db.base import Base, utcnow
from fieldops.db.enums import DEFAULT_PIPELINE_STAGE


class Contact(Base):
    """
    A lead or customer.

    pipeline_stage leaves "new" once a human (or the customer) has moved the
    lead forward; the autopilot only speaks for leads still in "new".
    """

    __tablename__ = "contacts"
    __table_args__ = (
        Index("idx_contacts_phone_e164", "phone_e164"),
        Index("idx_contacts_email", "email"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)  # as entered
    phone_e164: Mapped[str | None] = mapped_column(String(20), nullable=True)
    postal_code: Mapped[str | None] = mapped_column(String(10), nullable=True)

    pipeline_stage: Mapped[str] = mapped_column(
        String(20), default=DEFAULT_PIPELINE_STAGE.value, nullable=False
    )

    # Assigned salesperson (team member id lives in the identity service)
    salesperson_member_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    salesperson_assigned_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def display_name(self) -> str:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts)
