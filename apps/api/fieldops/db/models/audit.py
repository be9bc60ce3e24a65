"""SQLAlchemy ORM models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from fieldops.db.base import Base, utcnow
from fieldops.db.types import JSONType


class AuditLog(Base):
    """
    Append-only audit trail.

    Records autopilot decisions (draft created, autosend skipped with its
    reason, autosent), booking events and human call connections, which the
    autopilot reads back as a human-touch signal.

    Security:
    - Never stores secrets/tokens
    - Message bodies and raw addresses stay out of details
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("idx_audit_action_created", "action", "created_at"),
        Index("idx_audit_contact_created", "contact_id", "created_at"),
        Index("idx_audit_entity", "entity_type", "entity_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    action: Mapped[str] = mapped_column(String(60), nullable=False)
    actor_type: Mapped[str] = mapped_column(String(20), nullable=False)
    actor_label: Mapped[str | None] = mapped_column(String(120), nullable=True)
    entity_type: Mapped[str | None] = mapped_column(String(40), nullable=True)
    entity_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    contact_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    details: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
