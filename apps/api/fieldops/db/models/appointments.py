"""SQLAlchemy ORM models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Index, Integer, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from fieldops.db.base import Base, utcnow
from fieldops.db.enums import DEFAULT_APPOINTMENT_STATUS, DEFAULT_HOLD_STATUS


class Appointment(Base):
    """
    Booked job on the calendar.

    Lifecycle: requested → confirmed → completed/canceled/no_show.
    Only confirmed rows without completed_at consume capacity.
    Times are stored in UTC; end_at = start_at + duration_minutes.
    """

    __tablename__ = "appointments"
    __table_args__ = (
        Index("idx_appointments_window", "start_at", "end_at"),
        Index("idx_appointments_contact", "contact_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    contact_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True
    )
    hold_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("appointment_holds.id", ondelete="SET NULL"), nullable=True
    )

    start_at: Mapped[datetime] = mapped_column(nullable=False)
    end_at: Mapped[datetime] = mapped_column(nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), default=DEFAULT_APPOINTMENT_STATUS.value, nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)


class AppointmentHold(Base):
    """
    Provisional, time-limited slot reservation.

    Counts toward capacity while status is active and expires_at is in the
    future; an expired hold needs no sweep to stop counting.
    """

    __tablename__ = "appointment_holds"
    __table_args__ = (
        Index(
            "idx_holds_active_window",
            "start_at",
            "end_at",
            postgresql_where=text("status = 'active'"),
        ),
        Index("idx_holds_contact", "contact_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    contact_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True
    )

    start_at: Mapped[datetime] = mapped_column(nullable=False)
    end_at: Mapped[datetime] = mapped_column(nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), default=DEFAULT_HOLD_STATUS.value, nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(nullable=False)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)
