"""Booking service - slot capacity, holds and appointments.

``check_booking_admission`` is the single admission function every writer
goes through. It returns a value; only the writers (``create_hold``,
``confirm_hold``, ``book_appointment``) raise ``BookingRejected``.

Capacity counts confirmed, not-yet-completed appointments plus live holds
(active and not expired) whose [start, end) window intersects the proposed
one. Intervals are half-open: a job ending exactly when another starts does
not overlap it.

Writers run check and insert in one transaction. On PostgreSQL they first
take a transaction-scoped advisory lock keyed on the local booking day, so
two writers for the same day are serialized.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import UUID

import holidays
from sqlalchemy import func, text, update
from sqlalchemy.orm import Session

from fieldops.db.enums import (
    AppointmentStatus,
    AuditAction,
    BookingRejection,
    HoldStatus,
)
from fieldops.db.models import Appointment, AppointmentHold
from fieldops.db.session import is_postgres
from fieldops.services import audit_service
from fieldops.services.policy_service import PolicySnapshot

logger = logging.getLogger(__name__)

MAX_DURATION_MINUTES = 12 * 60


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(timezone.utc)


@dataclass(frozen=True)
class AdmissionResult:
    admitted: bool
    code: BookingRejection | None = None
    overlapping: int = 0
    capacity: int = 0

    @classmethod
    def admit(cls, overlapping: int, capacity: int) -> "AdmissionResult":
        return cls(True, None, overlapping, capacity)

    @classmethod
    def reject(
        cls, code: BookingRejection, overlapping: int = 0, capacity: int = 0
    ) -> "AdmissionResult":
        return cls(False, code, overlapping, capacity)


class BookingRejected(Exception):
    """A writer refused to book; ``code`` is a BookingRejection."""

    def __init__(self, code: BookingRejection):
        super().__init__(code.value)
        self.code = code


# =============================================================================
# Overlap and counting
# =============================================================================


def intervals_overlap(
    a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime
) -> bool:
    """Half-open interval intersection."""
    return a_start < b_end and a_end > b_start


def count_overlapping(
    db: Session,
    start_at: datetime,
    duration_minutes: int,
    now: datetime | None = None,
    exclude_hold_id: UUID | None = None,
    buffer_minutes: int = 0,
) -> int:
    """
    Count capacity consumers intersecting [start_at, start_at + duration).

    ``buffer_minutes`` extends every existing booking's end (travel time).
    """
    now = _now(now)
    end_at = start_at + timedelta(minutes=duration_minutes)
    earliest_end = start_at - timedelta(minutes=buffer_minutes)

    appointments = (
        db.query(func.count(Appointment.id))
        .filter(
            Appointment.status == AppointmentStatus.CONFIRMED.value,
            Appointment.completed_at.is_(None),
            Appointment.start_at < end_at,
            Appointment.end_at > earliest_end,
        )
        .scalar()
    )

    holds_query = db.query(func.count(AppointmentHold.id)).filter(
        AppointmentHold.status == HoldStatus.ACTIVE.value,
        AppointmentHold.expires_at > now,
        AppointmentHold.start_at < end_at,
        AppointmentHold.end_at > earliest_end,
    )
    if exclude_hold_id is not None:
        holds_query = holds_query.filter(AppointmentHold.id != exclude_hold_id)
    holds = holds_query.scalar()

    return int(appointments or 0) + int(holds or 0)


def count_day_bookings(
    db: Session,
    day_start: datetime,
    day_end: datetime,
    now: datetime,
    exclude_hold_id: UUID | None = None,
) -> int:
    """Non-canceled appointments plus live holds starting within [day_start, day_end)."""
    appointments = (
        db.query(func.count(Appointment.id))
        .filter(
            Appointment.status != AppointmentStatus.CANCELED.value,
            Appointment.start_at >= day_start,
            Appointment.start_at < day_end,
        )
        .scalar()
    )
    holds_query = db.query(func.count(AppointmentHold.id)).filter(
        AppointmentHold.status == HoldStatus.ACTIVE.value,
        AppointmentHold.expires_at > now,
        AppointmentHold.start_at >= day_start,
        AppointmentHold.start_at < day_end,
    )
    if exclude_hold_id is not None:
        holds_query = holds_query.filter(AppointmentHold.id != exclude_hold_id)
    return int(appointments or 0) + int(holds_query.scalar() or 0)


def is_holiday(local_day: datetime, country: str = "US") -> bool:
    return local_day.date() in holidays.country_holidays(country, years=local_day.year)


# =============================================================================
# Admission
# =============================================================================


def check_booking_admission(
    db: Session,
    start_at: datetime,
    duration_minutes: int,
    capacity: int,
    now: datetime | None = None,
    policy: PolicySnapshot | None = None,
    exclude_hold_id: UUID | None = None,
) -> AdmissionResult:
    """
    Decide whether a job of ``duration_minutes`` may start at ``start_at``.

    Without a policy only duration, past start and slot capacity are checked.
    With one, the calendar rules (booking window, service days, holidays,
    business hours, daily job limit) apply as well, and existing bookings are
    padded by the travel buffer.
    """
    now = _now(now)
    if duration_minutes <= 0 or duration_minutes > MAX_DURATION_MINUTES:
        return AdmissionResult.reject(BookingRejection.INVALID_DURATION, capacity=capacity)
    if start_at < now:
        return AdmissionResult.reject(BookingRejection.START_IN_PAST, capacity=capacity)

    buffer_minutes = 0
    if policy is not None:
        hours = policy.business_hours
        booking = policy.booking
        start_local = start_at.astimezone(hours.tz)
        now_local = now.astimezone(hours.tz)

        window_end = (now_local + timedelta(days=booking.booking_window_days)).replace(
            hour=23, minute=59, second=59, microsecond=999999
        )
        if start_local > window_end:
            return AdmissionResult.reject(BookingRejection.OUTSIDE_BOOKING_WINDOW, capacity=capacity)
        if start_local.weekday() not in hours.service_days:
            return AdmissionResult.reject(BookingRejection.OUTSIDE_SERVICE_DAYS, capacity=capacity)
        if booking.closed_on_holidays and is_holiday(start_local):
            return AdmissionResult.reject(BookingRejection.OUTSIDE_SERVICE_DAYS, capacity=capacity)
        if not hours.contains(start_at, duration_minutes):
            return AdmissionResult.reject(BookingRejection.OUTSIDE_BUSINESS_HOURS, capacity=capacity)

        day_start = start_local.replace(hour=0, minute=0, second=0, microsecond=0)
        day_count = count_day_bookings(
            db,
            day_start.astimezone(timezone.utc),
            (day_start + timedelta(days=1)).astimezone(timezone.utc),
            now,
            exclude_hold_id=exclude_hold_id,
        )
        if day_count >= booking.max_jobs_per_day:
            return AdmissionResult.reject(BookingRejection.DAY_FULL, day_count, capacity)
        buffer_minutes = booking.buffer_minutes

    overlapping = count_overlapping(
        db,
        start_at,
        duration_minutes,
        now=now,
        exclude_hold_id=exclude_hold_id,
        buffer_minutes=buffer_minutes,
    )
    if overlapping >= capacity:
        return AdmissionResult.reject(BookingRejection.SLOT_FULL, overlapping, capacity)
    return AdmissionResult.admit(overlapping, capacity)


# =============================================================================
# Writers
# =============================================================================


def _lock_booking_day(db: Session, start_at: datetime, policy: PolicySnapshot) -> None:
    if not is_postgres(db):
        return
    day_key = int(start_at.astimezone(policy.business_hours.tz).strftime("%Y%m%d"))
    db.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": day_key})


def _reject(
    db: Session,
    code: BookingRejection,
    contact_id: UUID | None,
    start_at: datetime,
    now: datetime,
) -> BookingRejected:
    db.rollback()
    audit_service.log_event(
        db,
        AuditAction.BOOKING_REJECTED,
        entity_type="contact" if contact_id else None,
        entity_id=contact_id,
        contact_id=contact_id,
        details={"code": code.value, "start_at": start_at.isoformat()},
        created_at=now,
    )
    db.commit()
    logger.info("Booking rejected: %s", code.value)
    return BookingRejected(code)


def create_hold(
    db: Session,
    contact_id: UUID | None,
    start_at: datetime,
    duration_minutes: int,
    policy: PolicySnapshot,
    now: datetime | None = None,
) -> AppointmentHold:
    """
    Reserve a slot for ``policy.booking.hold_minutes``.

    The contact's previous active holds are released first, so a customer
    browsing times never holds more than one slot.
    """
    now = _now(now)
    _lock_booking_day(db, start_at, policy)

    if contact_id is not None:
        db.execute(
            update(AppointmentHold)
            .where(
                AppointmentHold.contact_id == contact_id,
                AppointmentHold.status == HoldStatus.ACTIVE.value,
            )
            .values(status=HoldStatus.RELEASED.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )

    result = check_booking_admission(
        db, start_at, duration_minutes, policy.booking.capacity, now=now, policy=policy
    )
    if not result.admitted:
        raise _reject(db, result.code, contact_id, start_at, now)

    hold = AppointmentHold(
        contact_id=contact_id,
        start_at=start_at,
        end_at=start_at + timedelta(minutes=duration_minutes),
        duration_minutes=duration_minutes,
        status=HoldStatus.ACTIVE.value,
        expires_at=now + timedelta(minutes=policy.booking.hold_minutes),
        created_at=now,
        updated_at=now,
    )
    db.add(hold)
    db.flush()
    audit_service.log_event(
        db,
        AuditAction.BOOKING_HOLD_CREATED,
        entity_type="appointment_hold",
        entity_id=hold.id,
        contact_id=contact_id,
        details={"start_at": start_at.isoformat(), "duration_minutes": duration_minutes},
        created_at=now,
    )
    db.commit()
    db.refresh(hold)
    return hold


def get_hold(db: Session, hold_id: UUID) -> AppointmentHold | None:
    return db.query(AppointmentHold).filter(AppointmentHold.id == hold_id).first()


def confirm_hold(
    db: Session,
    hold_id: UUID,
    policy: PolicySnapshot,
    now: datetime | None = None,
) -> Appointment:
    """Turn a live hold into a confirmed appointment (the hold does not count against itself)."""
    now = _now(now)
    hold = get_hold(db, hold_id)
    if hold is None:
        raise BookingRejected(BookingRejection.HOLD_NOT_FOUND)
    if hold.status != HoldStatus.ACTIVE.value or hold.expires_at <= now:
        raise BookingRejected(BookingRejection.HOLD_EXPIRED)

    _lock_booking_day(db, hold.start_at, policy)
    result = check_booking_admission(
        db,
        hold.start_at,
        hold.duration_minutes,
        policy.booking.capacity,
        now=now,
        policy=policy,
        exclude_hold_id=hold.id,
    )
    if not result.admitted:
        raise _reject(db, result.code, hold.contact_id, hold.start_at, now)

    appointment = Appointment(
        contact_id=hold.contact_id,
        hold_id=hold.id,
        start_at=hold.start_at,
        end_at=hold.end_at,
        duration_minutes=hold.duration_minutes,
        status=AppointmentStatus.CONFIRMED.value,
        created_at=now,
        updated_at=now,
    )
    hold.status = HoldStatus.CONVERTED.value
    hold.updated_at = now
    db.add(appointment)
    db.flush()
    audit_service.log_event(
        db,
        AuditAction.BOOKING_CONFIRMED,
        entity_type="appointment",
        entity_id=appointment.id,
        contact_id=hold.contact_id,
        details={"hold_id": str(hold.id)},
        created_at=now,
    )
    db.commit()
    db.refresh(appointment)
    return appointment


def book_appointment(
    db: Session,
    contact_id: UUID | None,
    start_at: datetime,
    duration_minutes: int,
    policy: PolicySnapshot,
    now: datetime | None = None,
) -> Appointment:
    """Book directly without a hold (staff booking on a call)."""
    now = _now(now)
    _lock_booking_day(db, start_at, policy)
    result = check_booking_admission(
        db, start_at, duration_minutes, policy.booking.capacity, now=now, policy=policy
    )
    if not result.admitted:
        raise _reject(db, result.code, contact_id, start_at, now)

    appointment = Appointment(
        contact_id=contact_id,
        start_at=start_at,
        end_at=start_at + timedelta(minutes=duration_minutes),
        duration_minutes=duration_minutes,
        status=AppointmentStatus.CONFIRMED.value,
        created_at=now,
        updated_at=now,
    )
    db.add(appointment)
    db.flush()
    audit_service.log_event(
        db,
        AuditAction.BOOKING_CONFIRMED,
        entity_type="appointment",
        entity_id=appointment.id,
        contact_id=contact_id,
        created_at=now,
    )
    db.commit()
    db.refresh(appointment)
    return appointment


def release_hold(db: Session, hold_id: UUID, now: datetime | None = None) -> bool:
    """Release an active hold. Returns False if it was not active."""
    result = db.execute(
        update(AppointmentHold)
        .where(
            AppointmentHold.id == hold_id,
            AppointmentHold.status == HoldStatus.ACTIVE.value,
        )
        .values(status=HoldStatus.RELEASED.value, updated_at=_now(now))
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def expire_holds(db: Session, now: datetime | None = None) -> int:
    """
    Mark active holds past expires_at as expired.

    Housekeeping only: capacity already ignores expired holds.
    """
    now = _now(now)
    result = db.execute(
        update(AppointmentHold)
        .where(
            AppointmentHold.status == HoldStatus.ACTIVE.value,
            AppointmentHold.expires_at <= now,
        )
        .values(status=HoldStatus.EXPIRED.value, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount
