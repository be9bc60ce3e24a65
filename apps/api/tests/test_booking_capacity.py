"""Capacity admission, calendar rules and the hold/appointment writers."""

from datetime import datetime, timedelta, timezone
import uuid

import pytest

from fieldops.db.enums import AppointmentStatus, AuditAction, BookingRejection, HoldStatus
from fieldops.db.models import Appointment, AppointmentHold, AuditLog
from fieldops.services import booking_service
from fieldops.services.booking_service import BookingRejected, check_booking_admission
from fieldops.services.policy_service import BookingPolicy, PolicySnapshot


@pytest.fixture
def slot(now):
    # Tuesday 09:00 America/New_York
    return now + timedelta(days=1)


def _appointment(db, start, minutes=60, status=AppointmentStatus.CONFIRMED.value, **extra):
    appointment = Appointment(
        start_at=start,
        end_at=start + timedelta(minutes=minutes),
        duration_minutes=minutes,
        status=status,
        **extra,
    )
    db.add(appointment)
    db.commit()
    return appointment


def _hold(db, start, expires_at, minutes=60, status=HoldStatus.ACTIVE.value):
    hold = AppointmentHold(
        start_at=start,
        end_at=start + timedelta(minutes=minutes),
        duration_minutes=minutes,
        status=status,
        expires_at=expires_at,
    )
    db.add(hold)
    db.commit()
    return hold


# =============================================================================
# Pure admission
# =============================================================================

def test_intervals_are_half_open(slot):
    end = slot + timedelta(hours=1)
    assert booking_service.intervals_overlap(slot, end, end, end + timedelta(hours=1)) is False
    assert booking_service.intervals_overlap(slot, end, end - timedelta(minutes=1), end) is True


def test_admits_below_capacity_and_rejects_at_capacity(db, now, slot):
    _appointment(db, slot)
    result = check_booking_admission(db, slot, 60, capacity=2, now=now)
    assert result.admitted is True
    assert result.overlapping == 1

    _appointment(db, slot + timedelta(minutes=30))
    result = check_booking_admission(db, slot, 60, capacity=2, now=now)
    assert result.admitted is False
    assert result.code == BookingRejection.SLOT_FULL
    assert result.overlapping == 2
    assert result.capacity == 2


def test_back_to_back_jobs_do_not_overlap(db, now, slot):
    _appointment(db, slot - timedelta(hours=1))
    _appointment(db, slot + timedelta(hours=1))

    result = check_booking_admission(db, slot, 60, capacity=1, now=now)

    assert result.admitted is True
    assert result.overlapping == 0


def test_completed_and_canceled_appointments_free_capacity(db, now, slot):
    _appointment(db, slot, completed_at=now)
    _appointment(db, slot, status=AppointmentStatus.CANCELED.value)
    _appointment(db, slot, status=AppointmentStatus.REQUESTED.value)

    assert check_booking_admission(db, slot, 60, capacity=1, now=now).admitted is True


def test_only_live_holds_consume_capacity(db, now, slot):
    _hold(db, slot, expires_at=now - timedelta(seconds=1))
    _hold(db, slot, expires_at=now + timedelta(minutes=10), status=HoldStatus.RELEASED.value)
    assert check_booking_admission(db, slot, 60, capacity=1, now=now).admitted is True

    live = _hold(db, slot, expires_at=now + timedelta(minutes=10))
    result = check_booking_admission(db, slot, 60, capacity=1, now=now)
    assert result.code == BookingRejection.SLOT_FULL

    excluded = check_booking_admission(db, slot, 60, capacity=1, now=now, exclude_hold_id=live.id)
    assert excluded.admitted is True


def test_hold_stops_counting_once_expired(db, now, slot):
    _hold(db, slot, expires_at=now + timedelta(minutes=15))

    assert check_booking_admission(db, slot, 60, capacity=1, now=now).admitted is False
    later = now + timedelta(minutes=15)
    assert check_booking_admission(db, slot, 60, capacity=1, now=later).admitted is True


@pytest.mark.parametrize("duration", [0, -30, 721])
def test_invalid_duration_rejected(db, now, slot, duration):
    result = check_booking_admission(db, slot, duration, capacity=2, now=now)
    assert result.code == BookingRejection.INVALID_DURATION


def test_start_in_past_rejected(db, now):
    result = check_booking_admission(db, now - timedelta(minutes=1), 60, capacity=2, now=now)
    assert result.code == BookingRejection.START_IN_PAST


# =============================================================================
# Calendar rules (policy supplied)
# =============================================================================

def test_policy_rejects_closed_day(db, now):
    sunday = datetime(2026, 3, 8, 15, 0, tzinfo=timezone.utc)
    result = check_booking_admission(db, sunday, 60, capacity=2, now=now, policy=PolicySnapshot())
    assert result.code == BookingRejection.OUTSIDE_SERVICE_DAYS


def test_policy_rejects_outside_business_hours(db, now, slot):
    policy = PolicySnapshot()
    early = slot - timedelta(hours=2)  # 07:00 local
    assert check_booking_admission(
        db, early, 60, capacity=2, now=now, policy=policy
    ).code == BookingRejection.OUTSIDE_BUSINESS_HOURS

    late_finish = slot + timedelta(hours=8, minutes=30)  # 17:30 local, ends 18:30
    assert check_booking_admission(
        db, late_finish, 60, capacity=2, now=now, policy=policy
    ).code == BookingRejection.OUTSIDE_BUSINESS_HOURS


def test_policy_rejects_outside_booking_window(db, now, slot):
    result = check_booking_admission(
        db, slot + timedelta(days=42), 60, capacity=2, now=now, policy=PolicySnapshot()
    )
    assert result.code == BookingRejection.OUTSIDE_BOOKING_WINDOW


def test_policy_rejects_holiday_when_closed(db, now):
    memorial_day = datetime(2026, 5, 25, 14, 0, tzinfo=timezone.utc)
    open_policy = PolicySnapshot(booking=BookingPolicy(booking_window_days=365))
    closed_policy = PolicySnapshot(
        booking=BookingPolicy(booking_window_days=365, closed_on_holidays=True)
    )

    assert check_booking_admission(
        db, memorial_day, 60, capacity=2, now=now, policy=open_policy
    ).admitted is True
    assert check_booking_admission(
        db, memorial_day, 60, capacity=2, now=now, policy=closed_policy
    ).code == BookingRejection.OUTSIDE_SERVICE_DAYS


def test_policy_enforces_daily_job_limit(db, now, slot):
    _appointment(db, slot + timedelta(hours=4))
    policy = PolicySnapshot(booking=BookingPolicy(max_jobs_per_day=1))

    result = check_booking_admission(db, slot, 60, capacity=2, now=now, policy=policy)

    assert result.code == BookingRejection.DAY_FULL


def test_policy_buffer_pads_existing_jobs(db, now, slot):
    _appointment(db, slot - timedelta(minutes=80))  # ends 20 minutes before slot
    padded = PolicySnapshot(booking=BookingPolicy(buffer_minutes=30))
    unpadded = PolicySnapshot(booking=BookingPolicy(buffer_minutes=0))

    assert check_booking_admission(
        db, slot, 60, capacity=1, now=now, policy=padded
    ).code == BookingRejection.SLOT_FULL
    assert check_booking_admission(
        db, slot, 60, capacity=1, now=now, policy=unpadded
    ).admitted is True


# =============================================================================
# Writers
# =============================================================================

def test_hold_then_confirm(db, now, slot, make_contact):
    contact = make_contact()
    policy = PolicySnapshot(booking=BookingPolicy(capacity=1))

    hold = booking_service.create_hold(db, contact.id, slot, 90, policy, now=now)
    assert hold.status == HoldStatus.ACTIVE.value
    assert hold.expires_at == now + timedelta(minutes=15)

    appointment = booking_service.confirm_hold(db, hold.id, policy, now=now + timedelta(minutes=5))
    db.refresh(hold)
    assert hold.status == HoldStatus.CONVERTED.value
    assert appointment.hold_id == hold.id
    assert appointment.end_at == slot + timedelta(minutes=90)
    assert appointment.status == AppointmentStatus.CONFIRMED.value


def test_second_hold_in_full_slot_is_rejected_and_audited(db, now, slot, make_contact):
    policy = PolicySnapshot(booking=BookingPolicy(capacity=1))
    first, second = make_contact(), make_contact()
    booking_service.create_hold(db, first.id, slot, 60, policy, now=now)

    with pytest.raises(BookingRejected) as exc_info:
        booking_service.create_hold(db, second.id, slot + timedelta(minutes=30), 60, policy, now=now)

    assert exc_info.value.code == BookingRejection.SLOT_FULL
    rejected = db.query(AuditLog).filter(AuditLog.action == AuditAction.BOOKING_REJECTED.value).one()
    assert rejected.contact_id == second.id
    assert rejected.details["code"] == "slot_full"
    assert db.query(AppointmentHold).count() == 1


def test_new_hold_releases_contacts_previous_hold(db, now, slot, make_contact):
    contact = make_contact()
    policy = PolicySnapshot(booking=BookingPolicy(capacity=1))
    first = booking_service.create_hold(db, contact.id, slot, 60, policy, now=now)

    booking_service.create_hold(db, contact.id, slot, 60, policy, now=now)

    db.refresh(first)
    assert first.status == HoldStatus.RELEASED.value


def test_confirm_rejects_missing_and_expired_holds(db, now, slot, make_contact):
    policy = PolicySnapshot()
    hold = booking_service.create_hold(db, make_contact().id, slot, 60, policy, now=now)

    with pytest.raises(BookingRejected) as expired:
        booking_service.confirm_hold(db, hold.id, policy, now=now + timedelta(minutes=15))
    assert expired.value.code == BookingRejection.HOLD_EXPIRED

    with pytest.raises(BookingRejected) as missing:
        booking_service.confirm_hold(db, uuid.uuid4(), policy, now=now)
    assert missing.value.code == BookingRejection.HOLD_NOT_FOUND


def test_book_appointment_directly(db, now, slot, make_contact):
    policy = PolicySnapshot(booking=BookingPolicy(capacity=1))
    contact = make_contact()

    appointment = booking_service.book_appointment(db, contact.id, slot, 120, policy, now=now)
    assert appointment.duration_minutes == 120

    with pytest.raises(BookingRejected):
        booking_service.book_appointment(db, contact.id, slot + timedelta(hours=1), 60, policy, now=now)


def test_release_and_expire_holds(db, now, slot, make_contact):
    policy = PolicySnapshot()
    released = booking_service.create_hold(db, make_contact().id, slot, 60, policy, now=now)
    booking_service.create_hold(db, make_contact().id, slot + timedelta(hours=2), 60, policy, now=now)

    assert booking_service.release_hold(db, released.id, now=now) is True
    assert booking_service.release_hold(db, released.id, now=now) is False
    assert booking_service.expire_holds(db, now=now + timedelta(minutes=5)) == 0
    assert booking_service.expire_holds(db, now=now + timedelta(minutes=15)) == 1
