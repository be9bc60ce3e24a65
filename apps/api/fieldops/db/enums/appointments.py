"""Appointment-related enums."""

from enum import Enum


class AppointmentStatus(str, Enum):
    """Status of booked appointments."""

    REQUESTED = "requested"  # Customer asked, not yet holding capacity
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    NO_SHOW = "no_show"
    CANCELED = "canceled"


class HoldStatus(str, Enum):
    """Status of provisional slot holds."""

    ACTIVE = "active"
    RELEASED = "released"
    CONVERTED = "converted"  # Became a confirmed appointment
    EXPIRED = "expired"


class BookingRejection(str, Enum):
    """Structured reasons a booking request is not admitted."""

    SLOT_FULL = "slot_full"
    DAY_FULL = "day_full"
    OUTSIDE_SERVICE_DAYS = "outside_service_days"
    OUTSIDE_BUSINESS_HOURS = "outside_business_hours"
    OUTSIDE_BOOKING_WINDOW = "outside_booking_window"
    START_IN_PAST = "start_in_past"
    INVALID_DURATION = "invalid_duration"
    HOLD_NOT_FOUND = "hold_not_found"
    HOLD_EXPIRED = "hold_expired"
