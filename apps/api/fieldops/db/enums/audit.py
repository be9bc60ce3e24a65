"""Audit enums."""

from enum import Enum


class AuditAction(str, Enum):
    """Audit trail actions written by the automation core."""

    # Autopilot
    AUTOPILOT_DRAFT_CREATED = "autopilot.draft_created"
    AUTOPILOT_AUTOSEND_SKIPPED = "autopilot.autosend_skipped"
    AUTOPILOT_AUTOSENT = "autopilot.autosent"
    AUTOPILOT_AUTOSEND_ABANDONED = "autopilot.autosend_abandoned"  # Retry budget exhausted

    # Messaging
    MESSAGE_SEND_FAILED = "message.send_failed"
    CALL_CONNECTED = "sales.call.connected"  # Human phone call reached the contact

    # Booking
    BOOKING_HOLD_CREATED = "booking.hold_created"
    BOOKING_CONFIRMED = "booking.confirmed"
    BOOKING_REJECTED = "booking.rejected"

    # Jobs
    JOB_FAILED = "job.failed"


class ActorType(str, Enum):
    SYSTEM = "system"
    AI = "ai"
    TEAM = "team"
