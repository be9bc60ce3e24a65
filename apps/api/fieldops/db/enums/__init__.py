"""Enum definitions for application constants."""

from fieldops.db.enums.appointments import AppointmentStatus, BookingRejection, HoldStatus
from fieldops.db.enums.audit import ActorType, AuditAction
from fieldops.db.enums.contacts import PipelineStage
from fieldops.db.enums.defaults import (
    DEFAULT_APPOINTMENT_STATUS,
    DEFAULT_HOLD_STATUS,
    DEFAULT_JOB_STATUS,
    DEFAULT_PIPELINE_STAGE,
    DEFAULT_THREAD_STATE,
    DEFAULT_THREAD_STATUS,
)
from fieldops.db.enums.jobs import JobOutcomeKind, JobStatus, JobType
from fieldops.db.enums.messaging import (
    REPLY_CHANNELS,
    Channel,
    DeliveryStatus,
    MessageDirection,
    ParticipantType,
    ThreadStatus,
)

__all__ = [
    "ActorType",
    "AppointmentStatus",
    "AuditAction",
    "BookingRejection",
    "Channel",
    "DEFAULT_APPOINTMENT_STATUS",
    "DEFAULT_HOLD_STATUS",
    "DEFAULT_JOB_STATUS",
    "DEFAULT_PIPELINE_STAGE",
    "DEFAULT_THREAD_STATE",
    "DEFAULT_THREAD_STATUS",
    "DeliveryStatus",
    "HoldStatus",
    "JobOutcomeKind",
    "JobStatus",
    "JobType",
    "MessageDirection",
    "ParticipantType",
    "PipelineStage",
    "REPLY_CHANNELS",
    "ThreadStatus",
]
