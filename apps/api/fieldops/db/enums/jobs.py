"""Job-related enums."""

from enum import Enum


class JobType(str, Enum):
    """Types of background jobs."""

    MESSAGE_RECEIVED = "message.received"  # Inbound message -> autopilot draft phase
    AUTOPILOT_AUTOSEND = "autopilot.autosend"  # Release phase for a held draft
    MESSAGE_SEND = "message.send"  # Deliver a queued outbound message


class JobStatus(str, Enum):
    """Status of background jobs. Every status but PENDING is terminal."""

    PENDING = "pending"
    PROCESSED = "processed"
    SKIPPED = "skipped"
    FAILED = "failed"


class JobOutcomeKind(str, Enum):
    """What a handler decided for one invocation."""

    PROCESSED = "processed"
    SKIPPED = "skipped"
    RETRY = "retry"
    FAILED = "failed"
