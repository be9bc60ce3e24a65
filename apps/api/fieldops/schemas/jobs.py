"""Pydantic schemas for background jobs.

Each JobType carries its own payload model; ``JOB_PAYLOAD_MODELS`` is the
closed mapping used to validate payloads on enqueue and again on dispatch.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from fieldops.db.enums import JobType


class JobPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class MessageReceivedPayload(JobPayload):
    """Inbound message stored; run the autopilot draft phase."""
    message_id: UUID
    thread_id: UUID | None = None
    channel: str | None = None


class AutosendPayload(JobPayload):
    """Held draft is due; run the autopilot release phase."""
    draft_message_id: UUID
    inbound_message_id: UUID | None = None


class MessageSendPayload(JobPayload):
    """Deliver a queued outbound message through the transport."""
    message_id: UUID


JOB_PAYLOAD_MODELS: dict[JobType, type[JobPayload]] = {
    JobType.MESSAGE_RECEIVED: MessageReceivedPayload,
    JobType.AUTOPILOT_AUTOSEND: AutosendPayload,
    JobType.MESSAGE_SEND: MessageSendPayload,
}


class JobRead(BaseModel):
    """Job response schema."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    job_type: str
    payload: dict
    status: str
    attempts: int
    next_attempt_at: datetime
    last_error: str | None
    created_at: datetime
    processed_at: datetime | None


class BatchStatsRead(BaseModel):
    """Result of one dispatcher batch."""
    claimed: int
    processed: int
    skipped: int
    retried: int
    failed: int
