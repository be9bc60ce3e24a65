"""Job handler registry.

One ``JobSpec`` per ``JobType``: payload model, handler and retry budget.
The mapping is checked for completeness at import, so adding a JobType
without a handler fails at startup instead of at dispatch.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Mapping

from fieldops.core.config import settings
from fieldops.db.enums import JobType
from fieldops.jobs.handlers import autopilot, messages
from fieldops.jobs.outcomes import JobSpec, RetryPolicy
from fieldops.schemas.jobs import JOB_PAYLOAD_MODELS

JOB_SPECS: Mapping[JobType, JobSpec] = {
    JobType.MESSAGE_RECEIVED: JobSpec(
        payload_model=JOB_PAYLOAD_MODELS[JobType.MESSAGE_RECEIVED],
        handler=autopilot.process_message_received,
        retry_policy=RetryPolicy(max_attempts=settings.MESSAGE_RECEIVED_MAX_ATTEMPTS),
    ),
    JobType.AUTOPILOT_AUTOSEND: JobSpec(
        payload_model=JOB_PAYLOAD_MODELS[JobType.AUTOPILOT_AUTOSEND],
        handler=autopilot.process_autopilot_autosend,
        retry_policy=RetryPolicy(max_age=timedelta(hours=settings.AUTOSEND_MAX_AGE_HOURS)),
        on_exhausted=autopilot.on_autosend_exhausted,
    ),
    JobType.MESSAGE_SEND: JobSpec(
        payload_model=JOB_PAYLOAD_MODELS[JobType.MESSAGE_SEND],
        handler=messages.process_message_send,
        retry_policy=RetryPolicy(max_attempts=settings.MESSAGE_SEND_MAX_ATTEMPTS),
        on_exhausted=messages.on_message_send_exhausted,
    ),
}

_missing = set(JobType) - set(JOB_SPECS)
if _missing:
    raise RuntimeError(f"JobTypes without a handler: {sorted(t.value for t in _missing)}")


def resolve_job_spec(job_type: str) -> JobSpec:
    try:
        return JOB_SPECS[JobType(job_type)]
    except ValueError as exc:
        raise ValueError(f"Unknown job type: {job_type}") from exc
