"""Centralized defaults for enums."""

from fieldops.db.enums.appointments import AppointmentStatus, HoldStatus
from fieldops.db.enums.contacts import PipelineStage
from fieldops.db.enums.jobs import JobStatus
from fieldops.db.enums.messaging import ThreadStatus


DEFAULT_JOB_STATUS: JobStatus = JobStatus.PENDING
DEFAULT_PIPELINE_STAGE: PipelineStage = PipelineStage.NEW
DEFAULT_THREAD_STATUS: ThreadStatus = ThreadStatus.OPEN
DEFAULT_THREAD_STATE: str = "new"
DEFAULT_APPOINTMENT_STATUS: AppointmentStatus = AppointmentStatus.CONFIRMED
DEFAULT_HOLD_STATUS: HoldStatus = HoldStatus.ACTIVE
