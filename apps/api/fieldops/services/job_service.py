"""Job service - the durable outbox behind every deferred action.

Rows are claimed with a lease and finished with single-statement conditional
updates (``WHERE processed_at IS NULL``), so overlapping dispatcher workers
never both finish the same job; the loser sees ``False`` and moves on.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fieldops.core.config import settings
from fieldops.db.enums import JobStatus, JobType
from fieldops.db.models import Job
from fieldops.db.session import is_postgres
from fieldops.schemas.jobs import JOB_PAYLOAD_MODELS

logger = logging.getLogger(__name__)


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(timezone.utc)


def truncate_error(error: str | None) -> str | None:
    if error is None:
        return None
    limit = settings.JOB_ERROR_MAX_LENGTH
    return error if len(error) <= limit else error[: limit - 3] + "..."


def validate_payload(job_type: JobType, payload: BaseModel | dict) -> dict:
    """Validate a payload against the model registered for its job type."""
    model_cls = JOB_PAYLOAD_MODELS[job_type]
    if isinstance(payload, model_cls):
        model = payload
    else:
        data = payload.model_dump() if isinstance(payload, BaseModel) else payload
        model = model_cls.model_validate(data)
    return model.model_dump(mode="json")


# =============================================================================
# Enqueue
# =============================================================================


def enqueue_job(
    db: Session,
    job_type: JobType,
    payload: BaseModel | dict,
    run_at: datetime | None = None,
    idempotency_key: str | None = None,
    commit: bool = True,
    now: datetime | None = None,
) -> Job:
    """
    Enqueue a new job.

    If run_at is None (or in the past) the job is due immediately.
    If idempotency_key is provided and a job with that key exists, the
    existing job is returned instead of creating a duplicate.
    With commit=False the row is only flushed so the caller can commit it
    together with its own writes.
    """
    data = validate_payload(job_type, payload)

    if idempotency_key:
        existing = get_job_by_idempotency_key(db, idempotency_key)
        if existing:
            return existing

    job = Job(
        job_type=job_type.value,
        payload=data,
        status=JobStatus.PENDING.value,
        attempts=0,
        next_attempt_at=run_at or _now(now),
        idempotency_key=idempotency_key,
    )
    if now is not None:
        job.created_at = now

    if not idempotency_key:
        db.add(job)
        if commit:
            db.commit()
            db.refresh(job)
        else:
            db.flush()
        return job

    # A concurrent enqueue may win the unique key between our lookup and insert
    try:
        with db.begin_nested():
            db.add(job)
    except IntegrityError:
        existing = get_job_by_idempotency_key(db, idempotency_key)
        if existing is None:
            raise
        return existing
    if commit:
        db.commit()
        db.refresh(job)
    return job


# =============================================================================
# Queries
# =============================================================================


def get_job(db: Session, job_id: UUID) -> Job | None:
    """Get a job by ID."""
    return db.query(Job).filter(Job.id == job_id).first()


def get_job_by_idempotency_key(db: Session, key: str) -> Job | None:
    return db.query(Job).filter(Job.idempotency_key == key).first()


def list_jobs(
    db: Session,
    status: JobStatus | None = None,
    job_type: JobType | None = None,
    limit: int = 50,
) -> list[Job]:
    """List jobs with optional filters, newest first."""
    query = db.query(Job)
    if status:
        query = query.filter(Job.status == status.value)
    if job_type:
        query = query.filter(Job.job_type == job_type.value)
    return query.order_by(Job.created_at.desc()).limit(limit).all()


def find_pending_job(db: Session, job_type: JobType, payload_key: str, value: str) -> Job | None:
    """Find an unprocessed job of ``job_type`` whose payload[payload_key] == value."""
    return (
        db.query(Job)
        .filter(
            Job.job_type == job_type.value,
            Job.processed_at.is_(None),
            Job.payload[payload_key].as_string() == value,
        )
        .order_by(Job.created_at.desc())
        .first()
    )


# =============================================================================
# Claim
# =============================================================================


def claim_due_jobs(
    db: Session,
    limit: int,
    worker_id: str,
    now: datetime | None = None,
    lease_seconds: int | None = None,
    job_types: list[str] | None = None,
) -> list[Job]:
    """
    Claim up to ``limit`` due jobs for ``worker_id``.

    Candidates are unprocessed, due, and not leased by a live worker. Each is
    taken with a compare-and-set update on the lease, so two workers polling
    at once never receive the same row. On PostgreSQL the candidate select
    also uses FOR UPDATE SKIP LOCKED to keep workers off each other's rows.
    A crashed worker's lease simply expires and the job becomes claimable.
    """
    now = _now(now)
    lease_until = now + timedelta(seconds=lease_seconds or settings.WORKER_LEASE_SECONDS)
    lease_free = or_(Job.locked_until.is_(None), Job.locked_until <= now)

    query = db.query(Job.id).filter(
        Job.processed_at.is_(None),
        Job.next_attempt_at <= now,
        lease_free,
    )
    if job_types is not None:
        if not job_types:
            return []
        query = query.filter(Job.job_type.in_(job_types))
    query = query.order_by(Job.next_attempt_at, Job.created_at).limit(limit)
    if is_postgres(db):
        query = query.with_for_update(skip_locked=True)

    candidate_ids = [row.id for row in query.all()]
    claimed_ids = []
    for job_id in candidate_ids:
        result = db.execute(
            update(Job)
            .where(Job.id == job_id, Job.processed_at.is_(None), lease_free)
            .values(locked_until=lease_until, locked_by=worker_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            claimed_ids.append(job_id)
    db.commit()

    if not claimed_ids:
        return []
    return (
        db.query(Job)
        .filter(Job.id.in_(claimed_ids))
        .order_by(Job.next_attempt_at, Job.created_at)
        .all()
    )


# =============================================================================
# Outcomes
# =============================================================================


def _finish(
    db: Session,
    job: Job,
    status: JobStatus,
    error: str | None,
    now: datetime | None,
    count_attempt: bool,
) -> bool:
    values = {
        "status": status.value,
        "processed_at": _now(now),
        "last_error": truncate_error(error),
        "locked_until": None,
        "locked_by": None,
    }
    if count_attempt:
        values["attempts"] = Job.attempts + 1
    result = db.execute(
        update(Job)
        .where(Job.id == job.id, Job.processed_at.is_(None))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    db.refresh(job)
    return result.rowcount == 1


def complete_job(db: Session, job: Job, now: datetime | None = None) -> bool:
    """Mark a job processed. Returns False if it was already terminal."""
    return _finish(db, job, JobStatus.PROCESSED, None, now, count_attempt=False)


def skip_job(db: Session, job: Job, reason: str | None = None, now: datetime | None = None) -> bool:
    """Mark a job skipped (terminal, not an error). Reason is kept in last_error."""
    return _finish(db, job, JobStatus.SKIPPED, reason, now, count_attempt=False)


def fail_job(db: Session, job: Job, error: str, now: datetime | None = None) -> bool:
    """Mark a job permanently failed."""
    return _finish(db, job, JobStatus.FAILED, error, now, count_attempt=True)


def retry_job(
    db: Session,
    job: Job,
    next_attempt_at: datetime,
    error: str | None = None,
) -> bool:
    """
    Reschedule a job: attempts += 1, next_attempt_at moves forward, lease cleared.

    next_attempt_at never moves backwards.
    """
    current = job.next_attempt_at
    if current is not None and next_attempt_at < current:
        next_attempt_at = current
    result = db.execute(
        update(Job)
        .where(Job.id == job.id, Job.processed_at.is_(None))
        .values(
            attempts=Job.attempts + 1,
            next_attempt_at=next_attempt_at,
            last_error=truncate_error(error),
            locked_until=None,
            locked_by=None,
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()
    db.refresh(job)
    return result.rowcount == 1


def rearm_job(db: Session, job: Job, next_attempt_at: datetime, commit: bool = True) -> bool:
    """
    Reset an unprocessed job to a fresh schedule (attempts back to zero).

    Used when a caller re-queues the same work, e.g. a released draft whose
    delivery job already exists.
    """
    result = db.execute(
        update(Job)
        .where(Job.id == job.id, Job.processed_at.is_(None))
        .values(attempts=0, next_attempt_at=next_attempt_at, last_error=None)
        .execution_options(synchronize_session=False)
    )
    if commit:
        db.commit()
    else:
        db.flush()
    db.refresh(job)
    return result.rowcount == 1
