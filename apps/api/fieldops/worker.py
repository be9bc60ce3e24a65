"""
Background worker for processing scheduled jobs.

Usage:
    python -m fieldops.worker

The worker claims due jobs in batches and runs each through its registered
handler. Handlers return a JobOutcome; the worker turns it into the job's
next state (processed, skipped, retried with backoff, or failed).
For production, run this as a separate process (e.g., systemd service, Docker container).
"""

from __future__ import annotations

import asyncio
import logging
import os
import socket
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError

from fieldops.core.config import settings
from fieldops.core.structured_logging import build_log_context
from fieldops.db.enums import ActorType, AuditAction, JobOutcomeKind, JobType
from fieldops.db.session import SessionLocal
from fieldops.jobs.outcomes import JobOutcome, PermanentJobError, TransientJobError
from fieldops.jobs.registry import resolve_job_spec
from fieldops.services import audit_service, job_service

logger = logging.getLogger(__name__)


@dataclass
class BatchStats:
    claimed: int = 0
    processed: int = 0
    skipped: int = 0
    retried: int = 0
    failed: int = 0

    def record(self, kind: JobOutcomeKind | None) -> None:
        if kind == JobOutcomeKind.PROCESSED:
            self.processed += 1
        elif kind == JobOutcomeKind.SKIPPED:
            self.skipped += 1
        elif kind == JobOutcomeKind.RETRY:
            self.retried += 1
        elif kind == JobOutcomeKind.FAILED:
            self.failed += 1

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def parse_worker_job_types(raw: str | None) -> list[str] | None:
    """
    Parse a comma-separated job type filter.

    Empty means "all types" (None). Unknown values are dropped, so a filter
    made only of unknown values claims nothing ([]).
    """
    if not raw or not raw.strip():
        return None
    valid = {job_type.value for job_type in JobType}
    requested = [value.strip() for value in raw.split(",") if value.strip()]
    unknown = [value for value in requested if value not in valid]
    if unknown:
        logger.warning("Ignoring unknown WORKER_JOB_TYPES values: %s", ", ".join(unknown))
    return [value for value in requested if value in valid]


def compute_backoff(attempt: int) -> timedelta:
    """Exponential backoff for the given (1-based) attempt number, capped."""
    base = settings.JOB_RETRY_BASE_SECONDS
    seconds = min(base * (2 ** max(attempt - 1, 0)), settings.JOB_RETRY_MAX_SECONDS)
    return timedelta(seconds=seconds)


def _default_worker_id(index: int = 0) -> str:
    return f"{socket.gethostname()}-{os.getpid()}-{index}"


# =============================================================================
# Single job
# =============================================================================


def _record_failure(db, job, error: str) -> None:
    audit_service.log_event(
        db,
        AuditAction.JOB_FAILED,
        actor_type=ActorType.SYSTEM,
        entity_type="job",
        entity_id=job.id,
        details={"job_type": job.job_type, "attempts": job.attempts, "error": error[:200]},
    )
    db.commit()


def _apply_outcome(
    db, job, spec, payload, outcome: JobOutcome, now: datetime
) -> JobOutcomeKind | None:
    log_context = build_log_context(job_id=job.id, job_type=job.job_type)

    if outcome.kind == JobOutcomeKind.PROCESSED:
        job_service.complete_job(db, job, now=now)
        logger.info("Job %s processed", job.id, extra=log_context)
        return JobOutcomeKind.PROCESSED

    if outcome.kind == JobOutcomeKind.SKIPPED:
        job_service.skip_job(db, job, reason=outcome.error, now=now)
        logger.info("Job %s skipped: %s", job.id, outcome.error, extra=log_context)
        return JobOutcomeKind.SKIPPED

    if outcome.kind == JobOutcomeKind.FAILED:
        error = outcome.error or "failed"
        if job_service.fail_job(db, job, error, now=now):
            _record_failure(db, job, error)
        logger.error("Job %s failed: %s", job.id, error, extra=log_context)
        return JobOutcomeKind.FAILED

    retry_at = outcome.next_attempt_at or now + compute_backoff(job.attempts + 1)
    exhausted = spec.retry_policy.exhausted(job.attempts + 1, job.created_at, retry_at)
    if exhausted:
        error = f"retry_budget_exhausted: {exhausted} (last: {outcome.error})"
        if job_service.fail_job(db, job, error, now=now):
            if spec.on_exhausted is not None and payload is not None:
                try:
                    spec.on_exhausted(db, job, payload, error)
                except Exception:
                    db.rollback()
                    logger.exception(
                        "on_exhausted hook failed for job %s", job.id, extra=log_context
                    )
            _record_failure(db, job, error)
        logger.warning("Job %s gave up: %s", job.id, error, extra=log_context)
        return JobOutcomeKind.FAILED

    job_service.retry_job(db, job, retry_at, error=outcome.error)
    logger.info(
        "Job %s deferred until %s: %s",
        job.id,
        retry_at.isoformat(),
        outcome.error,
        extra=log_context,
    )
    return JobOutcomeKind.RETRY


async def process_job(db, job, now: datetime | None = None) -> JobOutcomeKind | None:
    """
    Run one job through its handler and record the outcome.

    Returns the outcome applied, or None when the job was already terminal
    (a finished job is never handed to its handler again).
    """
    db.refresh(job)
    if job.processed_at is not None:
        return None

    log_context = build_log_context(job_id=job.id, job_type=job.job_type)
    logger.info(
        "Processing job %s (type=%s, attempt=%s)",
        job.id,
        job.job_type,
        job.attempts + 1,
        extra=log_context,
    )

    try:
        spec = resolve_job_spec(job.job_type)
    except ValueError:
        error = f"unknown_job_type: {job.job_type}"
        if job_service.fail_job(db, job, error, now=now):
            _record_failure(db, job, error)
        logger.error("Job %s has unknown type %s", job.id, job.job_type, extra=log_context)
        return JobOutcomeKind.FAILED

    try:
        payload = spec.payload_model.model_validate(job.payload or {})
    except ValidationError as exc:
        error = f"invalid_payload: {exc.error_count()} error(s)"
        if job_service.fail_job(db, job, error, now=now):
            _record_failure(db, job, error)
        logger.error("Job %s has an invalid payload", job.id, extra=log_context)
        return JobOutcomeKind.FAILED

    try:
        outcome = await spec.handler(db, job, payload, now=now)
    except PermanentJobError as exc:
        db.rollback()
        outcome = JobOutcome.failed(str(exc) or type(exc).__name__)
    except TransientJobError as exc:
        db.rollback()
        outcome = JobOutcome.retry(str(exc) or type(exc).__name__, exc.retry_at)
    except Exception as exc:
        db.rollback()
        logger.exception("Job %s raised %s", job.id, type(exc).__name__, extra=log_context)
        outcome = JobOutcome.retry(f"{type(exc).__name__}: {exc}")

    return _apply_outcome(db, job, spec, payload, outcome, now or datetime.now(timezone.utc))


# =============================================================================
# Batches and loops
# =============================================================================


async def process_batch(
    db,
    limit: int | None = None,
    worker_id: str | None = None,
    job_types: list[str] | None = None,
    now: datetime | None = None,
) -> BatchStats:
    """Claim up to ``limit`` due jobs and process them one by one."""
    stats = BatchStats()
    jobs = job_service.claim_due_jobs(
        db,
        limit=limit or settings.WORKER_BATCH_SIZE,
        worker_id=worker_id or _default_worker_id(),
        now=now,
        job_types=job_types,
    )
    stats.claimed = len(jobs)
    if jobs:
        logger.info("Claimed %s due jobs", len(jobs), extra=build_log_context(worker_id=worker_id))
    for job in jobs:
        stats.record(await process_job(db, job, now=now))
    return stats


async def worker_loop(worker_id: str | None = None, job_types: list[str] | None = None) -> None:
    """Main worker loop - polls for and processes due jobs."""
    worker_id = worker_id or _default_worker_id()
    logger.info(
        "Worker %s starting (poll interval: %ss, batch size: %s)",
        worker_id,
        settings.WORKER_POLL_INTERVAL,
        settings.WORKER_BATCH_SIZE,
    )
    while True:
        with SessionLocal() as db:
            try:
                await process_batch(db, worker_id=worker_id, job_types=job_types)
            except Exception:
                db.rollback()
                logger.exception("Error in worker loop", extra=build_log_context(worker_id=worker_id))
        await asyncio.sleep(settings.WORKER_POLL_INTERVAL)


async def run_workers(concurrency: int | None = None) -> None:
    """Run WORKER_CONCURRENCY poll loops side by side."""
    job_types = parse_worker_job_types(settings.WORKER_JOB_TYPES)
    count = max(1, concurrency or settings.WORKER_CONCURRENCY)
    if not settings.OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY not set - autopilot drafts are disabled")
    if settings.TRANSPORT_DRY_RUN:
        logger.warning("TRANSPORT_DRY_RUN enabled - messages will be logged but not sent")
    await asyncio.gather(
        *(worker_loop(_default_worker_id(index), job_types) for index in range(count))
    )


def main() -> None:
    """Entry point for the worker."""
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s [%(levelname)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    try:
        asyncio.run(run_workers())
    except KeyboardInterrupt:
        logger.info("Worker shutting down")
    except Exception:
        logger.exception("Worker crashed", extra=build_log_context(route="worker"))
        raise


if __name__ == "__main__":
    main()
