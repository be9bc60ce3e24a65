"""Dispatcher tests: outcome handling, retry budgets and terminal rows."""

from datetime import timedelta
import uuid

import pytest

from fieldops import worker
from fieldops.db.enums import (
    AuditAction,
    DeliveryStatus,
    JobOutcomeKind,
    JobStatus,
    JobType,
    MessageDirection,
)
from fieldops.db.models import AuditLog, ConversationMessage, Job
from fieldops.jobs.outcomes import PermanentJobError, TransientJobError
from fieldops.services import job_service, message_service, transport_service
from fieldops.services.transport_service import TransportError


@pytest.fixture
def queued_sms(db, make_contact, make_thread, now):
    contact = make_contact()
    thread = make_thread(contact)
    message = ConversationMessage(
        thread_id=thread.id,
        direction=MessageDirection.OUTBOUND.value,
        channel=thread.channel,
        body="We can come by Thursday morning.",
        to_address="+14045550134",
        delivery_status=DeliveryStatus.QUEUED.value,
        created_at=now,
    )
    db.add(message)
    db.commit()
    return message


@pytest.fixture
def use_transport(monkeypatch, recording_transport):
    monkeypatch.setattr(transport_service, "get_transport", lambda: recording_transport)
    return recording_transport


def _enqueue_send(db, message, now):
    return job_service.enqueue_job(
        db, JobType.MESSAGE_SEND, {"message_id": message.id}, run_at=now, now=now
    )


def test_compute_backoff_is_exponential_and_capped():
    assert worker.compute_backoff(1) == timedelta(seconds=30)
    assert worker.compute_backoff(2) == timedelta(seconds=60)
    assert worker.compute_backoff(4) == timedelta(seconds=240)
    assert worker.compute_backoff(20) == timedelta(seconds=3600)


@pytest.mark.asyncio
async def test_processed_job_is_finished(db, now, queued_sms, use_transport):
    job = _enqueue_send(db, queued_sms, now)

    kind = await worker.process_job(db, job, now=now)

    assert kind == JobOutcomeKind.PROCESSED
    assert job.status == JobStatus.PROCESSED.value
    assert job.processed_at == now
    assert len(use_transport.sent) == 1
    db.refresh(queued_sms)
    assert queued_sms.delivery_status == DeliveryStatus.SENT.value


@pytest.mark.asyncio
async def test_terminal_job_is_not_dispatched_again(db, now, queued_sms, use_transport):
    job = _enqueue_send(db, queued_sms, now)
    job_service.complete_job(db, job, now=now)

    kind = await worker.process_job(db, job, now=now)

    assert kind is None
    assert use_transport.sent == []


@pytest.mark.asyncio
async def test_unknown_job_type_fails_with_audit(db, now):
    job = Job(job_type="nope", payload={}, next_attempt_at=now)
    db.add(job)
    db.commit()

    kind = await worker.process_job(db, job, now=now)

    assert kind == JobOutcomeKind.FAILED
    assert job.status == JobStatus.FAILED.value
    assert job.last_error.startswith("unknown_job_type")
    audit = db.query(AuditLog).filter(AuditLog.action == AuditAction.JOB_FAILED.value).one()
    assert audit.entity_id == job.id


@pytest.mark.asyncio
async def test_invalid_payload_fails_without_calling_handler(db, now, use_transport):
    job = Job(job_type=JobType.MESSAGE_SEND.value, payload={"message_id": "not-a-uuid"}, next_attempt_at=now)
    db.add(job)
    db.commit()

    kind = await worker.process_job(db, job, now=now)

    assert kind == JobOutcomeKind.FAILED
    assert job.last_error.startswith("invalid_payload")
    assert use_transport.sent == []


@pytest.mark.asyncio
async def test_retryable_transport_error_defers_with_backoff(db, now, queued_sms, use_transport):
    use_transport.error = TransportError("twilio_request_failed", retryable=True, detail="status 503")
    job = _enqueue_send(db, queued_sms, now)

    kind = await worker.process_job(db, job, now=now)

    assert kind == JobOutcomeKind.RETRY
    assert job.processed_at is None
    assert job.attempts == 1
    assert job.next_attempt_at == now + timedelta(seconds=30)
    assert job.locked_by is None


@pytest.mark.asyncio
async def test_unexpected_exception_is_retried(db, now, queued_sms, monkeypatch):
    async def boom(*args, **kwargs):
        raise RuntimeError("database hiccup")

    monkeypatch.setattr(message_service, "deliver_message", boom)
    job = _enqueue_send(db, queued_sms, now)

    kind = await worker.process_job(db, job, now=now)

    assert kind == JobOutcomeKind.RETRY
    assert "RuntimeError" in job.last_error


@pytest.mark.asyncio
async def test_job_errors_map_to_outcomes(db, now, queued_sms, monkeypatch):
    retry_at = now + timedelta(minutes=7)

    async def transient(*args, **kwargs):
        raise TransientJobError("provider busy", retry_at)

    async def permanent(*args, **kwargs):
        raise PermanentJobError("bad recipient")

    monkeypatch.setattr(message_service, "deliver_message", transient)
    job = _enqueue_send(db, queued_sms, now)
    assert await worker.process_job(db, job, now=now) == JobOutcomeKind.RETRY
    assert job.next_attempt_at == retry_at

    monkeypatch.setattr(message_service, "deliver_message", permanent)
    assert await worker.process_job(db, job, now=retry_at) == JobOutcomeKind.FAILED
    assert job.last_error == "bad recipient"


@pytest.mark.asyncio
async def test_exhausted_send_budget_fails_job_and_message(db, now, queued_sms, use_transport):
    use_transport.error = TransportError("twilio_timeout", retryable=True)
    job = _enqueue_send(db, queued_sms, now)
    job.attempts = 7
    db.commit()

    kind = await worker.process_job(db, job, now=now)

    assert kind == JobOutcomeKind.FAILED
    assert job.status == JobStatus.FAILED.value
    assert job.last_error.startswith("retry_budget_exhausted: max_attempts=8")
    db.refresh(queued_sms)
    assert queued_sms.delivery_status == DeliveryStatus.FAILED.value
    actions = {row.action for row in db.query(AuditLog).all()}
    assert AuditAction.JOB_FAILED.value in actions
    assert AuditAction.MESSAGE_SEND_FAILED.value in actions


@pytest.mark.asyncio
async def test_process_batch_reports_stats(db, now, queued_sms, use_transport):
    _enqueue_send(db, queued_sms, now)
    job_service.enqueue_job(
        db, JobType.MESSAGE_SEND, {"message_id": uuid.uuid4()}, run_at=now, now=now
    )
    job_service.enqueue_job(
        db,
        JobType.MESSAGE_SEND,
        {"message_id": queued_sms.id},
        run_at=now + timedelta(hours=1),
        now=now,
    )

    stats = await worker.process_batch(db, limit=10, worker_id="test", now=now)

    assert stats.as_dict() == {
        "claimed": 2,
        "processed": 1,
        "skipped": 1,
        "retried": 0,
        "failed": 0,
    }
