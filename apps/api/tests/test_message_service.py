"""Inbound ingestion, team replies and outbound delivery."""

from datetime import timedelta
import uuid

import pytest

from fieldops.db.enums import (
    AuditAction,
    Channel,
    DeliveryStatus,
    JobOutcomeKind,
    JobType,
    MessageDirection,
    ParticipantType,
)
from fieldops.db.models import (
    AuditLog,
    Contact,
    ConversationMessage,
    ConversationParticipant,
    ConversationThread,
    Job,
)
from fieldops.services import message_service
from fieldops.services.transport_service import TransportError


# =============================================================================
# Ingestion
# =============================================================================

def test_inbound_sms_creates_contact_thread_and_job(db, now):
    message = message_service.record_inbound_message(
        db,
        channel=Channel.SMS.value,
        from_address="404-555-0199",
        body="Need a mattress picked up",
        display_name="Alex",
        now=now,
    )

    contact = db.query(Contact).one()
    assert contact.phone_e164 == "+14045550199"
    assert contact.first_name == "Alex"
    thread = db.query(ConversationThread).one()
    assert thread.contact_id == contact.id
    assert thread.last_message_at == now
    assert thread.last_message_preview == "Need a mattress picked up"
    assert message.direction == MessageDirection.INBOUND.value
    assert message.delivery_status == DeliveryStatus.DELIVERED.value

    job = db.query(Job).one()
    assert job.job_type == JobType.MESSAGE_RECEIVED.value
    assert job.idempotency_key == f"message.received:{message.id}"
    assert job.next_attempt_at == now
    assert job.payload["message_id"] == str(message.id)


def test_inbound_reuses_known_contact_and_open_thread(db, now, make_contact, make_thread):
    contact = make_contact()
    thread = make_thread(contact)

    message = message_service.record_inbound_message(
        db,
        channel=Channel.SMS.value,
        from_address="(404) 555-0134",
        body="Following up",
        now=now,
    )

    assert message.thread_id == thread.id
    assert db.query(Contact).count() == 1
    assert db.query(ConversationThread).count() == 1


def test_inbound_email_matches_normalized_address(db, now, make_contact):
    contact = make_contact(email="jamie@example.com")

    message = message_service.record_inbound_message(
        db,
        channel=Channel.EMAIL.value,
        from_address="  Jamie@Example.com ",
        subject="Estimate",
        body="How much for a piano?",
        now=now,
    )

    assert message.thread.contact_id == contact.id
    assert message.thread.subject == "Estimate"


def test_dm_sender_is_recognized_by_participant_address(db, now):
    first = message_service.record_inbound_message(
        db, channel=Channel.DM.value, from_address="psid-7", body="hi", dm_page_id="page-1", now=now
    )
    second = message_service.record_inbound_message(
        db,
        channel=Channel.DM.value,
        from_address="psid-7",
        body="you there?",
        dm_page_id="page-1",
        now=now + timedelta(minutes=1),
    )

    assert second.thread_id == first.thread_id
    assert db.query(Contact).count() == 1
    participant = (
        db.query(ConversationParticipant)
        .filter(ConversationParticipant.participant_type == ParticipantType.CONTACT.value)
        .one()
    )
    assert participant.external_address == "psid-7"


# =============================================================================
# Replies and calls
# =============================================================================

def test_team_reply_is_queued_for_delivery(db, now, make_contact, make_thread):
    thread = make_thread(make_contact())
    member_id = uuid.uuid4()

    reply = message_service.record_team_reply(
        db, thread_id=thread.id, team_member_id=member_id, body="On our way", now=now
    )
    message_service.record_team_reply(
        db, thread_id=thread.id, team_member_id=member_id, body="Running late", now=now
    )

    assert reply.delivery_status == DeliveryStatus.QUEUED.value
    assert reply.to_address == "+14045550134"
    assert reply.is_draft is False
    team = db.query(ConversationParticipant).filter(
        ConversationParticipant.team_member_id == member_id
    )
    assert team.count() == 1
    assert db.query(Job).filter(Job.job_type == JobType.MESSAGE_SEND.value).count() == 2


def test_team_reply_unknown_thread_raises(db, now):
    with pytest.raises(ValueError):
        message_service.record_team_reply(
            db, thread_id=uuid.uuid4(), team_member_id=uuid.uuid4(), body="hello", now=now
        )


def test_call_connected_is_audited(db, now, make_contact):
    contact = make_contact()

    message_service.log_call_connected(db, contact.id, call_id="CA123", now=now)

    entry = db.query(AuditLog).one()
    assert entry.action == AuditAction.CALL_CONNECTED.value
    assert entry.contact_id == contact.id
    assert entry.details["call_id"] == "CA123"
    assert entry.created_at == now


# =============================================================================
# Delivery
# =============================================================================

def _outbound(db, thread, **fields):
    values = {
        "thread_id": thread.id,
        "direction": MessageDirection.OUTBOUND.value,
        "channel": thread.channel,
        "body": "See you Thursday",
        "to_address": "+14045550134",
        "delivery_status": DeliveryStatus.QUEUED.value,
    }
    values.update(fields)
    message = ConversationMessage(**values)
    db.add(message)
    db.commit()
    return message


@pytest.mark.asyncio
async def test_deliver_marks_message_sent(db, now, make_contact, make_thread, recording_transport):
    message = _outbound(db, make_thread(make_contact()))

    outcome = await message_service.deliver_message(
        db, message.id, transport=recording_transport, now=now
    )

    assert outcome.kind == JobOutcomeKind.PROCESSED
    db.refresh(message)
    assert message.delivery_status == DeliveryStatus.SENT.value
    assert message.provider == "recording"
    assert message.provider_message_id == "rec-1"
    assert message.sent_at == now


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "fields, reason",
    [
        ({"is_draft": True, "delivery_status": None}, "message_is_draft"),
        ({"delivery_status": DeliveryStatus.SENT.value}, "already_sent"),
        ({"direction": MessageDirection.INBOUND.value}, "not_outbound"),
    ],
)
async def test_deliver_skips_messages_that_must_not_go_out(
    db, now, make_contact, make_thread, recording_transport, fields, reason
):
    message = _outbound(db, make_thread(make_contact()), **fields)

    outcome = await message_service.deliver_message(
        db, message.id, transport=recording_transport, now=now
    )

    assert outcome.kind == JobOutcomeKind.SKIPPED
    assert outcome.error == reason
    assert recording_transport.sent == []


@pytest.mark.asyncio
async def test_deliver_missing_message_is_skipped(db, now, recording_transport):
    outcome = await message_service.deliver_message(
        db, uuid.uuid4(), transport=recording_transport, now=now
    )
    assert outcome.error == "message_not_found"


@pytest.mark.asyncio
async def test_deliver_without_recipient_fails(db, now, make_contact, make_thread, recording_transport):
    message = _outbound(db, make_thread(make_contact()), to_address=None)

    outcome = await message_service.deliver_message(
        db, message.id, transport=recording_transport, now=now
    )

    assert outcome.kind == JobOutcomeKind.FAILED
    db.refresh(message)
    assert message.delivery_status == DeliveryStatus.FAILED.value
    assert message.failure_detail == "missing_recipient"
    assert db.query(AuditLog).filter(
        AuditLog.action == AuditAction.MESSAGE_SEND_FAILED.value
    ).count() == 1


@pytest.mark.asyncio
async def test_retryable_transport_error_keeps_message_queued(
    db, now, make_contact, make_thread, recording_transport
):
    message = _outbound(db, make_thread(make_contact()))
    recording_transport.error = TransportError("twilio_request_failed", retryable=True, detail="status 503")

    outcome = await message_service.deliver_message(
        db, message.id, transport=recording_transport, now=now
    )

    assert outcome.kind == JobOutcomeKind.RETRY
    db.refresh(message)
    assert message.delivery_status == DeliveryStatus.QUEUED.value


@pytest.mark.asyncio
async def test_rejected_send_marks_message_failed(
    db, now, make_contact, make_thread, recording_transport
):
    message = _outbound(db, make_thread(make_contact()))
    recording_transport.error = TransportError("sms_not_configured", retryable=False)

    outcome = await message_service.deliver_message(
        db, message.id, transport=recording_transport, now=now
    )

    assert outcome.kind == JobOutcomeKind.FAILED
    assert outcome.error == "sms_not_configured"
    db.refresh(message)
    assert message.delivery_status == DeliveryStatus.FAILED.value
    assert message.failure_detail == "sms_not_configured"
