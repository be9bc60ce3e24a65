"""Message service - inbound ingestion, human replies and outbound delivery.

Ingestion stores the inbound message and enqueues ``message.received`` in the
same transaction, so the autopilot draft phase always sees a committed row.
Delivery re-reads the message on every attempt; a job never trusts the state
it saw when it was enqueued.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from fieldops.core.structured_logging import build_log_context
from fieldops.db.enums import (
    ActorType,
    AuditAction,
    Channel,
    DeliveryStatus,
    JobType,
    MessageDirection,
    ParticipantType,
    ThreadStatus,
)
from fieldops.db.models import (
    Contact,
    ConversationMessage,
    ConversationParticipant,
    ConversationThread,
)
from fieldops.jobs.outcomes import JobOutcome
from fieldops.services import audit_service, job_service
from fieldops.services.autopilot_text import preview
from fieldops.services.transport_service import OutboundMessage, Transport, TransportError
from fieldops.utils.masking import mask_address
from fieldops.utils.normalization import normalize_email, try_normalize_phone

logger = logging.getLogger(__name__)


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(timezone.utc)


def get_message(db: Session, message_id: UUID) -> ConversationMessage | None:
    return db.query(ConversationMessage).filter(ConversationMessage.id == message_id).first()


def touch_thread(thread: ConversationThread, body: str | None, at: datetime) -> None:
    thread.last_message_preview = preview(body)
    thread.last_message_at = at
    thread.updated_at = at


# =============================================================================
# Addressing
# =============================================================================


def latest_inbound_dm(db: Session, thread_id: UUID) -> ConversationMessage | None:
    return (
        db.query(ConversationMessage)
        .filter(
            ConversationMessage.thread_id == thread_id,
            ConversationMessage.direction == MessageDirection.INBOUND.value,
            ConversationMessage.channel == Channel.DM.value,
        )
        .order_by(ConversationMessage.created_at.desc())
        .first()
    )


def resolve_reply_address(
    db: Session, thread: ConversationThread, channel: str
) -> tuple[str | None, str | None]:
    """
    Where a reply on ``channel`` goes: (address, dm_page_id).

    SMS uses the contact's E.164 phone (raw phone as fallback), e-mail the
    contact's address, DM the sender id of the latest inbound DM on the thread.
    """
    contact = thread.contact
    if channel == Channel.SMS.value:
        if contact is None:
            return None, None
        return (contact.phone_e164 or contact.phone or None), None
    if channel == Channel.EMAIL.value:
        if contact is None:
            return None, None
        return (contact.email or None), None
    if channel == Channel.DM.value:
        inbound = latest_inbound_dm(db, thread.id)
        if inbound is None or not inbound.from_address:
            return None, None
        return inbound.from_address, inbound.dm_page_id
    return None, None


# =============================================================================
# Ingestion
# =============================================================================


def _find_contact(db: Session, channel: str, from_address: str) -> Contact | None:
    if channel == Channel.SMS.value:
        e164 = try_normalize_phone(from_address)
        if e164:
            return db.query(Contact).filter(Contact.phone_e164 == e164).first()
        return None
    if channel == Channel.EMAIL.value:
        return db.query(Contact).filter(Contact.email == normalize_email(from_address)).first()
    # DM senders are only known by the participant address they used before
    participant = (
        db.query(ConversationParticipant)
        .filter(
            ConversationParticipant.participant_type == ParticipantType.CONTACT.value,
            ConversationParticipant.external_address == from_address,
            ConversationParticipant.contact_id.is_not(None),
        )
        .first()
    )
    if participant is None:
        return None
    return db.query(Contact).filter(Contact.id == participant.contact_id).first()


def _create_contact(
    db: Session, channel: str, from_address: str, display_name: str | None
) -> Contact:
    contact = Contact(first_name=display_name or None)
    if channel == Channel.SMS.value:
        contact.phone = from_address
        contact.phone_e164 = try_normalize_phone(from_address)
    elif channel == Channel.EMAIL.value:
        contact.email = normalize_email(from_address)
    db.add(contact)
    db.flush()
    return contact


def _find_open_thread(db: Session, contact_id: UUID, channel: str) -> ConversationThread | None:
    return (
        db.query(ConversationThread)
        .filter(
            ConversationThread.contact_id == contact_id,
            ConversationThread.channel == channel,
            ConversationThread.status == ThreadStatus.OPEN.value,
        )
        .order_by(ConversationThread.last_message_at.desc())
        .first()
    )


def _ensure_contact_participant(
    db: Session, thread: ConversationThread, contact: Contact, address: str, display_name: str | None
) -> ConversationParticipant:
    participant = (
        db.query(ConversationParticipant)
        .filter(
            ConversationParticipant.thread_id == thread.id,
            ConversationParticipant.participant_type == ParticipantType.CONTACT.value,
            ConversationParticipant.contact_id == contact.id,
        )
        .first()
    )
    if participant is None:
        participant = ConversationParticipant(
            thread_id=thread.id,
            participant_type=ParticipantType.CONTACT.value,
            contact_id=contact.id,
            display_name=display_name or contact.display_name or None,
            external_address=address,
        )
        db.add(participant)
        db.flush()
    return participant


def record_inbound_message(
    db: Session,
    *,
    channel: str,
    from_address: str,
    body: str,
    subject: str | None = None,
    display_name: str | None = None,
    dm_page_id: str | None = None,
    now: datetime | None = None,
) -> ConversationMessage:
    """
    Store an inbound customer message and enqueue the autopilot draft phase.

    Finds (or creates) the contact and the open thread for the channel, adds
    the contact participant, and commits everything with the
    ``message.received`` job.
    """
    now = _now(now)
    contact = _find_contact(db, channel, from_address)
    if contact is None:
        contact = _create_contact(db, channel, from_address, display_name)

    thread = _find_open_thread(db, contact.id, channel)
    if thread is None:
        thread = ConversationThread(contact_id=contact.id, channel=channel, subject=subject)
        db.add(thread)
        db.flush()

    participant = _ensure_contact_participant(db, thread, contact, from_address, display_name)
    message = ConversationMessage(
        thread_id=thread.id,
        participant_id=participant.id,
        direction=MessageDirection.INBOUND.value,
        channel=channel,
        subject=subject,
        body=body,
        from_address=from_address,
        delivery_status=DeliveryStatus.DELIVERED.value,
        dm_page_id=dm_page_id,
        created_at=now,
    )
    db.add(message)
    touch_thread(thread, body, now)
    db.flush()

    job_service.enqueue_job(
        db,
        JobType.MESSAGE_RECEIVED,
        {"message_id": message.id, "thread_id": thread.id, "channel": channel},
        run_at=now,
        idempotency_key=f"{JobType.MESSAGE_RECEIVED.value}:{message.id}",
        commit=False,
        now=now,
    )
    db.commit()
    db.refresh(message)
    logger.info(
        "Inbound %s message stored from=%s",
        channel,
        mask_address(channel, from_address),
        extra=build_log_context(thread_id=thread.id, message_id=message.id),
    )
    return message


def record_team_reply(
    db: Session,
    *,
    thread_id: UUID,
    team_member_id: UUID,
    body: str,
    display_name: str | None = None,
    subject: str | None = None,
    now: datetime | None = None,
) -> ConversationMessage:
    """Store a human reply on a thread and queue it for delivery."""
    now = _now(now)
    thread = db.query(ConversationThread).filter(ConversationThread.id == thread_id).first()
    if thread is None:
        raise ValueError(f"Thread {thread_id} not found")

    participant = (
        db.query(ConversationParticipant)
        .filter(
            ConversationParticipant.thread_id == thread.id,
            ConversationParticipant.participant_type == ParticipantType.TEAM.value,
            ConversationParticipant.team_member_id == team_member_id,
        )
        .first()
    )
    if participant is None:
        participant = ConversationParticipant(
            thread_id=thread.id,
            participant_type=ParticipantType.TEAM.value,
            team_member_id=team_member_id,
            display_name=display_name,
        )
        db.add(participant)
        db.flush()

    to_address, dm_page_id = resolve_reply_address(db, thread, thread.channel)
    message = ConversationMessage(
        thread_id=thread.id,
        participant_id=participant.id,
        direction=MessageDirection.OUTBOUND.value,
        channel=thread.channel,
        subject=subject if thread.channel == Channel.EMAIL.value else None,
        body=body,
        to_address=to_address,
        dm_page_id=dm_page_id,
        delivery_status=DeliveryStatus.QUEUED.value,
        created_at=now,
    )
    db.add(message)
    touch_thread(thread, body, now)
    db.flush()

    job_service.enqueue_job(
        db, JobType.MESSAGE_SEND, {"message_id": message.id}, run_at=now, commit=False, now=now
    )
    db.commit()
    db.refresh(message)
    return message


def log_call_connected(
    db: Session,
    contact_id: UUID,
    team_member_id: UUID | None = None,
    call_id: str | None = None,
    now: datetime | None = None,
) -> None:
    """Record that a human reached the contact by phone."""
    audit_service.log_event(
        db,
        AuditAction.CALL_CONNECTED,
        actor_type=ActorType.TEAM,
        entity_type="contact",
        entity_id=contact_id,
        contact_id=contact_id,
        details={
            "team_member_id": str(team_member_id) if team_member_id else None,
            "call_id": call_id,
        },
        created_at=_now(now),
    )
    db.commit()


# =============================================================================
# Delivery
# =============================================================================


def mark_message_failed(
    db: Session, message: ConversationMessage, error: str, now: datetime | None = None
) -> None:
    message.delivery_status = DeliveryStatus.FAILED.value
    message.failure_detail = error
    thread = message.thread
    audit_service.log_event(
        db,
        AuditAction.MESSAGE_SEND_FAILED,
        entity_type="message",
        entity_id=message.id,
        contact_id=thread.contact_id if thread else None,
        details={"error": error, "channel": message.channel},
        created_at=_now(now),
    )
    db.commit()


async def deliver_message(
    db: Session,
    message_id: UUID,
    *,
    transport: Transport,
    now: datetime | None = None,
) -> JobOutcome:
    """Send one queued outbound message through ``transport``."""
    now = _now(now)
    message = get_message(db, message_id)
    if message is None:
        return JobOutcome.skipped("message_not_found")
    if message.direction != MessageDirection.OUTBOUND.value:
        return JobOutcome.skipped("not_outbound")
    if message.is_draft:
        return JobOutcome.skipped("message_is_draft")
    if message.delivery_status in (DeliveryStatus.SENT.value, DeliveryStatus.DELIVERED.value):
        return JobOutcome.skipped("already_sent")
    if not message.to_address:
        mark_message_failed(db, message, "missing_recipient", now)
        return JobOutcome.failed("missing_recipient")

    try:
        result = await transport.send(
            OutboundMessage(
                message_id=message.id,
                channel=message.channel,
                to_address=message.to_address,
                body=message.body,
                subject=message.subject,
                dm_page_id=message.dm_page_id,
            )
        )
    except TransportError as exc:
        if exc.retryable:
            logger.warning(
                "Transport error for message %s, will retry: %s",
                message.id,
                exc.code,
                extra=build_log_context(message_id=message.id, thread_id=message.thread_id),
            )
            return JobOutcome.retry(str(exc))
        mark_message_failed(db, message, str(exc), now)
        return JobOutcome.failed(str(exc))

    message.delivery_status = DeliveryStatus.SENT.value
    message.provider = result.provider
    message.provider_message_id = result.provider_message_id
    message.sent_at = now
    message.failure_detail = None
    db.commit()
    return JobOutcome.processed()
