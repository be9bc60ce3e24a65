"""Autopilot service - drafts replies to inbound messages and decides when to send them.

Draft phase (``handle_inbound_message``): compose a reply for an inbound
message and hold it as a draft, scheduling an ``autopilot.autosend`` job.

Release phase (``handle_autosend``): re-read everything and walk the gates in
order. The first failing gate wins: it either skips the draft for good
(leaving it for a human), defers the job to a later time, or lets the draft
go out. Every skip is written to the audit trail with its reason.
"""

from __future__ import annotations

import logging
import random
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from fieldops.core.structured_logging import build_log_context
from fieldops.db.enums import (
    REPLY_CHANNELS,
    ActorType,
    AppointmentStatus,
    AuditAction,
    Channel,
    DeliveryStatus,
    JobType,
    MessageDirection,
    ParticipantType,
    PipelineStage,
)
from fieldops.db.models import (
    Appointment,
    AuditLog,
    Contact,
    ConversationMessage,
    ConversationParticipant,
    ConversationThread,
)
from fieldops.jobs.outcomes import JobOutcome
from fieldops.services import audit_service, autopilot_text, job_service, message_service
from fieldops.services.ai_provider import GenerationError
from fieldops.services.autopilot_text import TranscriptLine
from fieldops.services.draft_composer import DraftComposer, DraftContext
from fieldops.services.policy_service import AutopilotPolicy, PolicySnapshot
from fieldops.utils.normalization import normalize_postal_code, try_normalize_phone

logger = logging.getLogger(__name__)

ACTOR_LABEL = "sales-autopilot"
HISTORY_LIMIT = 12
SEND_DELAY_MIN_SECONDS = 10
SEND_DELAY_MAX_SECONDS = 30


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(timezone.utc)


def autosend_idempotency_key(draft_id: UUID) -> str:
    return f"{JobType.AUTOPILOT_AUTOSEND.value}:{draft_id}"


def humanizing_delay() -> timedelta:
    return timedelta(seconds=random.randint(SEND_DELAY_MIN_SECONDS, SEND_DELAY_MAX_SECONDS))


# =============================================================================
# Queries
# =============================================================================


def find_draft_for_inbound(db: Session, inbound_id: UUID) -> ConversationMessage | None:
    return (
        db.query(ConversationMessage)
        .filter(
            ConversationMessage.autopilot_for_message_id == inbound_id,
            ConversationMessage.direction == MessageDirection.OUTBOUND.value,
        )
        .first()
    )


def load_history(db: Session, thread_id: UUID) -> list[TranscriptLine]:
    """Last messages on the thread (drafts excluded), oldest first."""
    rows = (
        db.query(ConversationMessage, ConversationParticipant.display_name)
        .outerjoin(
            ConversationParticipant,
            ConversationMessage.participant_id == ConversationParticipant.id,
        )
        .filter(
            ConversationMessage.thread_id == thread_id,
            ConversationMessage.is_draft.is_(False),
        )
        .order_by(ConversationMessage.created_at.desc())
        .limit(HISTORY_LIMIT)
        .all()
    )
    lines = [
        TranscriptLine(
            direction=message.direction,
            channel=message.channel,
            body=message.body,
            created_at=message.created_at,
            subject=message.subject,
            participant_name=display_name,
        )
        for message, display_name in rows
    ]
    lines.reverse()
    return lines


def _contact_messages(db: Session, contact_id: UUID):
    return db.query(ConversationMessage).join(
        ConversationThread, ConversationMessage.thread_id == ConversationThread.id
    ).filter(ConversationThread.contact_id == contact_id)


def latest_inbound_for_contact(db: Session, contact_id: UUID) -> ConversationMessage | None:
    return (
        _contact_messages(db, contact_id)
        .filter(ConversationMessage.direction == MessageDirection.INBOUND.value)
        .order_by(ConversationMessage.created_at.desc())
        .first()
    )


def latest_autopilot_draft_for_contact(db: Session, contact_id: UUID) -> ConversationMessage | None:
    return (
        _contact_messages(db, contact_id)
        .filter(
            ConversationMessage.direction == MessageDirection.OUTBOUND.value,
            ConversationMessage.autopilot.is_(True),
            ConversationMessage.is_draft.is_(True),
        )
        .order_by(ConversationMessage.created_at.desc())
        .first()
    )


def released_as_sms(db: Session, draft_id: UUID) -> ConversationMessage | None:
    """The SMS a held DM draft already went out as, if any."""
    return (
        db.query(ConversationMessage)
        .filter(ConversationMessage.autopilot_derived_from_draft_id == draft_id)
        .first()
    )


def has_active_appointment(db: Session, contact_id: UUID) -> bool:
    return (
        db.query(Appointment.id)
        .filter(
            Appointment.contact_id == contact_id,
            Appointment.status != AppointmentStatus.CANCELED.value,
        )
        .first()
        is not None
    )


def has_recent_activity(db: Session, contact_id: UUID, since: datetime) -> bool:
    """Any message on any of the contact's threads at or after ``since``."""
    return (
        _contact_messages(db, contact_id)
        .filter(ConversationMessage.created_at >= since)
        .first()
        is not None
    )


def has_human_touch_since(db: Session, contact_id: UUID, since: datetime) -> bool:
    """A team member wrote to the contact, or reached them by phone, at or after ``since``."""
    team_outbound = (
        _contact_messages(db, contact_id)
        .join(
            ConversationParticipant,
            ConversationMessage.participant_id == ConversationParticipant.id,
        )
        .filter(
            ConversationMessage.direction == MessageDirection.OUTBOUND.value,
            ConversationParticipant.participant_type == ParticipantType.TEAM.value,
            ConversationParticipant.team_member_id.is_not(None),
            ConversationMessage.created_at >= since,
        )
        .first()
    )
    if team_outbound is not None:
        return True

    call = (
        db.query(AuditLog.id)
        .filter(
            AuditLog.action == AuditAction.CALL_CONNECTED.value,
            AuditLog.contact_id == contact_id,
            AuditLog.created_at >= since,
        )
        .first()
    )
    return call is not None


def ensure_autopilot_participant(
    db: Session, thread_id: UUID, display_name: str
) -> ConversationParticipant:
    """The persona's team participant on the thread (team_member_id is null)."""
    participant = (
        db.query(ConversationParticipant)
        .filter(
            ConversationParticipant.thread_id == thread_id,
            ConversationParticipant.participant_type == ParticipantType.TEAM.value,
            ConversationParticipant.team_member_id.is_(None),
        )
        .first()
    )
    if participant is None:
        participant = ConversationParticipant(
            thread_id=thread_id,
            participant_type=ParticipantType.TEAM.value,
            team_member_id=None,
            display_name=display_name,
        )
        db.add(participant)
        db.flush()
    elif participant.display_name != display_name:
        participant.display_name = display_name
    return participant


# =============================================================================
# Draft phase
# =============================================================================


async def handle_inbound_message(
    db: Session,
    message_id: UUID,
    *,
    composer: DraftComposer | None,
    policy: PolicySnapshot,
    now: datetime | None = None,
) -> JobOutcome:
    """Compose and hold a draft reply for one inbound message."""
    now = _now(now)
    autopilot = policy.autopilot
    if not autopilot.enabled:
        return JobOutcome.skipped("autopilot_disabled")
    if composer is None:
        logger.debug("Draft generation not configured; inbound %s left for humans", message_id)
        return JobOutcome.processed()

    inbound = message_service.get_message(db, message_id)
    if inbound is None:
        return JobOutcome.skipped("message_not_found")
    if inbound.direction != MessageDirection.INBOUND.value:
        return JobOutcome.skipped("not_inbound")
    thread = inbound.thread
    if thread is None:
        return JobOutcome.skipped("thread_not_found")

    channel = thread.channel
    if channel not in REPLY_CHANNELS:
        return JobOutcome.skipped("unsupported_channel")

    if find_draft_for_inbound(db, inbound.id) is not None:
        return JobOutcome.processed()

    to_address, dm_page_id = message_service.resolve_reply_address(db, thread, channel)
    if not to_address:
        logger.info(
            "No reply address for %s thread, no draft",
            channel,
            extra=build_log_context(thread_id=thread.id, message_id=inbound.id),
        )
        return JobOutcome.processed()

    history = load_history(db, thread.id)
    transcript_text = "\n".join(line.body for line in history)
    contact = thread.contact
    postal_code = (
        normalize_postal_code(contact.postal_code if contact else None)
        or autopilot_text.extract_zip(inbound.body)
        or autopilot_text.extract_zip(transcript_text)
    )
    in_service_area = policy.service_area.allows(postal_code) if postal_code else None
    extracted_phone = autopilot_text.extract_phone_e164(transcript_text)

    context = DraftContext(
        channel=channel,
        agent_name=autopilot.agent_display_name,
        company=policy.company,
        transcript=history,
        thread_state=thread.state,
        contact_name=(contact.display_name or None) if contact else None,
        postal_code=postal_code,
        in_service_area=in_service_area,
    )
    try:
        draft = await composer.compose(context)
    except GenerationError as exc:
        logger.warning(
            "Draft generation failed: %s",
            exc.code,
            extra=build_log_context(thread_id=thread.id, message_id=inbound.id),
        )
        if exc.retryable:
            return JobOutcome.retry(exc.code)
        return JobOutcome.failed(str(exc))

    # Another worker may have finished the same inbound while we were generating
    if find_draft_for_inbound(db, inbound.id) is not None:
        return JobOutcome.processed()

    no_autosend = channel == Channel.DM.value and not autopilot_text.should_allow_dm_autosend(
        history, inbound.body
    )
    participant = ensure_autopilot_participant(db, thread.id, autopilot.agent_display_name)
    message = ConversationMessage(
        thread_id=thread.id,
        participant_id=participant.id,
        direction=MessageDirection.OUTBOUND.value,
        channel=channel,
        subject=draft.best.subject if channel == Channel.EMAIL.value else None,
        body=draft.best.body,
        to_address=to_address,
        delivery_status=None,
        is_draft=True,
        autopilot=True,
        autopilot_for_message_id=inbound.id,
        autopilot_no_autosend=no_autosend,
        ai_model=draft.model,
        missing_info=list(draft.missing_info),
        alternatives=[{"subject": c.subject, "body": c.body} for c in draft.alternatives],
        extracted_phone_e164=extracted_phone,
        dm_page_id=dm_page_id if channel == Channel.DM.value else None,
        created_at=now,
    )
    db.add(message)
    db.flush()

    if not no_autosend:
        job_service.enqueue_job(
            db,
            JobType.AUTOPILOT_AUTOSEND,
            {"draft_message_id": message.id, "inbound_message_id": inbound.id},
            run_at=now + timedelta(minutes=autopilot.auto_send_after_minutes),
            idempotency_key=autosend_idempotency_key(message.id),
            commit=False,
            now=now,
        )

    audit_service.log_event(
        db,
        AuditAction.AUTOPILOT_DRAFT_CREATED,
        actor_type=ActorType.AI,
        actor_label=ACTOR_LABEL,
        entity_type="message",
        entity_id=message.id,
        contact_id=thread.contact_id,
        details={
            "inbound_message_id": str(inbound.id),
            "channel": channel,
            "model": draft.model,
            "no_autosend": no_autosend,
        },
        created_at=now,
    )
    db.commit()
    logger.info(
        "Autopilot draft created (no_autosend=%s)",
        no_autosend,
        extra=build_log_context(thread_id=thread.id, message_id=message.id),
    )
    return JobOutcome.processed()


# =============================================================================
# Release phase
# =============================================================================


def _skip(
    db: Session,
    draft: ConversationMessage,
    contact_id: UUID | None,
    reason: str,
    now: datetime,
    **details,
) -> JobOutcome:
    audit_service.log_event(
        db,
        AuditAction.AUTOPILOT_AUTOSEND_SKIPPED,
        actor_type=ActorType.AI,
        actor_label=ACTOR_LABEL,
        entity_type="message",
        entity_id=draft.id,
        contact_id=contact_id,
        details={"reason": reason, **details},
        created_at=now,
    )
    db.commit()
    logger.info(
        "Autosend skipped: %s",
        reason,
        extra=build_log_context(thread_id=draft.thread_id, message_id=draft.id),
    )
    return JobOutcome.skipped(reason)


def _dm_timer_gate(
    latest_inbound: ConversationMessage | None, autopilot: AutopilotPolicy, now: datetime
) -> JobOutcome | None:
    """Hold off while the customer is still chatting by DM."""
    if latest_inbound is None or not autopilot_text.is_conversational_dm(
        latest_inbound.channel, latest_inbound.body
    ):
        return None
    fallback_at = latest_inbound.created_at + timedelta(
        minutes=autopilot.dm_sms_fallback_after_minutes
    )
    if now < fallback_at:
        return JobOutcome.retry("dm_cooldown", fallback_at)
    silence_until = latest_inbound.created_at + timedelta(
        minutes=autopilot.dm_min_silence_before_sms_minutes
    )
    if now < silence_until:
        return JobOutcome.retry("dm_recent_inbound", silence_until)
    return None


def resolve_sms_fallback_address(contact: Contact, draft: ConversationMessage) -> str | None:
    raw = (contact.phone_e164 or contact.phone or draft.extracted_phone_e164 or "").strip()
    if not raw:
        return None
    return try_normalize_phone(raw)


async def handle_autosend(
    db: Session,
    draft_id: UUID,
    inbound_id: UUID | None = None,
    *,
    policy: PolicySnapshot,
    now: datetime | None = None,
) -> JobOutcome:
    """Run the release gates for a held draft."""
    now = _now(now)
    autopilot = policy.autopilot

    draft = message_service.get_message(db, draft_id)
    if draft is None:
        return JobOutcome.processed()
    if not autopilot.enabled:
        return JobOutcome.skipped("autopilot_disabled")
    if not draft.is_draft or not draft.autopilot:
        return JobOutcome.processed()

    thread = draft.thread
    contact_id = thread.contact_id if thread else None
    if draft.autopilot_no_autosend:
        return _skip(db, draft, contact_id, "autosend_disabled", now)
    if released_as_sms(db, draft.id) is not None:
        return JobOutcome.processed()

    contact = thread.contact if thread else None
    if contact is None:
        return _skip(db, draft, None, "no_contact", now)

    latest_inbound = latest_inbound_for_contact(db, contact.id)
    if inbound_id is not None and latest_inbound is not None and latest_inbound.id != inbound_id:
        return _skip(
            db,
            draft,
            contact.id,
            "newer_inbound",
            now,
            inbound_message_id=str(inbound_id),
            latest_inbound_message_id=str(latest_inbound.id),
        )

    booked = has_active_appointment(db, contact.id)
    if contact.pipeline_stage != PipelineStage.NEW.value or booked:
        return _skip(
            db, draft, contact.id, "handled", now, stage=contact.pipeline_stage, booked=booked
        )

    if draft.channel == Channel.DM.value:
        deferred = _dm_timer_gate(latest_inbound, autopilot, now)
        if deferred is not None:
            return deferred

    answered_id = inbound_id or draft.autopilot_for_message_id
    since = draft.created_at
    if answered_id is not None:
        answered = message_service.get_message(db, answered_id)
        if answered is not None:
            since = answered.created_at

    # A reassignment restarts the wait; the reference time stays put
    assigned_at = contact.salesperson_assigned_at
    if assigned_at is not None and assigned_at > since:
        assignment_gate = assigned_at + timedelta(minutes=autopilot.auto_send_after_minutes)
        if now < assignment_gate:
            return JobOutcome.retry("assignee_changed", assignment_gate)

    newer_on_thread = (
        db.query(ConversationMessage.id)
        .filter(
            ConversationMessage.thread_id == draft.thread_id,
            ConversationMessage.direction == MessageDirection.INBOUND.value,
            ConversationMessage.created_at > since,
        )
        .first()
    )
    if newer_on_thread is not None:
        return _skip(
            db,
            draft,
            contact.id,
            "stale_inbound",
            now,
            inbound_message_id=str(answered_id) if answered_id else None,
        )

    latest_draft = latest_autopilot_draft_for_contact(db, contact.id)
    if latest_draft is not None and latest_draft.id != draft.id:
        return _skip(db, draft, contact.id, "stale_draft", now)

    prior_sent = (
        db.query(ConversationMessage)
        .filter(
            ConversationMessage.thread_id == draft.thread_id,
            ConversationMessage.direction == MessageDirection.OUTBOUND.value,
            ConversationMessage.autopilot.is_(True),
            ConversationMessage.delivery_status.in_(
                [DeliveryStatus.SENT.value, DeliveryStatus.DELIVERED.value]
            ),
        )
        .order_by(ConversationMessage.created_at.desc())
        .first()
    )
    if prior_sent is not None and autopilot_text.normalize_for_compare(
        prior_sent.body
    ) == autopilot_text.normalize_for_compare(draft.body):
        return _skip(db, draft, contact.id, "duplicate_body", now)

    if has_human_touch_since(db, contact.id, since):
        return _skip(db, draft, contact.id, "human_touch", now)

    activity_since = now - timedelta(minutes=autopilot.activity_window_minutes)
    if has_recent_activity(db, contact.id, activity_since):
        return JobOutcome.retry(
            "recent_activity", now + timedelta(minutes=autopilot.retry_delay_minutes)
        )

    if draft.channel == Channel.SMS.value:
        deferred = _dm_timer_gate(latest_inbound, autopilot, now)
        if deferred is not None:
            return deferred

    send_at = now + humanizing_delay()

    if draft.channel == Channel.DM.value:
        return _release_as_sms(db, draft, thread, contact, autopilot, send_at, answered_id, now)

    return _release_draft(db, draft, thread, contact, send_at, now)


def _release_as_sms(
    db: Session,
    draft: ConversationMessage,
    thread: ConversationThread,
    contact: Contact,
    autopilot: AutopilotPolicy,
    send_at: datetime,
    answered_id: UUID | None,
    now: datetime,
) -> JobOutcome:
    """DM drafts go out as a new SMS; the DM draft itself stays held."""
    to_address = resolve_sms_fallback_address(contact, draft)
    if not to_address:
        return _skip(db, draft, contact.id, "no_sms_recipient", now)

    body = autopilot_text.clamp_reply_body(draft.body or "", Channel.SMS.value)
    if not body:
        return JobOutcome.processed()

    participant = ensure_autopilot_participant(db, thread.id, autopilot.agent_display_name)
    sms = ConversationMessage(
        thread_id=thread.id,
        participant_id=participant.id,
        direction=MessageDirection.OUTBOUND.value,
        channel=Channel.SMS.value,
        body=body,
        to_address=to_address,
        delivery_status=DeliveryStatus.QUEUED.value,
        autopilot=True,
        autopilot_for_message_id=answered_id,
        autopilot_derived_from_draft_id=draft.id,
        ai_model=draft.ai_model,
        created_at=now,
    )
    db.add(sms)
    message_service.touch_thread(thread, body, now)
    db.flush()

    job_service.enqueue_job(
        db, JobType.MESSAGE_SEND, {"message_id": sms.id}, run_at=send_at, commit=False, now=now
    )
    audit_service.log_event(
        db,
        AuditAction.AUTOPILOT_AUTOSENT,
        actor_type=ActorType.AI,
        actor_label=ACTOR_LABEL,
        entity_type="message",
        entity_id=draft.id,
        contact_id=contact.id,
        details={"via": "sms_fallback", "sms_message_id": str(sms.id)},
        created_at=now,
    )
    db.commit()
    logger.info(
        "Autopilot DM draft released as SMS",
        extra=build_log_context(thread_id=thread.id, message_id=draft.id),
    )
    return JobOutcome.processed()


def _release_draft(
    db: Session,
    draft: ConversationMessage,
    thread: ConversationThread,
    contact: Contact,
    send_at: datetime,
    now: datetime,
) -> JobOutcome:
    draft.is_draft = False
    draft.delivery_status = DeliveryStatus.QUEUED.value
    message_service.touch_thread(thread, draft.body, now)

    existing = job_service.find_pending_job(
        db, JobType.MESSAGE_SEND, "message_id", str(draft.id)
    )
    if existing is not None:
        job_service.rearm_job(db, existing, send_at, commit=False)
    else:
        job_service.enqueue_job(
            db,
            JobType.MESSAGE_SEND,
            {"message_id": draft.id},
            run_at=send_at,
            commit=False,
            now=now,
        )

    audit_service.log_event(
        db,
        AuditAction.AUTOPILOT_AUTOSENT,
        actor_type=ActorType.AI,
        actor_label=ACTOR_LABEL,
        entity_type="message",
        entity_id=draft.id,
        contact_id=contact.id,
        details={"channel": draft.channel},
        created_at=now,
    )
    db.commit()
    logger.info(
        "Autopilot draft released",
        extra=build_log_context(thread_id=thread.id, message_id=draft.id),
    )
    return JobOutcome.processed()


def abandon_autosend(db: Session, draft_id: UUID, reason: str, now: datetime | None = None) -> None:
    """Stop automatic release of a draft and leave it for a human."""
    now = _now(now)
    draft = message_service.get_message(db, draft_id)
    if draft is None or not draft.is_draft:
        return
    draft.autopilot_no_autosend = True
    audit_service.log_event(
        db,
        AuditAction.AUTOPILOT_AUTOSEND_ABANDONED,
        actor_type=ActorType.AI,
        actor_label=ACTOR_LABEL,
        entity_type="message",
        entity_id=draft.id,
        contact_id=draft.thread.contact_id if draft.thread else None,
        details={"reason": reason},
        created_at=now,
    )
    db.commit()
