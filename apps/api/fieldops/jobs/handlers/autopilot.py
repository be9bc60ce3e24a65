"""Autopilot job handlers (draft phase and release phase)."""

from __future__ import annotations

import logging
from datetime import datetime

from fieldops.jobs.outcomes import JobOutcome
from fieldops.schemas.jobs import AutosendPayload, MessageReceivedPayload

logger = logging.getLogger(__name__)


async def process_message_received(
    db, job, payload: MessageReceivedPayload, now: datetime | None = None
) -> JobOutcome:
    """
    Draft a reply for a freshly stored inbound message.

    Payload:
      - message_id (required): inbound message UUID
      - thread_id, channel (optional): informational only, re-read from the row
    """
    from fieldops.services import autopilot_service, draft_composer, policy_service

    policy = policy_service.load_policy_snapshot(db)
    return await autopilot_service.handle_inbound_message(
        db,
        payload.message_id,
        composer=draft_composer.get_draft_composer(),
        policy=policy,
        now=now,
    )


async def process_autopilot_autosend(
    db, job, payload: AutosendPayload, now: datetime | None = None
) -> JobOutcome:
    """
    Run the release gates for a held draft.

    Payload:
      - draft_message_id (required): draft message UUID
      - inbound_message_id (optional): the inbound message the draft answers
    """
    from fieldops.services import autopilot_service, policy_service

    policy = policy_service.load_policy_snapshot(db)
    return await autopilot_service.handle_autosend(
        db,
        payload.draft_message_id,
        payload.inbound_message_id,
        policy=policy,
        now=now,
    )


def on_autosend_exhausted(db, job, payload: AutosendPayload, error: str) -> None:
    """Stop deferring: the draft is left for a human."""
    from fieldops.services import autopilot_service

    logger.warning(
        "Autosend retry budget exhausted for draft %s (%s)", payload.draft_message_id, error
    )
    autopilot_service.abandon_autosend(db, payload.draft_message_id, error)
