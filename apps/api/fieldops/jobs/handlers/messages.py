"""Message delivery job handlers."""

from __future__ import annotations

import logging
from datetime import datetime

from fieldops.db.enums import DeliveryStatus
from fieldops.jobs.outcomes import JobOutcome
from fieldops.schemas.jobs import MessageSendPayload

logger = logging.getLogger(__name__)


async def process_message_send(
    db, job, payload: MessageSendPayload, now: datetime | None = None
) -> JobOutcome:
    """
    Deliver a queued outbound message.

    Payload:
      - message_id (required): outbound message UUID
    """
    from fieldops.services import message_service, transport_service

    return await message_service.deliver_message(
        db,
        payload.message_id,
        transport=transport_service.get_transport(),
        now=now,
    )


def on_message_send_exhausted(db, job, payload: MessageSendPayload, error: str) -> None:
    from fieldops.services import message_service

    message = message_service.get_message(db, payload.message_id)
    if message is None or message.delivery_status != DeliveryStatus.QUEUED.value:
        return
    message_service.mark_message_failed(db, message, error)
