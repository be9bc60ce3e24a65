"""Audit service - append-only audit trail for automated decisions."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from fieldops.db.enums import ActorType, AuditAction
from fieldops.db.models import AuditLog

logger = logging.getLogger(__name__)


def log_event(
    db: Session,
    action: AuditAction,
    actor_type: ActorType = ActorType.SYSTEM,
    actor_label: str | None = None,
    entity_type: str | None = None,
    entity_id: UUID | None = None,
    contact_id: UUID | None = None,
    details: dict[str, Any] | None = None,
    created_at: datetime | None = None,
) -> AuditLog:
    """
    Append an audit event.

    Args:
        db: Database session
        action: What happened (from AuditAction)
        actor_type: system, ai or team
        actor_label: Human-readable actor (e.g. autopilot persona name)
        entity_type: Type of entity affected (e.g. 'message', 'appointment')
        entity_id: ID of the affected entity
        contact_id: Contact the event is about, for per-contact lookups
        details: Additional context (no message bodies, no raw addresses)
        created_at: Override timestamp (defaults to now)

    The entry is flushed, not committed; callers commit with their own unit
    of work.
    """
    entry = AuditLog(
        action=action.value,
        actor_type=actor_type.value,
        actor_label=actor_label,
        entity_type=entity_type,
        entity_id=entity_id,
        contact_id=contact_id,
        details=details,
    )
    if created_at is not None:
        entry.created_at = created_at
    db.add(entry)
    db.flush()
    return entry
