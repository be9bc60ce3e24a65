"""SQLAlchemy ORM models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Index, Integer, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from fieldops.db.base import Base, utcnow
from fieldops.db.enums import DEFAULT_JOB_STATUS
from fieldops.db.types import JSONType


class Job(Base):
    """
    Durable outbox entry for deferred work.

    Rows are created by any code path that needs deferred work and mutated
    only by the dispatcher. They are never deleted: a non-null processed_at
    marks the terminal state (processed, skipped or failed) and such a row is
    never dispatched again.
    """

    __tablename__ = "jobs"
    __table_args__ = (
        Index(
            "idx_jobs_due",
            "next_attempt_at",
            postgresql_where=text("processed_at IS NULL"),
        ),
        Index("idx_jobs_type_created", "job_type", "created_at"),
        Index(
            "uq_job_idempotency",
            "idempotency_key",
            unique=True,
            postgresql_where=text("idempotency_key IS NOT NULL"),
            sqlite_where=text("idempotency_key IS NOT NULL"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    job_type: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(
        String(20), default=DEFAULT_JOB_STATUS.value, nullable=False
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    next_attempt_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Claim lease: a worker owns the row until locked_until passes
    locked_until: Mapped[datetime | None] = mapped_column(nullable=True)
    locked_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Idempotency key for deduplication (unique when present)
    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
