"""Handler outcomes and the per-type job contract.

Handlers return a ``JobOutcome`` value for every business decision. The two
exceptions are for code paths deep inside a handler: ``TransientJobError``
asks for a retry, ``PermanentJobError`` fails the job outright.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from pydantic import BaseModel

from fieldops.db.enums import JobOutcomeKind


@dataclass(frozen=True)
class JobOutcome:
    kind: JobOutcomeKind
    error: str | None = None
    next_attempt_at: datetime | None = None

    @classmethod
    def processed(cls) -> "JobOutcome":
        return cls(JobOutcomeKind.PROCESSED)

    @classmethod
    def skipped(cls, reason: str) -> "JobOutcome":
        return cls(JobOutcomeKind.SKIPPED, error=reason)

    @classmethod
    def retry(cls, error: str, next_attempt_at: datetime | None = None) -> "JobOutcome":
        """Retry at ``next_attempt_at``, or after the default backoff when None."""
        return cls(JobOutcomeKind.RETRY, error=error, next_attempt_at=next_attempt_at)

    @classmethod
    def failed(cls, error: str) -> "JobOutcome":
        return cls(JobOutcomeKind.FAILED, error=error)


class TransientJobError(Exception):
    """Temporary failure; the job is retried."""

    def __init__(self, message: str, retry_at: datetime | None = None):
        super().__init__(message)
        self.retry_at = retry_at


class PermanentJobError(Exception):
    """Unrecoverable failure; the job is failed without retry."""


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget. A retry past either limit fails the job instead."""

    max_attempts: int | None = None
    max_age: timedelta | None = None

    def exhausted(self, attempts_after_retry: int, created_at: datetime, retry_at: datetime) -> str | None:
        if self.max_attempts is not None and attempts_after_retry >= self.max_attempts:
            return f"max_attempts={self.max_attempts}"
        if self.max_age is not None and retry_at - created_at > self.max_age:
            return f"max_age={int(self.max_age.total_seconds())}s"
        return None


Handler = Callable[..., Awaitable[JobOutcome]]
ExhaustedHook = Callable[..., None]


@dataclass(frozen=True)
class JobSpec:
    payload_model: type[BaseModel]
    handler: Handler
    retry_policy: RetryPolicy = RetryPolicy()
    on_exhausted: Optional[ExhaustedHook] = None
