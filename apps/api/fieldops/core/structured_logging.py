"""Structured logging helpers (PII-safe)."""

from typing import Any


def build_log_context(
    *,
    job_id: str | None = None,
    job_type: str | None = None,
    worker_id: str | None = None,
    thread_id: str | None = None,
    message_id: str | None = None,
    route: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict for ``extra=``."""
    context: dict[str, Any] = {}
    if job_id:
        context["job_id"] = str(job_id)
    if job_type:
        context["job_type"] = job_type
    if worker_id:
        context["worker_id"] = worker_id
    if thread_id:
        context["thread_id"] = str(thread_id)
    if message_id:
        context["message_id"] = str(message_id)
    if route:
        context["route"] = route
    return context
