"""Helpers for keeping contact details out of logs."""

from __future__ import annotations

import hashlib


def hash_email(email: str) -> str:
    """Hash email for logs/audit (prefix + SHA256 suffix for debugging)."""
    if not email:
        return ""
    prefix = email.split("@")[0][:3] if "@" in email else email[:3]
    suffix = hashlib.sha256(email.lower().encode()).hexdigest()[:12]
    return f"{prefix}...@[hash:{suffix}]"


def mask_email(email: str | None) -> str:
    if not email:
        return ""
    return hash_email(email)


def mask_phone(phone: str | None) -> str:
    if not phone:
        return ""
    digits = "".join(ch for ch in phone if ch.isdigit())
    return f"***{digits[-4:]}" if len(digits) >= 4 else "***"


def mask_address(channel: str, address: str | None) -> str:
    """Mask a reply address according to its channel."""
    if channel == "email":
        return mask_email(address)
    if channel == "sms":
        return mask_phone(address)
    return f"{(address or '')[:4]}..." if address else ""

