"""Data normalization utilities for consistent data quality."""

import re
from typing import Optional


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """
    Normalize phone to E.164 format (+15551234567).

    Accepts:
    - 10 digits: 5551234567 → +15551234567
    - 11 digits starting with 1: 15551234567 → +15551234567
    - Already E.164: +15551234567 → +15551234567
    - Punctuated: (555) 123-4567, 555.123.4567

    Args:
        phone: Raw phone input

    Returns:
        E.164 formatted phone or None if empty

    Raises:
        ValueError: If phone is not a valid US phone number
    """
    if not phone:
        return None

    cleaned = phone.strip()
    if cleaned.startswith("+"):
        digits = re.sub(r"\D", "", cleaned[1:])
        if not digits.startswith("1"):
            raise ValueError(f"Unsupported country code in phone: {phone}")
    else:
        digits = re.sub(r"\D", "", cleaned)

    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    if len(digits) != 10:
        raise ValueError(f"Invalid phone number: {phone}")

    # NANP: area code and exchange cannot start with 0 or 1
    if digits[0] in "01" or digits[3] in "01":
        raise ValueError(f"Invalid phone number: {phone}")
    return f"+1{digits}"


def try_normalize_phone(phone: Optional[str]) -> Optional[str]:
    """Like normalize_phone, but returns None instead of raising."""
    try:
        return normalize_phone(phone)
    except ValueError:
        return None


def normalize_email(email: Optional[str]) -> Optional[str]:
    """
    Normalize email to lowercase.

    Args:
        email: Raw email input

    Returns:
        Lowercased email or None if empty
    """
    if not email:
        return None
    return email.strip().lower()


def normalize_postal_code(value: Optional[str]) -> Optional[str]:
    """Return the 5-digit US ZIP in ``value`` (ZIP+4 allowed), else None."""
    if not value:
        return None
    match = re.fullmatch(r"\s*(\d{5})(?:-\d{4})?\s*", value)
    return match.group(1) if match else None
