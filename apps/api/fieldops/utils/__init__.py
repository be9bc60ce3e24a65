"""Utility modules."""

from fieldops.utils.masking import mask_address, mask_email, mask_phone
from fieldops.utils.normalization import (
    normalize_email,
    normalize_phone,
    normalize_postal_code,
    try_normalize_phone,
)

__all__ = [
    # Normalization
    "normalize_email",
    "normalize_phone",
    "normalize_postal_code",
    "try_normalize_phone",
    # Masking
    "mask_address",
    "mask_email",
    "mask_phone",
]
