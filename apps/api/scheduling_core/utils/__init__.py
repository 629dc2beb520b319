"""Utility modules."""

from scheduling_core.utils.normalization import (
    mask_email,
    mask_phone,
    normalize_email,
    normalize_name,
    normalize_phone,
)

__all__ = [
    "mask_email",
    "mask_phone",
    "normalize_email",
    "normalize_name",
    "normalize_phone",
]
