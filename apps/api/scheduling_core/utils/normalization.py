"""Normalization and log-masking helpers for attendee contact data."""

import re
from typing import Optional


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """
    Normalize phone to E.164 format (+15551234567).

    Accepts:
    - 10 digits: 5551234567 → +15551234567
    - 11 digits starting with 1: 15551234567 → +15551234567
    - Already E.164 (any country): +447911123456 → +447911123456

    Raises:
        ValueError: If phone cannot be turned into E.164
    """
    if not phone:
        return None

    cleaned = phone.strip()
    if cleaned.startswith("+"):
        digits = re.sub(r"\D", "", cleaned[1:])
        if 8 <= len(digits) <= 15:
            return f"+{digits}"
    else:
        digits = re.sub(r"\D", "", cleaned)
        if len(digits) == 10:
            return f"+1{digits}"
        if len(digits) == 11 and digits.startswith("1"):
            return f"+{digits}"

    raise ValueError(f"Invalid phone number '{phone}'. Use E.164 or 10-digit US format.")


def normalize_email(email: Optional[str]) -> Optional[str]:
    """Normalize email to stripped lowercase, or None if empty."""
    if not email or not email.strip():
        return None
    return email.strip().lower()


def normalize_name(name: Optional[str]) -> Optional[str]:
    """Strip whitespace and collapse multiple spaces."""
    if not name:
        return None
    return " ".join(name.split()) or None


def mask_email(email: Optional[str]) -> str:
    """Mask email for logs: jane.doe@example.com → jan...@example.com"""
    if not email:
        return ""
    local, _, domain = email.partition("@")
    prefix = local[:3] if local else ""
    return f"{prefix}...@{domain}" if domain else f"{prefix}..."


def mask_phone(phone: Optional[str]) -> str:
    """Mask phone for logs, keeping the last four digits."""
    if not phone:
        return ""
    digits = re.sub(r"\D", "", phone)
    return f"***{digits[-4:]}" if len(digits) >= 4 else "***"
