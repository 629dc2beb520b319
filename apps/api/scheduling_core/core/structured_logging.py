"""Structured logging helpers (PII-safe)."""

import logging
from typing import Any
from uuid import UUID

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the API process and CLI."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


def build_log_context(
    *,
    org_id: str | UUID | None = None,
    appointment_id: str | UUID | None = None,
    channel: str | None = None,
    route: str | None = None,
    method: str | None = None,
) -> dict[str, Any]:
    """Return a log `extra` dict with identifiers only (never attendee contact data)."""
    context: dict[str, Any] = {}
    if org_id:
        context["org_id"] = str(org_id)
    if appointment_id:
        context["appointment_id"] = str(appointment_id)
    if channel:
        context["channel"] = channel
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    return context
