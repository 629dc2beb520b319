"""Tests for structured logging helpers."""

import uuid

from scheduling_core.core.structured_logging import build_log_context


def test_build_log_context_includes_only_provided_fields():
    appointment_id = uuid.uuid4()
    context = build_log_context(
        org_id="org-1",
        appointment_id=appointment_id,
        channel="sms",
        route="/appointments",
        method="POST",
    )

    assert context == {
        "org_id": "org-1",
        "appointment_id": str(appointment_id),
        "channel": "sms",
        "route": "/appointments",
        "method": "POST",
    }


def test_build_log_context_ignores_empty_fields():
    context = build_log_context(org_id=None, channel="", appointment_id="appt-1")

    assert context == {"appointment_id": "appt-1"}
