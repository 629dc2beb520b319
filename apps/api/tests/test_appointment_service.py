"""Tests for appointment booking and the lifecycle state machine."""

import uuid
from datetime import date, datetime, timedelta, timezone

import pytest

from scheduling_core.core.security import create_action_token
from scheduling_core.db.enums import ActionType, AppointmentStatus
from scheduling_core.db.models import CalendarSettings
from scheduling_core.schemas.appointment import AppointmentCreate
from scheduling_core.services import appointment_service
from scheduling_core.services.appointment_service import (
    AlreadyTerminalError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)

NOW = datetime(2030, 6, 1, 12, 0, tzinfo=timezone.utc)


def _create(db, org, now=NOW, **fields):
    data = {
        "title": "Intro call",
        "scheduled_at": "2030-06-03T14:00:00Z",
        "attendee_email": "jane@example.com",
    }
    data.update(fields)
    return appointment_service.create_appointment(db, org.id, AppointmentCreate(**data), now=now)


# =============================================================================
# Create
# =============================================================================

def test_create_appointment_computes_end_and_defaults(db, test_org):
    appt = _create(db, test_org, duration=45)

    assert appt.status == AppointmentStatus.SCHEDULED.value
    assert appt.scheduled_at == datetime(2030, 6, 3, 14, 0, tzinfo=timezone.utc)
    assert appt.end_at == datetime(2030, 6, 3, 14, 45, tzinfo=timezone.utc)
    assert appt.time_zone == "America/New_York"
    assert appt.meeting_type == "phone"
    assert appt.reminder_sent_at is None


def test_create_reads_naive_time_in_request_timezone(db, test_org):
    appt = _create(db, test_org, scheduled_at="2030-06-03T10:00:00", time_zone="America/Chicago")
    # CDT is UTC-5 in June
    assert appt.scheduled_at == datetime(2030, 6, 3, 15, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "fields, message",
    [
        ({"title": "  "}, "title is required"),
        ({"scheduled_at": None}, "scheduled_at is required (ISO 8601 format)"),
        ({"scheduled_at": "tomorrow-ish"}, "scheduled_at must be a valid ISO 8601 date"),
        ({"scheduled_at": "2030-05-01T10:00:00Z"}, "scheduled_at must be in the future"),
    ],
)
def test_create_validation_errors(db, test_org, fields, message):
    with pytest.raises(ValidationError, match=message.replace("(", r"\(").replace(")", r"\)")):
        _create(db, test_org, **fields)


def test_create_rejects_overlap_with_active_appointment(db, test_org):
    existing = _create(db, test_org)

    with pytest.raises(ConflictError) as exc_info:
        _create(db, test_org, scheduled_at="2030-06-03T14:15:00Z")

    assert exc_info.value.conflict.appointment_id == existing.id
    assert str(exc_info.value) == "This time slot conflicts with an existing appointment"


def test_create_allows_back_to_back_and_cancelled_slots(db, test_org):
    first = _create(db, test_org)
    _create(db, test_org, scheduled_at="2030-06-03T14:30:00Z")

    appointment_service.cancel_appointment(db, first, now=NOW)
    replacement = _create(db, test_org, scheduled_at="2030-06-03T14:00:00Z")
    assert replacement.status == AppointmentStatus.SCHEDULED.value


def test_create_backfills_attendee_from_contact(db, test_org, test_contact):
    appt = _create(db, test_org, attendee_email=None, contact_id=str(test_contact.id))

    assert appt.attendee_name == "Jane Doe"
    assert appt.attendee_email == "jane.doe@example.com"
    assert appt.attendee_phone == "+15551234567"


def test_create_normalizes_phone_or_rejects_it(db, test_org):
    appt = _create(db, test_org, attendee_phone="(555) 123-4567")
    assert appt.attendee_phone == "+15551234567"

    with pytest.raises(ValidationError):
        _create(db, test_org, scheduled_at="2030-06-04T14:00:00Z", attendee_phone="12")


# =============================================================================
# Token access
# =============================================================================

def test_get_appointment_for_action_checks_email_case_insensitively(db, test_org):
    appt = _create(db, test_org)
    token = create_action_token(appt.id, "JANE@example.com", ActionType.CONFIRM)

    found, payload = appointment_service.get_appointment_for_action(db, token, ActionType.CONFIRM)

    assert found.id == appt.id
    assert payload.action == ActionType.CONFIRM


def test_get_appointment_for_action_errors(db, test_org):
    appt = _create(db, test_org)

    with pytest.raises(NotFoundError):
        appointment_service.get_appointment_for_action(db, "garbage")

    with pytest.raises(NotFoundError):
        appointment_service.get_appointment_for_action(
            db, create_action_token(uuid.uuid4(), "jane@example.com", "confirm")
        )

    with pytest.raises(AuthorizationError):
        appointment_service.get_appointment_for_action(
            db, create_action_token(appt.id, "mallory@example.com", "confirm")
        )

    with pytest.raises(AuthorizationError):
        appointment_service.get_appointment_for_action(
            db, create_action_token(appt.id, "jane@example.com", "confirm"), ActionType.CANCEL
        )


# =============================================================================
# Transitions
# =============================================================================

def test_confirm_then_cancel(db, test_org):
    appt = _create(db, test_org)

    appt = appointment_service.confirm_appointment(db, appt, now=NOW)
    assert appt.status == AppointmentStatus.CONFIRMED.value
    assert appt.confirmed_at == NOW

    appt = appointment_service.cancel_appointment(db, appt, reason="  ", now=NOW)
    assert appt.status == AppointmentStatus.CANCELLED.value
    assert appt.cancelled_at == NOW
    assert appt.cancel_reason == "Cancelled by attendee"


def test_cancel_keeps_given_reason(db, test_org):
    appt = _create(db, test_org)
    appt = appointment_service.cancel_appointment(db, appt, reason="Feeling better")
    assert appt.cancel_reason == "Feeling better"


@pytest.mark.parametrize("terminal", [AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED])
def test_terminal_appointments_reject_every_action(db, test_org, make_appointment, terminal):
    appt = make_appointment(status=terminal.value)

    with pytest.raises(AlreadyTerminalError, match=f"Appointment is already {terminal.value}"):
        appointment_service.confirm_appointment(db, appt)
    with pytest.raises(AlreadyTerminalError):
        appointment_service.cancel_appointment(db, appt)
    with pytest.raises(AlreadyTerminalError):
        appointment_service.reschedule_appointment(db, appt, "2030-07-01", "10:00")


def test_stale_row_loses_race_and_reports_terminal(db, test_org, make_appointment):
    from sqlalchemy import update

    from scheduling_core.db.models import Appointment

    appt = make_appointment()
    # Another request cancels the row behind this session's back
    db.execute(
        update(Appointment)
        .where(Appointment.id == appt.id)
        .values(status=AppointmentStatus.CANCELLED.value)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    appt.status = AppointmentStatus.SCHEDULED.value  # stale in-memory view

    with pytest.raises(AlreadyTerminalError):
        appointment_service.confirm_appointment(db, appt)
    assert appt.status == AppointmentStatus.CANCELLED.value


def test_reschedule_moves_slot_and_resets_reminders(db, test_org, make_appointment):
    original = datetime(2030, 6, 3, 14, 0, tzinfo=timezone.utc)
    appt = make_appointment(
        scheduled_at=original,
        duration=60,
        notes="Booked by agent",
        reminder_sent_at=NOW,
        sms_reminder_sent_at=NOW,
        reminder_call_sent_at=NOW,
    )

    result = appointment_service.reschedule_appointment(db, appt, "2030-06-05", "15:30", now=NOW)
    moved = result.appointment

    # 15:30 EDT == 19:30 UTC
    assert moved.scheduled_at == datetime(2030, 6, 5, 19, 30, tzinfo=timezone.utc)
    assert moved.end_at == datetime(2030, 6, 5, 20, 30, tzinfo=timezone.utc)
    assert moved.status == AppointmentStatus.RESCHEDULED.value
    assert result.previous_scheduled_at == original
    assert moved.notes == "Booked by agent\nRescheduled from 2030-06-03T14:00:00.000Z by attendee"
    assert moved.reminder_sent_at is None
    assert moved.sms_reminder_sent_at is None
    assert moved.reminder_call_sent_at is None


def test_reschedule_validation(db, test_org, make_appointment):
    appt = make_appointment(scheduled_at=datetime(2030, 6, 3, 14, 0, tzinfo=timezone.utc))

    with pytest.raises(ValidationError, match="New date and time are required"):
        appointment_service.reschedule_appointment(db, appt, "2030-06-05", None, now=NOW)
    with pytest.raises(ValidationError):
        appointment_service.reschedule_appointment(db, appt, "06/05/2030", "10:00", now=NOW)
    with pytest.raises(ValidationError, match="New time must be in the future"):
        appointment_service.reschedule_appointment(db, appt, "2030-05-01", "10:00", now=NOW)


def test_reschedule_conflict_excludes_itself(db, test_org, make_appointment):
    appt = make_appointment(scheduled_at=datetime(2030, 6, 3, 14, 0, tzinfo=timezone.utc), duration=60)
    blocker = make_appointment(scheduled_at=datetime(2030, 6, 4, 14, 0, tzinfo=timezone.utc))

    # Overlapping its own old slot is fine (10:30 EDT == 14:30 UTC)
    result = appointment_service.reschedule_appointment(db, appt, "2030-06-03", "10:30", now=NOW)
    assert result.appointment.scheduled_at == datetime(2030, 6, 3, 14, 30, tzinfo=timezone.utc)

    with pytest.raises(ConflictError) as exc_info:
        appointment_service.reschedule_appointment(db, appt, "2030-06-04", "09:45", now=NOW)
    assert exc_info.value.conflict.appointment_id == blocker.id


def test_complete_requires_confirmed(db, test_org, make_appointment):
    appt = make_appointment()

    with pytest.raises(ValidationError):
        appointment_service.complete_appointment(db, appt)

    appointment_service.confirm_appointment(db, appt)
    completed = appointment_service.complete_appointment(db, appt)
    assert completed.status == AppointmentStatus.COMPLETED.value

    with pytest.raises(AlreadyTerminalError):
        appointment_service.complete_appointment(db, completed)


# =============================================================================
# Listing and availability
# =============================================================================

def test_list_appointments_filters_and_orders(db, test_org, make_appointment):
    late = make_appointment(scheduled_at=datetime(2030, 6, 5, 14, 0, tzinfo=timezone.utc))
    early = make_appointment(scheduled_at=datetime(2030, 6, 3, 14, 0, tzinfo=timezone.utc))
    make_appointment(
        scheduled_at=datetime(2030, 6, 4, 14, 0, tzinfo=timezone.utc),
        status=AppointmentStatus.CANCELLED.value,
    )

    everything = appointment_service.list_appointments(db, test_org.id)
    assert [a.scheduled_at.day for a in everything] == [3, 4, 5]

    scheduled = appointment_service.list_appointments(db, test_org.id, status="scheduled")
    assert [a.id for a in scheduled] == [early.id, late.id]

    window = appointment_service.list_appointments(
        db,
        test_org.id,
        start=datetime(2030, 6, 4, 0, 0, tzinfo=timezone.utc),
        end=datetime(2030, 6, 6, 0, 0, tzinfo=timezone.utc),
    )
    assert [a.scheduled_at.day for a in window] == [4, 5]


def test_available_slots_respect_buffer_notice_and_bookings(db, test_org, make_appointment):
    db.add(CalendarSettings(organization_id=test_org.id, buffer_after_minutes=0, min_notice_hours=0))
    db.commit()
    # Monday 2030-06-03, 09:00-17:00 EDT == 13:00-21:00 UTC; book 10:00-11:00 EDT
    make_appointment(scheduled_at=datetime(2030, 6, 3, 14, 0, tzinfo=timezone.utc), duration=60)

    day = appointment_service.get_available_slots(db, test_org.id, date(2030, 6, 3), duration=60, now=NOW)

    starts = [slot.hour for slot in day.slots]
    assert starts == [13, 15, 16, 17, 18, 19, 20]
    assert day.message is None


def test_available_slots_default_buffer_and_notice(db, test_org):
    # Defaults: 15 minute buffer, 2 hours notice; "now" is 09:30 EDT
    now = datetime(2030, 6, 3, 13, 30, tzinfo=timezone.utc)
    day = appointment_service.get_available_slots(db, test_org.id, date(2030, 6, 3), duration=30, now=now)

    # Grid from 13:00 UTC in 45 minute steps; first slot at or after 15:30 UTC
    assert day.slots[0] == datetime(2030, 6, 3, 16, 0, tzinfo=timezone.utc)
    assert all((b - a) == timedelta(minutes=45) for a, b in zip(day.slots, day.slots[1:]))


def test_available_slots_closed_day(db, test_org):
    day = appointment_service.get_available_slots(db, test_org.id, date(2030, 6, 1), now=NOW)
    assert day.slots == []
    assert day.message == "Closed on this day"
