"""Appointment service - booking and lifecycle state machine.

Handles:
- Booking with validation and conflict detection
- Token-based lookup for attendee action pages
- Confirm, cancel, reschedule and complete transitions
- Available slot calculation from business hours

States: scheduled → {confirmed, cancelled, rescheduled}; confirmed → {cancelled,
rescheduled, completed}; rescheduled behaves like scheduled. cancelled and
completed are terminal. Transitions are conditional updates on status, so two
concurrent requests against the same row cannot both win.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from scheduling_core.core.security import ActionTokenPayload, verify_action_token
from scheduling_core.db.enums import (
    ACTIVE_APPOINTMENT_STATUSES,
    TERMINAL_APPOINTMENT_STATUSES,
    ActionType,
    AppointmentStatus,
)
from scheduling_core.db.models import Appointment, CalendarSettings, Contact, Organization
from scheduling_core.schemas.appointment import AppointmentCreate
from scheduling_core.services import conflict_detector
from scheduling_core.utils import business_hours
from scheduling_core.utils.datetime_parsing import (
    combine_local_date_time,
    parse_iso_instant,
    resolve_timezone,
)
from scheduling_core.utils.normalization import normalize_email, normalize_name, normalize_phone

logger = logging.getLogger(__name__)

DEFAULT_DURATION_MINUTES = 30
DEFAULT_CANCEL_REASON = "Cancelled by attendee"
MAX_LIST_LIMIT = 100
DEFAULT_BUFFER_AFTER_MINUTES = 15
DEFAULT_MIN_NOTICE_HOURS = 2


# =============================================================================
# Exceptions
# =============================================================================

class AppointmentServiceError(Exception):
    """Base error for appointment operations."""
    pass


class ValidationError(AppointmentServiceError):
    """Missing or malformed input, or a time in the past."""
    pass


class NotFoundError(AppointmentServiceError):
    """Unknown appointment, or an action token that does not verify."""
    pass


class AuthorizationError(AppointmentServiceError):
    """Valid token that does not match the appointment's attendee or action."""
    pass


class ConflictError(AppointmentServiceError):
    """Requested interval overlaps an active appointment."""

    def __init__(self, message: str, conflict: conflict_detector.BookedInterval):
        super().__init__(message)
        self.conflict = conflict


class AlreadyTerminalError(AppointmentServiceError):
    """Mutation attempted on a cancelled or completed appointment."""

    def __init__(self, status: str):
        super().__init__(f"Appointment is already {status}")
        self.status = status


# =============================================================================
# Types
# =============================================================================

@dataclass
class RescheduleResult:
    appointment: Appointment
    previous_scheduled_at: datetime


@dataclass
class SlotDay:
    date: date
    slots: list[datetime]
    message: str | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso_z(instant: datetime) -> str:
    """UTC ISO string with millisecond precision and Z suffix."""
    text = instant.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


def _append_note(existing: str | None, line: str) -> str:
    return f"{existing}\n{line}" if existing else line


def _ensure_not_terminal(appointment: Appointment) -> None:
    if appointment.status in TERMINAL_APPOINTMENT_STATUSES:
        raise AlreadyTerminalError(appointment.status)


def _check_conflict(
    db: Session,
    org_id: UUID,
    start: datetime,
    end: datetime,
    exclude_appointment_id: UUID | None = None,
) -> None:
    intervals = conflict_detector.get_booked_intervals(
        db, org_id, start, end, exclude_appointment_id=exclude_appointment_id
    )
    conflict = conflict_detector.find_conflict(start, end, intervals)
    if conflict:
        raise ConflictError("This time slot conflicts with an existing appointment", conflict)


# =============================================================================
# Booking
# =============================================================================

def create_appointment(
    db: Session,
    org_id: UUID,
    data: AppointmentCreate,
    now: datetime | None = None,
) -> Appointment:
    """
    Book an appointment.

    Validates title/scheduled_at, rejects past times and overlaps with the
    organization's active appointments, and back-fills attendee details from
    contact_id when given.
    """
    now = now or _utcnow()

    title = (data.title or "").strip()
    if not title:
        raise ValidationError("title is required")
    if not data.scheduled_at:
        raise ValidationError("scheduled_at is required (ISO 8601 format)")

    scheduled_at = parse_iso_instant(data.scheduled_at, data.time_zone)
    if scheduled_at is None:
        raise ValidationError("scheduled_at must be a valid ISO 8601 date")
    if scheduled_at <= now:
        raise ValidationError("scheduled_at must be in the future")

    duration = data.duration or DEFAULT_DURATION_MINUTES
    end_at = scheduled_at + timedelta(minutes=duration)

    _check_conflict(db, org_id, scheduled_at, end_at)

    attendee_name = normalize_name(data.attendee_name)
    attendee_email = normalize_email(data.attendee_email)
    try:
        attendee_phone = normalize_phone(data.attendee_phone)
    except ValueError as e:
        raise ValidationError(str(e)) from e

    if data.contact_id:
        contact = db.query(Contact).filter(
            Contact.id == data.contact_id,
            Contact.organization_id == org_id,
        ).first()
        if contact:
            attendee_name = attendee_name or normalize_name(contact.full_name)
            attendee_email = attendee_email or normalize_email(contact.email)
            attendee_phone = attendee_phone or contact.phone_number
        else:
            logger.info("Contact %s not found for org %s; skipping back-fill", data.contact_id, org_id)

    appointment = Appointment(
        organization_id=org_id,
        contact_id=data.contact_id,
        agent_id=data.agent_id,
        call_id=data.call_id,
        title=title,
        description=data.description,
        scheduled_at=scheduled_at,
        end_at=end_at,
        duration=duration,
        time_zone=resolve_timezone(data.time_zone).name,
        meeting_type=data.meeting_type.value,
        meeting_link=data.meeting_link,
        location=data.location,
        phone_number=data.phone_number,
        attendee_name=attendee_name,
        attendee_email=attendee_email,
        attendee_phone=attendee_phone,
        notification_preference=(
            data.notification_preference.value if data.notification_preference else None
        ),
        notes=data.notes,
        status=AppointmentStatus.SCHEDULED.value,
    )
    db.add(appointment)
    db.commit()
    db.refresh(appointment)

    logger.info("Appointment %s booked for org %s at %s", appointment.id, org_id, _iso_z(scheduled_at))
    return appointment


def get_appointment(
    db: Session,
    appointment_id: UUID,
    org_id: UUID,
) -> Appointment | None:
    """Get appointment by ID."""
    return db.query(Appointment).filter(
        Appointment.id == appointment_id,
        Appointment.organization_id == org_id,
    ).first()


def list_appointments(
    db: Session,
    org_id: UUID,
    status: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 50,
) -> list[Appointment]:
    """List appointments ordered by start time, limit capped at 100."""
    query = db.query(Appointment).filter(Appointment.organization_id == org_id)
    if status:
        query = query.filter(Appointment.status == status)
    if start:
        query = query.filter(Appointment.scheduled_at >= start)
    if end:
        query = query.filter(Appointment.scheduled_at <= end)
    limit = max(1, min(limit, MAX_LIST_LIMIT))
    return query.order_by(Appointment.scheduled_at.asc()).limit(limit).all()


# =============================================================================
# Token Access
# =============================================================================

def get_appointment_for_action(
    db: Session,
    token: str,
    action: ActionType | str | None = None,
) -> tuple[Appointment, ActionTokenPayload]:
    """
    Resolve an action token to its appointment.

    Raises NotFoundError when the token does not verify or the appointment is
    gone, AuthorizationError when the encoded email no longer matches the
    attendee (case-insensitive) or the token was issued for another action.
    """
    payload = verify_action_token(token)
    if payload is None:
        raise NotFoundError("Invalid or expired token")

    appointment = db.query(Appointment).filter(Appointment.id == payload.appointment_id).first()
    if not appointment:
        raise NotFoundError("Appointment not found")

    attendee_email = normalize_email(appointment.attendee_email)
    if not attendee_email or attendee_email != normalize_email(payload.email):
        logger.warning("Action token email mismatch for appointment %s", appointment.id)
        raise AuthorizationError("Email mismatch")

    if action is not None and ActionType(action) != payload.action:
        raise AuthorizationError("Token not valid for this action")

    return appointment, payload


# =============================================================================
# Transitions
# =============================================================================

def _apply_transition(
    db: Session,
    appointment: Appointment,
    values: dict,
    allowed_from: tuple[str, ...] = ACTIVE_APPOINTMENT_STATUSES,
) -> Appointment:
    """
    Apply a status change only if the row is still in an allowed state.

    A lost race (rowcount 0) reloads the row and reports its real status.
    """
    _ensure_not_terminal(appointment)
    if appointment.status not in allowed_from:
        raise ValidationError(f"Cannot change appointment with status {appointment.status}")

    result = db.execute(
        update(Appointment)
        .where(
            Appointment.id == appointment.id,
            Appointment.status.in_(allowed_from),
        )
        .values(**values, updated_at=_utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        db.refresh(appointment)
        _ensure_not_terminal(appointment)
        raise ValidationError(f"Cannot change appointment with status {appointment.status}")

    db.commit()
    db.refresh(appointment)
    return appointment


def confirm_appointment(
    db: Session,
    appointment: Appointment,
    now: datetime | None = None,
) -> Appointment:
    """Confirm a non-terminal appointment."""
    now = now or _utcnow()
    appointment = _apply_transition(
        db,
        appointment,
        {"status": AppointmentStatus.CONFIRMED.value, "confirmed_at": now},
    )
    logger.info("Appointment %s confirmed", appointment.id)
    return appointment


def cancel_appointment(
    db: Session,
    appointment: Appointment,
    reason: str | None = None,
    now: datetime | None = None,
) -> Appointment:
    """Cancel a non-terminal appointment. Caller sends the cancellation notice."""
    now = now or _utcnow()
    appointment = _apply_transition(
        db,
        appointment,
        {
            "status": AppointmentStatus.CANCELLED.value,
            "cancelled_at": now,
            "cancel_reason": (reason or "").strip() or DEFAULT_CANCEL_REASON,
        },
    )
    logger.info("Appointment %s cancelled", appointment.id)
    return appointment


def reschedule_appointment(
    db: Session,
    appointment: Appointment,
    new_date: str | None,
    new_time: str | None,
    now: datetime | None = None,
) -> RescheduleResult:
    """
    Move an appointment to a new local date/time, keeping its duration.

    The new slot is conflict-checked (excluding this appointment), the move is
    appended to notes, and reminder stamps are cleared for the new slot.
    """
    now = now or _utcnow()
    _ensure_not_terminal(appointment)

    if not new_date or not new_time:
        raise ValidationError("New date and time are required for rescheduling")

    new_start = combine_local_date_time(new_date, new_time, appointment.time_zone)
    if new_start is None:
        raise ValidationError("New date and time must be YYYY-MM-DD and HH:MM")
    if new_start <= now:
        raise ValidationError("New time must be in the future")
    new_end = new_start + timedelta(minutes=appointment.duration)

    _check_conflict(
        db,
        appointment.organization_id,
        new_start,
        new_end,
        exclude_appointment_id=appointment.id,
    )

    previous = appointment.scheduled_at
    appointment = _apply_transition(
        db,
        appointment,
        {
            "status": AppointmentStatus.RESCHEDULED.value,
            "scheduled_at": new_start,
            "end_at": new_end,
            "notes": _append_note(
                appointment.notes, f"Rescheduled from {_iso_z(previous)} by attendee"
            ),
            "reminder_sent_at": None,
            "sms_reminder_sent_at": None,
            "reminder_call_sent_at": None,
        },
    )
    logger.info("Appointment %s rescheduled from %s to %s", appointment.id, _iso_z(previous), _iso_z(new_start))
    return RescheduleResult(appointment=appointment, previous_scheduled_at=previous)


def complete_appointment(
    db: Session,
    appointment: Appointment,
) -> Appointment:
    """Mark a confirmed appointment as completed (staff only)."""
    appointment = _apply_transition(
        db,
        appointment,
        {"status": AppointmentStatus.COMPLETED.value},
        allowed_from=(AppointmentStatus.CONFIRMED.value,),
    )
    logger.info("Appointment %s completed", appointment.id)
    return appointment


# =============================================================================
# Availability
# =============================================================================

def get_calendar_settings(db: Session, org_id: UUID) -> CalendarSettings | None:
    return db.query(CalendarSettings).filter(CalendarSettings.organization_id == org_id).first()


def get_org_business_hours(org: Organization | None) -> business_hours.BusinessHoursConfig:
    """Stored business hours for an org (org timezone as fallback), else the default."""
    if org is None:
        return business_hours.get_default_business_hours()
    config = business_hours.resolve_business_hours(org.business_hours)
    if org.business_hours and not config.get("timezone"):
        config["timezone"] = org.timezone
    return config


def get_available_slots(
    db: Session,
    org_id: UUID,
    local_date: date,
    duration: int = DEFAULT_DURATION_MINUTES,
    now: datetime | None = None,
) -> SlotDay:
    """
    Open start times on a local date.

    Walks the day's business-hours window in steps of duration + buffer, skipping
    slots that overlap active appointments (extended by the buffer) or start
    sooner than the minimum notice.
    """
    now = now or _utcnow()
    org = db.query(Organization).filter(Organization.id == org_id).first()
    config = get_org_business_hours(org)
    cal_settings = get_calendar_settings(db, org_id)
    buffer_after = cal_settings.buffer_after_minutes if cal_settings else DEFAULT_BUFFER_AFTER_MINUTES
    min_notice = cal_settings.min_notice_hours if cal_settings else DEFAULT_MIN_NOTICE_HOURS

    window = business_hours.local_day_window(config, local_date)
    if window is None:
        return SlotDay(date=local_date, slots=[], message="Closed on this day")
    opens, closes = window

    booked = conflict_detector.get_booked_intervals(
        db, org_id, opens, closes, buffer_after_minutes=buffer_after
    )
    earliest = now + timedelta(hours=min_notice)
    step = timedelta(minutes=duration + buffer_after)
    length = timedelta(minutes=duration)

    slots: list[datetime] = []
    slot_start = opens
    while slot_start + length <= closes:
        slot_end = slot_start + length
        if slot_start >= earliest and not conflict_detector.has_conflict(slot_start, slot_end, booked):
            slots.append(slot_start)
        slot_start += step

    message = None if slots else "No available slots"
    return SlotDay(date=local_date, slots=slots, message=message)
