"""Appointments router - staff booking, listing and business-hours endpoints.

All endpoints are scoped to the organization in the caller's session token.
"""

from datetime import date, datetime, time, timezone
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from scheduling_core.core.deps import StaffSession, get_current_session, get_db, get_transport
from scheduling_core.core.security import build_action_urls
from scheduling_core.db.enums import DEFAULT_TIMEZONE, AppointmentStatus
from scheduling_core.db.models import Organization
from scheduling_core.schemas.appointment import (
    AppointmentCreate,
    AppointmentRead,
    AvailableSlotsResponse,
    BusinessHoursStatus,
    ConflictDetail,
)
from scheduling_core.services import appointment_email_service, appointment_service
from scheduling_core.services.appointment_service import (
    AlreadyTerminalError,
    ConflictError,
    ValidationError,
)
from scheduling_core.services.notification_transport import NotificationTransport
from scheduling_core.services.notification_types import AppointmentDetails, EmailBranding
from scheduling_core.utils import business_hours
from scheduling_core.utils.datetime_parsing import parse_iso_instant, parse_local_date

router = APIRouter(prefix="/appointments", tags=["appointments"])


# =============================================================================
# Helper Functions
# =============================================================================

def _conflict_exception(e: ConflictError) -> HTTPException:
    detail = ConflictDetail(
        message=str(e),
        conflicting_appointment_id=e.conflict.appointment_id,
        conflicting_start=e.conflict.start,
        conflicting_end=e.conflict.end,
    )
    return HTTPException(status_code=409, detail=detail.model_dump(mode="json"))


def _parse_range_bound(value: str | None, end_of_day: bool = False) -> datetime | None:
    """Accept YYYY-MM-DD or a full ISO timestamp for list filters."""
    if not value:
        return None
    day = parse_local_date(value)
    if day is not None:
        return datetime.combine(day, time.max if end_of_day else time.min, tzinfo=timezone.utc)
    parsed = parse_iso_instant(value, "UTC")
    if parsed is None:
        raise HTTPException(status_code=400, detail=f"Invalid date: {value}")
    return parsed


def _get_appointment_or_404(db: Session, appointment_id: UUID, org_id: UUID):
    appointment = appointment_service.get_appointment(db, appointment_id, org_id)
    if not appointment:
        raise HTTPException(status_code=404, detail="Appointment not found")
    return appointment


# =============================================================================
# Booking
# =============================================================================

@router.post("", response_model=AppointmentRead, status_code=201)
def create_appointment(
    data: AppointmentCreate,
    background_tasks: BackgroundTasks,
    session: StaffSession = Depends(get_current_session),
    db: Session = Depends(get_db),
    transport: NotificationTransport = Depends(get_transport),
):
    """
    Book an appointment for the caller's organization.

    Returns 409 with the colliding slot when the time is taken. The
    confirmation email is sent after the response and never fails the booking.
    """
    try:
        appointment = appointment_service.create_appointment(db, session.org_id, data)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ConflictError as e:
        raise _conflict_exception(e)

    if data.send_confirmation and appointment.attendee_email:
        org = db.query(Organization).filter(Organization.id == session.org_id).first()
        background_tasks.add_task(
            appointment_email_service.send_confirmation_safely,
            transport,
            AppointmentDetails.from_appointment(appointment),
            EmailBranding.for_organization(org),
            build_action_urls(appointment.id, appointment.attendee_email),
        )

    return AppointmentRead.from_appointment(appointment)


@router.get("", response_model=list[AppointmentRead])
def list_appointments(
    status: AppointmentStatus | None = Query(None),
    start_date: str | None = Query(None, description="YYYY-MM-DD or ISO 8601"),
    end_date: str | None = Query(None, description="YYYY-MM-DD or ISO 8601"),
    limit: int = Query(50, ge=1, le=100),
    session: StaffSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """List the organization's appointments ordered by start time."""
    appointments = appointment_service.list_appointments(
        db,
        session.org_id,
        status=status.value if status else None,
        start=_parse_range_bound(start_date),
        end=_parse_range_bound(end_date, end_of_day=True),
        limit=limit,
    )
    return [AppointmentRead.from_appointment(a) for a in appointments]


# =============================================================================
# Business Hours & Availability
# =============================================================================

@router.get("/business-hours", response_model=BusinessHoursStatus)
def get_business_hours_status(
    session: StaffSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Open/closed status, next opening and prompt text for the organization."""
    org = db.query(Organization).filter(Organization.id == session.org_id).first()
    config = appointment_service.get_org_business_hours(org)
    return BusinessHoursStatus(
        timezone=config.get("timezone") or DEFAULT_TIMEZONE,
        is_open=business_hours.is_within_business_hours(config),
        next_open=business_hours.get_next_open_time(config),
        prompt=business_hours.format_business_hours_for_prompt(config),
    )


@router.get("/available-slots", response_model=AvailableSlotsResponse)
def get_available_slots(
    date_: str = Query(..., alias="date", description="YYYY-MM-DD in the organization's timezone"),
    duration: int = Query(30, ge=5, le=480),
    session: StaffSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Open start times for a local date, honoring buffers and minimum notice."""
    local_date: date | None = parse_local_date(date_)
    if local_date is None:
        raise HTTPException(status_code=400, detail="date must be YYYY-MM-DD")

    day = appointment_service.get_available_slots(db, session.org_id, local_date, duration)
    return AvailableSlotsResponse(
        date=day.date.isoformat(),
        slots=day.slots,
        available=bool(day.slots),
        message=day.message,
    )


# =============================================================================
# Single Appointment
# =============================================================================

@router.get("/{appointment_id}", response_model=AppointmentRead)
def get_appointment(
    appointment_id: UUID,
    session: StaffSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Get one appointment in the caller's organization."""
    return AppointmentRead.from_appointment(_get_appointment_or_404(db, appointment_id, session.org_id))


@router.post("/{appointment_id}/complete", response_model=AppointmentRead)
def complete_appointment(
    appointment_id: UUID,
    session: StaffSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Mark a confirmed appointment as completed."""
    appointment = _get_appointment_or_404(db, appointment_id, session.org_id)
    try:
        appointment = appointment_service.complete_appointment(db, appointment)
    except AlreadyTerminalError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return AppointmentRead.from_appointment(appointment)
