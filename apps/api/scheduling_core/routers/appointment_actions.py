"""Public appointment action router - confirm/cancel/reschedule via emailed links.

Unauthenticated: the signed action token is the credential. Unknown tokens and
mismatched attendees get the same wording so callers cannot tell which case
occurred.
"""

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from scheduling_core.core.deps import get_db, get_transport
from scheduling_core.core.rate_limit import PUBLIC_ACTION_LIMIT, limiter
from scheduling_core.core.security import build_action_urls
from scheduling_core.db.enums import ActionType
from scheduling_core.db.models import Organization
from scheduling_core.schemas.appointment import (
    ActionPageRead,
    ActionResult,
    AppointmentActionRequest,
    BrandingRead,
    ConflictDetail,
    PublicAppointmentRead,
)
from scheduling_core.services import appointment_email_service, appointment_service
from scheduling_core.services.appointment_service import (
    AlreadyTerminalError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
)
from scheduling_core.services.notification_transport import NotificationTransport
from scheduling_core.services.notification_types import AppointmentDetails, EmailBranding

router = APIRouter(prefix="/public/appointments", tags=["appointment-actions"])

GENERIC_LINK_ERROR = "Invalid or expired link"


def _to_http_error(e: appointment_service.AppointmentServiceError) -> HTTPException:
    """Map service errors to HTTP responses for the public pages."""
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=GENERIC_LINK_ERROR)
    if isinstance(e, AuthorizationError):
        return HTTPException(status_code=403, detail=GENERIC_LINK_ERROR)
    if isinstance(e, AlreadyTerminalError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, ConflictError):
        detail = ConflictDetail(
            message=str(e),
            conflicting_start=e.conflict.start,
            conflicting_end=e.conflict.end,
        )
        return HTTPException(status_code=409, detail=detail.model_dump(mode="json"))
    return HTTPException(status_code=400, detail=str(e))


def _branding_for(db: Session, org_id) -> EmailBranding:
    org = db.query(Organization).filter(Organization.id == org_id).first()
    return EmailBranding.for_organization(org)


@router.get("/action", response_model=ActionPageRead)
@limiter.limit(PUBLIC_ACTION_LIMIT)
def get_action_page(
    request: Request,
    token: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
):
    """Appointment, requested action and org branding for an action link."""
    try:
        appointment, payload = appointment_service.get_appointment_for_action(db, token)
    except appointment_service.AppointmentServiceError as e:
        raise _to_http_error(e)

    branding = _branding_for(db, appointment.organization_id)
    return ActionPageRead(
        appointment=PublicAppointmentRead.from_appointment(appointment),
        action=payload.action,
        branding=BrandingRead(
            business_name=branding.business_name,
            logo_url=branding.logo_url,
            primary_color=branding.primary_color,
            powered_by_hidden=branding.powered_by_hidden,
        ),
    )


@router.post("/action", response_model=ActionResult)
@limiter.limit(PUBLIC_ACTION_LIMIT)
def perform_action(
    request: Request,
    data: AppointmentActionRequest,
    background_tasks: BackgroundTasks,
    token: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    transport: NotificationTransport = Depends(get_transport),
):
    """
    Confirm, cancel or reschedule the appointment an action link points to.

    Notification emails go out after the response; a failed send never undoes
    the state change.
    """
    previous_scheduled_at = None
    try:
        appointment, _ = appointment_service.get_appointment_for_action(db, token, data.action)

        if data.action == ActionType.CONFIRM:
            appointment = appointment_service.confirm_appointment(db, appointment)

        elif data.action == ActionType.CANCEL:
            appointment = appointment_service.cancel_appointment(db, appointment, reason=data.reason)
            background_tasks.add_task(
                appointment_email_service.send_cancellation_safely,
                transport,
                AppointmentDetails.from_appointment(appointment),
                _branding_for(db, appointment.organization_id),
            )

        else:
            result = appointment_service.reschedule_appointment(
                db, appointment, data.new_date, data.new_time
            )
            appointment = result.appointment
            previous_scheduled_at = result.previous_scheduled_at
            background_tasks.add_task(
                appointment_email_service.send_rescheduled_safely,
                transport,
                AppointmentDetails.from_appointment(appointment),
                previous_scheduled_at,
                _branding_for(db, appointment.organization_id),
                build_action_urls(appointment.id, appointment.attendee_email),
            )
    except appointment_service.AppointmentServiceError as e:
        raise _to_http_error(e)

    return ActionResult(
        action=data.action,
        appointment=PublicAppointmentRead.from_appointment(appointment),
        previous_scheduled_at=previous_scheduled_at,
    )
