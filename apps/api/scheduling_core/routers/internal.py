"""
Internal endpoints for scheduled/cron operations.

Protected by `Authorization: Bearer <CRON_SECRET>`.
Call from external cron (Render/Railway/GH Actions).
"""
import hmac
import logging

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel

from scheduling_core.core.async_utils import run_async
from scheduling_core.core.config import settings
from scheduling_core.core.deps import get_transport
from scheduling_core.db.session import SessionLocal
from scheduling_core.services import reminder_service
from scheduling_core.services.notification_transport import NotificationTransport

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/internal/scheduled", tags=["internal"])


def verify_cron_secret(authorization: str | None = Header(None)) -> None:
    """Verify the cron bearer secret."""
    expected = settings.CRON_SECRET
    if not expected:
        raise HTTPException(status_code=501, detail="CRON_SECRET not configured")

    scheme, _, provided = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not provided:
        raise HTTPException(status_code=401, detail="Unauthorized")
    if not hmac.compare_digest(provided.strip().encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")


class ReminderRunResponse(BaseModel):
    appointments_processed: int
    emails_sent: int
    sms_sent: int
    calls_initiated: int
    errors: list[str]


def _run_reminders(transport: NotificationTransport) -> ReminderRunResponse:
    with SessionLocal() as db:
        stats = run_async(reminder_service.process_due_reminders(db, transport))
    return ReminderRunResponse(**stats.as_dict())


@router.post(
    "/appointment-reminders",
    response_model=ReminderRunResponse,
    dependencies=[Depends(verify_cron_secret)],
)
def send_appointment_reminders(
    transport: NotificationTransport = Depends(get_transport),
):
    """
    Send email/SMS/voice reminders for appointments entering their reminder window.

    Run every 15 minutes or more often; the ±15 minute window plus per-channel
    claims make overlapping or repeated runs safe.
    """
    return _run_reminders(transport)


@router.get(
    "/appointment-reminders",
    response_model=ReminderRunResponse,
    dependencies=[Depends(verify_cron_secret)],
)
def send_appointment_reminders_get(
    transport: NotificationTransport = Depends(get_transport),
):
    """GET variant for schedulers that can only issue GET requests."""
    return _run_reminders(transport)
