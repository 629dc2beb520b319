"""Value types shared by notification transports and email rendering."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from scheduling_core.db.models import Appointment, Organization
from scheduling_core.utils.datetime_parsing import to_local

DEFAULT_PRIMARY_COLOR = "#2563eb"


class TransportError(Exception):
    """Notification provider rejected or failed a send."""
    pass


@dataclass(frozen=True)
class SendResult:
    success: bool
    error: str | None = None
    external_id: str | None = None

    @classmethod
    def failed(cls, error: str) -> "SendResult":
        return cls(success=False, error=error)


@dataclass(frozen=True)
class AppointmentDetails:
    """
    Detached snapshot of an appointment for notifications.

    Built while the session is open so sends can run after the request or
    concurrently without touching the ORM.
    """
    appointment_id: UUID
    organization_id: UUID
    title: str
    description: str | None
    scheduled_at: datetime
    end_at: datetime
    duration: int
    time_zone: str
    meeting_type: str
    meeting_link: str | None
    location: str | None
    phone_number: str | None
    attendee_name: str | None
    attendee_email: str | None
    attendee_phone: str | None

    @classmethod
    def from_appointment(cls, appointment: Appointment) -> "AppointmentDetails":
        return cls(
            appointment_id=appointment.id,
            organization_id=appointment.organization_id,
            title=appointment.title,
            description=appointment.description,
            scheduled_at=appointment.scheduled_at,
            end_at=appointment.end_at,
            duration=appointment.duration,
            time_zone=appointment.time_zone,
            meeting_type=appointment.meeting_type,
            meeting_link=appointment.meeting_link,
            location=appointment.location,
            phone_number=appointment.phone_number,
            attendee_name=appointment.attendee_name,
            attendee_email=appointment.attendee_email,
            attendee_phone=appointment.attendee_phone,
        )

    @property
    def local_start(self) -> datetime:
        return to_local(self.scheduled_at, self.time_zone)

    @property
    def display_date(self) -> str:
        local = self.local_start
        return f"{local:%A, %B} {local.day}, {local.year}"

    @property
    def display_time(self) -> str:
        local = self.local_start
        hour = local.hour % 12 or 12
        period = "PM" if local.hour >= 12 else "AM"
        return f"{hour}:{local.minute:02d} {period} {local.tzname()}"


@dataclass(frozen=True)
class EmailBranding:
    business_name: str
    from_address: str | None = None
    reply_to: str | None = None
    primary_color: str = DEFAULT_PRIMARY_COLOR
    logo_url: str | None = None
    powered_by_hidden: bool = False

    @classmethod
    def for_organization(cls, org: Organization | None) -> "EmailBranding":
        """Branding from organization settings, falling back to the org name."""
        if org is None:
            return cls(business_name="Your provider")
        org_settings = org.settings or {}
        return cls(
            business_name=org_settings.get("email_business_name") or org.name,
            from_address=org_settings.get("email_from_address"),
            reply_to=org_settings.get("email_reply_to"),
            primary_color=org_settings.get("email_primary_color") or DEFAULT_PRIMARY_COLOR,
            logo_url=org_settings.get("email_logo_url"),
            powered_by_hidden=bool(org_settings.get("powered_by_hidden", False)),
        )
