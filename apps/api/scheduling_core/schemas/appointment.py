"""Pydantic schemas for appointments, action links and business hours."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from scheduling_core.db.enums import (
    DEFAULT_TIMEZONE,
    ActionType,
    MeetingType,
    NotificationPreference,
)


# =============================================================================
# Meeting variants
# =============================================================================

class PhoneMeeting(BaseModel):
    kind: Literal["phone"] = "phone"
    phone_number: str | None = None


class VideoMeeting(BaseModel):
    kind: Literal["video"] = "video"
    meeting_link: str | None = None


class InPersonMeeting(BaseModel):
    kind: Literal["in_person"] = "in_person"
    location: str | None = None


Meeting = Annotated[
    Union[PhoneMeeting, VideoMeeting, InPersonMeeting],
    Field(discriminator="kind"),
]


def meeting_for(appointment) -> PhoneMeeting | VideoMeeting | InPersonMeeting:
    """Tagged meeting variant for an appointment row."""
    if appointment.meeting_type == MeetingType.VIDEO.value:
        return VideoMeeting(meeting_link=appointment.meeting_link)
    if appointment.meeting_type == MeetingType.IN_PERSON.value:
        return InPersonMeeting(location=appointment.location)
    return PhoneMeeting(phone_number=appointment.phone_number)


# =============================================================================
# Booking
# =============================================================================

class AppointmentCreate(BaseModel):
    """Booking request. title/scheduled_at are checked by the service for clearer errors."""

    title: str | None = None
    description: str | None = None
    scheduled_at: str | None = None  # ISO 8601
    duration: int = Field(30, ge=1, le=24 * 60)
    time_zone: str = DEFAULT_TIMEZONE
    meeting_type: MeetingType = MeetingType.PHONE
    meeting_link: str | None = Field(None, max_length=500)
    location: str | None = Field(None, max_length=500)
    phone_number: str | None = None

    attendee_name: str | None = Field(None, max_length=255)
    attendee_email: EmailStr | None = None
    attendee_phone: str | None = None
    notification_preference: NotificationPreference | None = None

    contact_id: UUID | None = None
    agent_id: UUID | None = None
    call_id: UUID | None = None
    notes: str | None = None
    send_confirmation: bool = True


class AppointmentRead(BaseModel):
    """Staff-facing appointment view."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: UUID
    contact_id: UUID | None = None
    agent_id: UUID | None = None
    call_id: UUID | None = None
    title: str
    description: str | None = None
    scheduled_at: datetime
    end_at: datetime
    duration: int
    time_zone: str
    meeting_type: MeetingType
    meeting: Meeting
    attendee_name: str | None = None
    attendee_email: str | None = None
    attendee_phone: str | None = None
    notification_preference: NotificationPreference | None = None
    status: str
    confirmed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancel_reason: str | None = None
    notes: str | None = None
    reminder_sent_at: datetime | None = None
    sms_reminder_sent_at: datetime | None = None
    reminder_call_sent_at: datetime | None = None
    created_at: datetime

    @classmethod
    def from_appointment(cls, appointment) -> "AppointmentRead":
        data = {name: getattr(appointment, name) for name in cls.model_fields if name != "meeting"}
        return cls(**data, meeting=meeting_for(appointment))


class ConflictDetail(BaseModel):
    message: str
    conflicting_appointment_id: UUID | None = None
    conflicting_start: datetime
    conflicting_end: datetime


# =============================================================================
# Public action pages
# =============================================================================

class PublicAppointmentRead(BaseModel):
    """Attendee-safe appointment view (no notes, no internal ids)."""

    id: UUID
    title: str
    description: str | None = None
    scheduled_at: datetime
    end_at: datetime
    duration: int
    time_zone: str
    meeting: Meeting
    status: str
    attendee_name: str | None = None

    @classmethod
    def from_appointment(cls, appointment) -> "PublicAppointmentRead":
        return cls(
            id=appointment.id,
            title=appointment.title,
            description=appointment.description,
            scheduled_at=appointment.scheduled_at,
            end_at=appointment.end_at,
            duration=appointment.duration,
            time_zone=appointment.time_zone,
            meeting=meeting_for(appointment),
            status=appointment.status,
            attendee_name=appointment.attendee_name,
        )


class BrandingRead(BaseModel):
    business_name: str
    logo_url: str | None = None
    primary_color: str
    powered_by_hidden: bool = False


class ActionPageRead(BaseModel):
    appointment: PublicAppointmentRead
    action: ActionType
    branding: BrandingRead


class AppointmentActionRequest(BaseModel):
    action: ActionType
    reason: str | None = Field(None, max_length=500)
    new_date: str | None = Field(None, alias="newDate")  # YYYY-MM-DD, local
    new_time: str | None = Field(None, alias="newTime")  # HH:MM, local

    model_config = ConfigDict(populate_by_name=True)


class ActionResult(BaseModel):
    success: bool = True
    action: ActionType
    appointment: PublicAppointmentRead
    previous_scheduled_at: datetime | None = None


# =============================================================================
# Business hours and availability
# =============================================================================

class BusinessHoursStatus(BaseModel):
    timezone: str
    is_open: bool
    next_open: str | None = None
    prompt: str


class AvailableSlotsResponse(BaseModel):
    date: str  # YYYY-MM-DD, organization local
    slots: list[datetime]
    available: bool
    message: str | None = None
