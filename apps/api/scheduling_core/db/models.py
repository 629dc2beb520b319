"""SQLAlchemy ORM models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from scheduling_core.db.base import Base
from scheduling_core.db.enums import (
    DEFAULT_APPOINTMENT_STATUS,
    DEFAULT_MEETING_TYPE,
    DEFAULT_TIMEZONE,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Organization(Base):
    """
    Tenant. Holds the business-hours config and branding/reminder flags.

    `business_hours` is a BusinessHoursConfig dict ({"timezone", "schedule"}) or null
    when the organization has not configured hours.
    """

    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), default=DEFAULT_TIMEZONE, nullable=False)
    business_hours: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    # Branding (email_business_name, email_logo_url, ...) and phone_reminders flags
    settings: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)


class Contact(Base):
    """Contact record used to back-fill attendee details on booking."""

    __tablename__ = "contacts"
    __table_args__ = (
        Index("idx_contacts_org", "organization_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    notification_preference: Mapped[str | None] = mapped_column(String(10), nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)

    @property
    def full_name(self) -> str | None:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) or None


class CalendarSettings(Base):
    """
    Per-organization reminder and booking settings.

    Organizations without a row get the default reminder pass (24h lead).
    """

    __tablename__ = "calendar_settings"
    __table_args__ = (
        CheckConstraint("reminder_hours_before > 0", name="ck_reminder_hours_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), unique=True, nullable=False
    )

    # Reminders
    send_reminder: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    reminder_hours_before: Mapped[int] = mapped_column(Integer, default=24, nullable=False)
    sms_reminders_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    phone_reminders_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Slot generation
    buffer_after_minutes: Mapped[int] = mapped_column(Integer, default=15, nullable=False)
    min_notice_hours: Mapped[int] = mapped_column(Integer, default=2, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(default=_utcnow, onupdate=_utcnow, nullable=False)


class Appointment(Base):
    """
    Booked appointment.

    scheduled_at/end_at are absolute instants (UTC); time_zone is display only.
    contact_id, agent_id and call_id are loose references owned elsewhere.
    notes is append-only history for reschedules.
    """

    __tablename__ = "appointments"
    __table_args__ = (
        Index("idx_appointments_org_time", "organization_id", "scheduled_at"),
        Index("idx_appointments_status_time", "status", "scheduled_at"),
        CheckConstraint("duration > 0", name="ck_appointment_duration_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    contact_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    agent_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    call_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Timing
    scheduled_at: Mapped[datetime] = mapped_column(nullable=False)
    end_at: Mapped[datetime] = mapped_column(nullable=False)
    duration: Mapped[int] = mapped_column(Integer, default=30, nullable=False)  # minutes
    time_zone: Mapped[str] = mapped_column(String(64), default=DEFAULT_TIMEZONE, nullable=False)

    # Meeting
    meeting_type: Mapped[str] = mapped_column(
        String(20), default=DEFAULT_MEETING_TYPE.value, nullable=False
    )
    meeting_link: Mapped[str | None] = mapped_column(String(500), nullable=True)
    location: Mapped[str | None] = mapped_column(String(500), nullable=True)
    phone_number: Mapped[str | None] = mapped_column(String(32), nullable=True)

    # Attendee
    attendee_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    attendee_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    attendee_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    notification_preference: Mapped[str | None] = mapped_column(String(10), nullable=True)

    # Lifecycle
    status: Mapped[str] = mapped_column(
        String(20), default=DEFAULT_APPOINTMENT_STATUS.value, nullable=False
    )
    confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Reminder dedup stamps (claimed atomically by the reminder job)
    reminder_sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    sms_reminder_sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reminder_call_sent_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=_utcnow, onupdate=_utcnow, nullable=False)
