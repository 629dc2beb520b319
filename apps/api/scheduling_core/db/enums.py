"""Appointment and scheduling enums."""

from enum import Enum


class AppointmentStatus(str, Enum):
    """
    Appointment lifecycle status.

    Flow: scheduled → confirmed → completed
              ↘ rescheduled (scheduled-equivalent, re-enters the flow)
              ↘ cancelled
    """

    SCHEDULED = "scheduled"  # Booked, awaiting attendee confirmation
    CONFIRMED = "confirmed"  # Attendee confirmed
    CANCELLED = "cancelled"  # Terminal
    RESCHEDULED = "rescheduled"  # Moved by attendee
    COMPLETED = "completed"  # Terminal, meeting took place


# Statuses that hold a slot on the calendar and receive reminders
ACTIVE_APPOINTMENT_STATUSES = (
    AppointmentStatus.SCHEDULED.value,
    AppointmentStatus.CONFIRMED.value,
    AppointmentStatus.RESCHEDULED.value,
)

TERMINAL_APPOINTMENT_STATUSES = (
    AppointmentStatus.CANCELLED.value,
    AppointmentStatus.COMPLETED.value,
)


class MeetingType(str, Enum):
    """How the meeting takes place."""

    PHONE = "phone"
    VIDEO = "video"
    IN_PERSON = "in_person"


class ActionType(str, Enum):
    """Actions an attendee can take through an emailed link."""

    CONFIRM = "confirm"
    CANCEL = "cancel"
    RESCHEDULE = "reschedule"


class NotificationPreference(str, Enum):
    """Channels an attendee accepts reminders on."""

    EMAIL = "email"
    SMS = "sms"
    BOTH = "both"


class ReminderChannel(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    CALL = "call"


class SmsType(str, Enum):
    """Kinds of SMS sent for an appointment."""

    CONFIRMATION = "confirmation"
    REMINDER = "reminder"
    CANCELLATION = "cancellation"


DEFAULT_APPOINTMENT_STATUS = AppointmentStatus.SCHEDULED
DEFAULT_MEETING_TYPE = MeetingType.PHONE
DEFAULT_TIMEZONE = "America/New_York"
