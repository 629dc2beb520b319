"""Appointment Email Service - attendee notifications for the appointment lifecycle.

Provides:
- HTML email templates for confirmation, cancellation, reschedule and reminder emails
- Variable building for appointment context
- Best-effort send helpers that log and swallow transport failures
"""

from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from scheduling_core.db.enums import MeetingType
from scheduling_core.services.notification_types import (
    AppointmentDetails,
    EmailBranding,
    SendResult,
)
from scheduling_core.utils.datetime_parsing import to_local
from scheduling_core.utils.normalization import mask_email

if TYPE_CHECKING:
    from scheduling_core.services.notification_transport import NotificationTransport

logger = logging.getLogger(__name__)

# Variable pattern for template substitution: {{variable_name}}
VARIABLE_PATTERN = re.compile(r"\{\{(\w+)\}\}")

MEETING_TYPE_DISPLAY = {
    MeetingType.PHONE.value: "Phone call",
    MeetingType.VIDEO.value: "Video call",
    MeetingType.IN_PERSON.value: "In person",
}


# =============================================================================
# Templates
# =============================================================================

LAYOUT = """<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <div style="background: {{primary_color}}; padding: 30px; border-radius: 12px 12px 0 0;">
        {{logo_html}}
        <h1 style="color: white; margin: 0; font-size: 24px;">{{heading}}</h1>
    </div>
    <div style="background: #f9fafb; padding: 30px; border-radius: 0 0 12px 12px; border: 1px solid #e5e7eb; border-top: none;">
        <p>Hello {{attendee_name}},</p>
        <p>{{intro}}</p>
        <div style="background: white; border-radius: 8px; padding: 20px; margin: 20px 0; border: 1px solid #e5e7eb;">
            <h3 style="margin-top: 0; color: {{primary_color}};">{{title}}</h3>
            <table style="width: 100%; border-collapse: collapse;">
                {{previous_time_row}}
                <tr><td style="padding: 8px 0; color: #6b7280;">Date:</td><td style="padding: 8px 0;"><strong>{{scheduled_date}}</strong></td></tr>
                <tr><td style="padding: 8px 0; color: #6b7280;">Time:</td><td style="padding: 8px 0;"><strong>{{scheduled_time}}</strong></td></tr>
                <tr><td style="padding: 8px 0; color: #6b7280;">Duration:</td><td style="padding: 8px 0;">{{duration}} minutes</td></tr>
                <tr><td style="padding: 8px 0; color: #6b7280;">Meeting:</td><td style="padding: 8px 0;">{{meeting_display}}</td></tr>
            </table>
        </div>
        {{actions_html}}
        <p style="color: #6b7280; font-size: 14px;">{{business_name}}</p>
    </div>
</body>
</html>"""

TEMPLATES: dict[str, dict[str, str]] = {
    "confirmation": {
        "subject": "Appointment Scheduled: {{title}} on {{scheduled_date}}",
        "heading": "Appointment Scheduled",
        "intro": "Your appointment with {{business_name}} has been scheduled. Please confirm that you can make it.",
    },
    "cancellation": {
        "subject": "Appointment Cancelled: {{title}}",
        "heading": "Appointment Cancelled",
        "intro": "Your appointment with {{business_name}} has been cancelled.",
    },
    "rescheduled": {
        "subject": "Appointment Rescheduled: {{title}} on {{scheduled_date}}",
        "heading": "Appointment Rescheduled",
        "intro": "Your appointment with {{business_name}} has been moved to a new time.",
    },
    "reminder": {
        "subject": "Reminder: {{title}} on {{scheduled_date}}",
        "heading": "Appointment Reminder",
        "intro": "This is a reminder that your appointment with {{business_name}} is coming up in about {{lead_hours}} hours.",
    },
}


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str


def render_template(template: str, variables: dict[str, str]) -> str:
    """Replace {{variable}} placeholders; missing variables become empty strings."""
    return VARIABLE_PATTERN.sub(lambda m: variables.get(m.group(1), ""), template)


def _meeting_display(details: AppointmentDetails) -> str:
    label = MEETING_TYPE_DISPLAY.get(details.meeting_type, details.meeting_type)
    if details.meeting_type == MeetingType.VIDEO.value and details.meeting_link:
        return f"{label}: {details.meeting_link}"
    if details.meeting_type == MeetingType.IN_PERSON.value and details.location:
        return f"{label} at {details.location}"
    if details.meeting_type == MeetingType.PHONE.value and details.phone_number:
        return f"{label} ({details.phone_number})"
    return label


def _actions_html(action_urls: dict[str, str] | None, primary_color: str) -> str:
    if not action_urls:
        return ""
    labels = (("confirm", "Confirm"), ("reschedule", "Reschedule"), ("cancel", "Cancel"))
    buttons = []
    for key, label in labels:
        url = action_urls.get(key)
        if not url:
            continue
        buttons.append(
            f'<a href="{html.escape(url)}" style="display: inline-block; margin-right: 8px; '
            f'padding: 10px 18px; border-radius: 6px; background: {primary_color}; '
            f'color: white; text-decoration: none;">{label}</a>'
        )
    return f'<p style="margin: 24px 0;">{"".join(buttons)}</p>'


def build_appointment_variables(
    details: AppointmentDetails,
    branding: EmailBranding,
    name: str | None = None,
    previous_start: datetime | None = None,
    lead_hours: int | None = None,
) -> dict[str, str]:
    """Build escaped template variables for an appointment context."""
    variables = {
        "attendee_name": name or details.attendee_name or "there",
        "title": details.title,
        "scheduled_date": details.display_date,
        "scheduled_time": details.display_time,
        "duration": str(details.duration),
        "meeting_display": _meeting_display(details),
        "business_name": branding.business_name,
        "lead_hours": str(lead_hours) if lead_hours is not None else "",
    }
    variables = {key: html.escape(value) for key, value in variables.items()}
    variables["primary_color"] = html.escape(branding.primary_color)
    variables["logo_html"] = (
        f'<img src="{html.escape(branding.logo_url)}" alt="" style="max-height: 40px; margin-bottom: 12px;">'
        if branding.logo_url
        else ""
    )
    if previous_start:
        old_local = to_local(previous_start, details.time_zone)
        old_hour = old_local.hour % 12 or 12
        old_period = "PM" if old_local.hour >= 12 else "AM"
        old_display = (
            f"{old_local:%A, %B} {old_local.day}, {old_local.year} "
            f"{old_hour}:{old_local.minute:02d} {old_period} {old_local.tzname()}"
        )
        variables["previous_time_row"] = (
            '<tr><td style="padding: 8px 0; color: #6b7280;">Previously:</td>'
            f'<td style="padding: 8px 0;"><s>{html.escape(old_display)}</s></td></tr>'
        )
    return variables


def render_appointment_email(
    kind: str,
    details: AppointmentDetails,
    branding: EmailBranding,
    name: str | None = None,
    action_urls: dict[str, str] | None = None,
    previous_start: datetime | None = None,
    lead_hours: int | None = None,
) -> RenderedEmail:
    """Render one of the appointment templates (confirmation, cancellation, rescheduled, reminder)."""
    template = TEMPLATES[kind]
    variables = build_appointment_variables(
        details, branding, name=name, previous_start=previous_start, lead_hours=lead_hours
    )
    variables["heading"] = template["heading"]
    variables["intro"] = render_template(template["intro"], variables)
    variables["actions_html"] = _actions_html(action_urls, variables["primary_color"])

    subject = html.unescape(render_template(template["subject"], variables))
    return RenderedEmail(subject=subject, html=render_template(LAYOUT, variables))


# =============================================================================
# Best-effort sends (never raise into the state transition)
# =============================================================================

def _log_result(kind: str, details: AppointmentDetails, result: SendResult) -> bool:
    if result.success:
        logger.info(
            "Appointment %s email sent for %s to %s",
            kind,
            details.appointment_id,
            mask_email(details.attendee_email),
        )
        return True
    logger.warning(
        "Appointment %s email failed for %s: %s", kind, details.appointment_id, result.error
    )
    return False


async def send_confirmation_safely(
    transport: "NotificationTransport",
    details: AppointmentDetails,
    branding: EmailBranding,
    action_urls: dict[str, str] | None = None,
) -> bool:
    """Send the booking confirmation email; failures are logged and swallowed."""
    if not details.attendee_email:
        return False
    try:
        result = await transport.send_confirmation(
            details.attendee_email, details.attendee_name, details, branding, action_urls
        )
    except Exception:
        logger.exception("Confirmation email crashed for appointment %s", details.appointment_id)
        return False
    return _log_result("confirmation", details, result)


async def send_cancellation_safely(
    transport: "NotificationTransport",
    details: AppointmentDetails,
    branding: EmailBranding,
) -> bool:
    """Send the cancellation notice; failures are logged and swallowed."""
    if not details.attendee_email:
        return False
    try:
        result = await transport.send_cancellation(
            details.attendee_email, details.attendee_name, details, branding
        )
    except Exception:
        logger.exception("Cancellation email crashed for appointment %s", details.appointment_id)
        return False
    return _log_result("cancellation", details, result)


async def send_rescheduled_safely(
    transport: "NotificationTransport",
    details: AppointmentDetails,
    previous_start: datetime,
    branding: EmailBranding,
    action_urls: dict[str, str] | None = None,
) -> bool:
    """Send the before/after reschedule notice; failures are logged and swallowed."""
    if not details.attendee_email:
        return False
    try:
        result = await transport.send_rescheduled(
            details.attendee_email,
            details.attendee_name,
            details,
            previous_start,
            branding,
            action_urls,
        )
    except Exception:
        logger.exception("Reschedule email crashed for appointment %s", details.appointment_id)
        return False
    return _log_result("rescheduled", details, result)
