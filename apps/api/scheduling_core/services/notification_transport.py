"""Notification transports - outbound email (Resend), SMS (Twilio) and voice calls (Vapi).

Every send returns a SendResult instead of raising for expected failures
(provider errors, timeouts, bad numbers). Channels without credentials run in
dry-run mode: the send is logged and reported as successful.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Protocol

import httpx

from scheduling_core.core.config import settings
from scheduling_core.db.enums import SmsType
from scheduling_core.services.appointment_email_service import RenderedEmail, render_appointment_email
from scheduling_core.services.http_service import DEFAULT_RETRY_STATUSES, request_with_retries
from scheduling_core.services.notification_types import (
    AppointmentDetails,
    EmailBranding,
    SendResult,
    TransportError,
)
from scheduling_core.utils.normalization import mask_email, mask_phone

logger = logging.getLogger(__name__)

RESEND_SEND_URL = "https://api.resend.com/emails"
TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{account_sid}/Messages.json"
VAPI_CALL_URL = "https://api.vapi.ai/call"

MAX_ATTEMPTS = 3
# Twilio rejects rate-limited messages outright, so only 429 is safe to resend
SMS_RETRY_STATUSES = {429}
RETRY_BASE_DELAY = 0.5
RETRY_MAX_DELAY = 4.0
REQUEST_TIMEOUT_SECONDS = 15.0


class NotificationTransport(Protocol):
    """Outbound channels used by the appointment lifecycle and reminder job."""

    async def send_confirmation(
        self,
        email: str,
        name: str | None,
        details: AppointmentDetails,
        branding: EmailBranding,
        action_urls: dict[str, str] | None = None,
    ) -> SendResult: ...

    async def send_cancellation(
        self,
        email: str,
        name: str | None,
        details: AppointmentDetails,
        branding: EmailBranding,
    ) -> SendResult: ...

    async def send_rescheduled(
        self,
        email: str,
        name: str | None,
        details: AppointmentDetails,
        previous_start: datetime,
        branding: EmailBranding,
        action_urls: dict[str, str] | None = None,
    ) -> SendResult: ...

    async def send_reminder(
        self,
        email: str,
        name: str | None,
        details: AppointmentDetails,
        lead_hours: int,
        branding: EmailBranding,
        action_urls: dict[str, str] | None = None,
    ) -> SendResult: ...

    async def send_sms(self, details: AppointmentDetails, sms_type: SmsType) -> SendResult: ...

    async def initiate_reminder_call(self, details: AppointmentDetails) -> SendResult: ...


def build_sms_body(details: AppointmentDetails, sms_type: SmsType, business_name: str | None = None) -> str:
    """Plain-text SMS body for an appointment event."""
    who = f" with {business_name}" if business_name else ""
    when = f"{details.display_date} at {details.display_time}"
    if sms_type == SmsType.REMINDER:
        return f"Reminder: {details.title}{who} is on {when}. Reply STOP to opt out."
    if sms_type == SmsType.CANCELLATION:
        return f"Your appointment {details.title}{who} on {when} has been cancelled."
    return f"Your appointment {details.title}{who} is scheduled for {when}. Reply STOP to opt out."


def _json_field(response: httpx.Response, key: str):
    try:
        body = response.json()
    except ValueError:
        return None
    return body.get(key) if isinstance(body, dict) else None


def _response_error(provider: str, response: httpx.Response) -> str:
    message = _json_field(response, "message") or _json_field(response, "error")
    return f"{provider} error {response.status_code}: {message or response.text[:200]}"


class HttpNotificationTransport:
    """Transport backed by the Resend, Twilio and Vapi HTTP APIs."""

    def __init__(
        self,
        *,
        resend_api_key: str | None = None,
        email_from: str | None = None,
        twilio_account_sid: str | None = None,
        twilio_auth_token: str | None = None,
        twilio_from_number: str | None = None,
        vapi_api_key: str | None = None,
        vapi_phone_number_id: str | None = None,
        vapi_assistant_id: str | None = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ):
        self.resend_api_key = resend_api_key if resend_api_key is not None else settings.RESEND_API_KEY
        self.email_from = email_from or settings.EMAIL_FROM
        self.twilio_account_sid = twilio_account_sid if twilio_account_sid is not None else settings.TWILIO_ACCOUNT_SID
        self.twilio_auth_token = twilio_auth_token if twilio_auth_token is not None else settings.TWILIO_AUTH_TOKEN
        self.twilio_from_number = twilio_from_number if twilio_from_number is not None else settings.TWILIO_FROM_NUMBER
        self.vapi_api_key = vapi_api_key if vapi_api_key is not None else settings.VAPI_API_KEY
        self.vapi_phone_number_id = vapi_phone_number_id or settings.VAPI_PHONE_NUMBER_ID
        self.vapi_assistant_id = vapi_assistant_id or settings.VAPI_REMINDER_ASSISTANT_ID
        self.timeout = timeout

    # -------------------------------------------------------------------------
    # Email
    # -------------------------------------------------------------------------

    async def send_confirmation(self, email, name, details, branding, action_urls=None) -> SendResult:
        rendered = render_appointment_email(
            "confirmation", details, branding, name=name, action_urls=action_urls
        )
        return await self._send_email(email, rendered, branding, f"appointment-confirmation/{details.appointment_id}")

    async def send_cancellation(self, email, name, details, branding) -> SendResult:
        rendered = render_appointment_email("cancellation", details, branding, name=name)
        return await self._send_email(email, rendered, branding, f"appointment-cancellation/{details.appointment_id}")

    async def send_rescheduled(
        self, email, name, details, previous_start, branding, action_urls=None
    ) -> SendResult:
        rendered = render_appointment_email(
            "rescheduled",
            details,
            branding,
            name=name,
            action_urls=action_urls,
            previous_start=previous_start,
        )
        key = f"appointment-rescheduled/{details.appointment_id}/{details.scheduled_at.isoformat()}"
        return await self._send_email(email, rendered, branding, key)

    async def send_reminder(self, email, name, details, lead_hours, branding, action_urls=None) -> SendResult:
        rendered = render_appointment_email(
            "reminder", details, branding, name=name, action_urls=action_urls, lead_hours=lead_hours
        )
        key = f"appointment-reminder/{details.appointment_id}/{details.scheduled_at.isoformat()}"
        return await self._send_email(email, rendered, branding, key)

    async def _send_email(
        self,
        to_email: str,
        rendered: RenderedEmail,
        branding: EmailBranding,
        idempotency_key: str,
    ) -> SendResult:
        if not self.resend_api_key:
            logger.info(
                "[DRY RUN] Email send skipped (RESEND_API_KEY not set): %s -> %s",
                rendered.subject,
                mask_email(to_email),
            )
            return SendResult(success=True)

        from_address = branding.from_address or self.email_from
        payload: dict[str, object] = {
            "from": f"{branding.business_name} <{from_address}>",
            "to": [to_email],
            "subject": rendered.subject,
            "html": rendered.html,
        }
        if branding.reply_to:
            payload["reply_to"] = branding.reply_to
        headers = {
            "Authorization": f"Bearer {self.resend_api_key}",
            "Content-Type": "application/json",
            "Idempotency-Key": idempotency_key,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:

                async def request_fn() -> httpx.Response:
                    return await client.post(RESEND_SEND_URL, headers=headers, json=payload)

                response = await self._request(request_fn)
            if response.status_code >= 400:
                raise TransportError(_response_error("Resend", response))
        except (httpx.HTTPError, TransportError) as exc:
            logger.warning("Email send failed to %s: %s", mask_email(to_email), exc)
            return SendResult.failed(str(exc) or exc.__class__.__name__)

        return SendResult(success=True, external_id=_json_field(response, "id"))

    # -------------------------------------------------------------------------
    # SMS
    # -------------------------------------------------------------------------

    async def send_sms(self, details: AppointmentDetails, sms_type: SmsType) -> SendResult:
        to_phone = details.attendee_phone
        if not to_phone:
            return SendResult.failed("No phone number on appointment")

        body = build_sms_body(details, SmsType(sms_type))
        if not (self.twilio_account_sid and self.twilio_auth_token and self.twilio_from_number):
            logger.info(
                "[DRY RUN] SMS send skipped (Twilio not configured): %s -> %s",
                SmsType(sms_type).value,
                mask_phone(to_phone),
            )
            return SendResult(success=True)

        url = TWILIO_MESSAGES_URL.format(account_sid=self.twilio_account_sid)
        data = {"To": to_phone, "From": self.twilio_from_number, "Body": body}
        try:
            # Messages has no idempotency key: a lost response must not be resent
            async with httpx.AsyncClient(
                timeout=self.timeout,
                auth=(self.twilio_account_sid, self.twilio_auth_token),
            ) as client:

                async def request_fn() -> httpx.Response:
                    return await client.post(url, data=data)

                response = await request_with_retries(
                    request_fn,
                    max_attempts=MAX_ATTEMPTS,
                    base_delay=RETRY_BASE_DELAY,
                    max_delay=RETRY_MAX_DELAY,
                    retry_statuses=SMS_RETRY_STATUSES,
                    retry_request_errors=False,
                )
            if response.status_code >= 400:
                raise TransportError(_response_error("Twilio", response))
        except (httpx.HTTPError, TransportError) as exc:
            logger.warning("SMS send failed to %s: %s", mask_phone(to_phone), exc)
            return SendResult.failed(str(exc) or exc.__class__.__name__)

        return SendResult(success=True, external_id=_json_field(response, "sid"))

    # -------------------------------------------------------------------------
    # Voice
    # -------------------------------------------------------------------------

    async def initiate_reminder_call(self, details: AppointmentDetails) -> SendResult:
        to_phone = details.attendee_phone
        if not to_phone:
            return SendResult.failed("No phone number on appointment")

        if not (self.vapi_api_key and self.vapi_phone_number_id and self.vapi_assistant_id):
            logger.info(
                "[DRY RUN] Reminder call skipped (Vapi not configured): %s -> %s",
                details.appointment_id,
                mask_phone(to_phone),
            )
            return SendResult(success=True)

        payload = {
            "assistantId": self.vapi_assistant_id,
            "phoneNumberId": self.vapi_phone_number_id,
            "customer": {"number": to_phone, "name": details.attendee_name or ""},
            "assistantOverrides": {
                "variableValues": {
                    "appointmentTitle": details.title,
                    "appointmentDate": details.display_date,
                    "appointmentTime": details.display_time,
                },
            },
            "metadata": {
                "appointmentId": str(details.appointment_id),
                "organizationId": str(details.organization_id),
                "type": "appointment_reminder",
            },
        }
        headers = {"Authorization": f"Bearer {self.vapi_api_key}"}
        try:
            # No retries: a retried POST can dial twice
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(VAPI_CALL_URL, headers=headers, json=payload)
            if response.status_code >= 400:
                raise TransportError(_response_error("Vapi", response))
        except (httpx.HTTPError, TransportError) as exc:
            logger.warning("Reminder call failed for %s: %s", details.appointment_id, exc)
            return SendResult.failed(str(exc) or exc.__class__.__name__)

        return SendResult(success=True, external_id=_json_field(response, "id"))

    async def _request(self, request_fn) -> httpx.Response:
        return await request_with_retries(
            request_fn,
            max_attempts=MAX_ATTEMPTS,
            base_delay=RETRY_BASE_DELAY,
            max_delay=RETRY_MAX_DELAY,
            retry_statuses=DEFAULT_RETRY_STATUSES,
        )


def get_notification_transport() -> NotificationTransport:
    """FastAPI dependency / factory for the configured transport."""
    return HttpNotificationTransport()
