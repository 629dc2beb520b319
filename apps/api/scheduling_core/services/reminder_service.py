"""Reminder dispatch - periodic email/SMS/voice reminders for upcoming appointments.

Invoked by an external scheduler (cron endpoint or CLI). Safe to run
concurrently or to re-run after a crash:

- Every channel is claimed with a conditional update on its stamp column
  (`... WHERE <stamp> IS NULL`) before the send. Only the run that flips the
  stamp sends, so each channel is delivered at most once per appointment.
- Email claims are never released ("send or give up once").
- SMS and call claims are released when the send fails so a later run can retry.

Organizations with a calendar_settings row use their own lead time; all other
organizations are handled in one default pass (24h) that excludes them.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Awaitable, Callable, Sequence, TypeVar
from uuid import UUID

import anyio
import anyio.to_thread
from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from scheduling_core.core.config import settings
from scheduling_core.core.security import build_action_urls
from scheduling_core.core.structured_logging import build_log_context
from scheduling_core.db.enums import (
    ACTIVE_APPOINTMENT_STATUSES,
    NotificationPreference,
    ReminderChannel,
    SmsType,
)
from scheduling_core.db.models import Appointment, CalendarSettings, Contact, Organization
from scheduling_core.services.notification_transport import NotificationTransport
from scheduling_core.services.notification_types import AppointmentDetails, EmailBranding, SendResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_REMINDER_HOURS = 24
WINDOW_TOLERANCE = timedelta(minutes=15)

EMAIL_STAMP = "reminder_sent_at"
SMS_STAMP = "sms_reminder_sent_at"
CALL_STAMP = "reminder_call_sent_at"


# =============================================================================
# Types
# =============================================================================

@dataclass(frozen=True)
class ReminderPolicy:
    """Reminder settings for one partition of organizations."""
    lead_hours: int = DEFAULT_REMINDER_HOURS
    sms_enabled: bool = True
    phone_enabled: bool = False


DEFAULT_POLICY = ReminderPolicy()


@dataclass
class ReminderRunStats:
    appointments_processed: int = 0
    emails_sent: int = 0
    sms_sent: int = 0
    calls_initiated: int = 0
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


class PartialBatchError(Exception):
    """One channel of one appointment failed; the batch continues."""

    def __init__(self, appointment_id: UUID, channel: ReminderChannel | str, message: str):
        self.appointment_id = appointment_id
        self.channel = getattr(channel, "value", channel)
        super().__init__(f"Appointment {appointment_id} [{self.channel}]: {message}")


@dataclass(frozen=True)
class _Candidate:
    details: AppointmentDetails
    preference: NotificationPreference
    branding: EmailBranding
    sms_already_sent: bool
    call_already_sent: bool


# =============================================================================
# Selection
# =============================================================================

def get_due_window(now: datetime, lead_hours: int) -> tuple[datetime, datetime]:
    """[now + lead - 15m, now + lead + 15m]."""
    target = now + timedelta(hours=lead_hours)
    return target - WINDOW_TOLERANCE, target + WINDOW_TOLERANCE


def resolve_preference(
    appointment_preference: str | None,
    contact_preference: str | None,
) -> NotificationPreference:
    """Appointment override, then contact preference, then both."""
    for value in (appointment_preference, contact_preference):
        if value in NotificationPreference._value2member_map_:
            return NotificationPreference(value)
    return NotificationPreference.BOTH


def select_due_appointments(
    db: Session,
    window_start: datetime,
    window_end: datetime,
    org_ids: Sequence[UUID] | None = None,
    exclude_org_ids: Sequence[UUID] | None = None,
) -> list[Appointment]:
    """Active, unreminded appointments starting inside the window with a contact channel."""
    query = db.query(Appointment).filter(
        Appointment.status.in_(ACTIVE_APPOINTMENT_STATUSES),
        Appointment.scheduled_at >= window_start,
        Appointment.scheduled_at <= window_end,
        Appointment.reminder_sent_at.is_(None),
        or_(
            Appointment.attendee_email.is_not(None),
            Appointment.attendee_phone.is_not(None),
        ),
    )
    if org_ids is not None:
        query = query.filter(Appointment.organization_id.in_(org_ids))
    if exclude_org_ids:
        query = query.filter(Appointment.organization_id.not_in(exclude_org_ids))
    return query.order_by(Appointment.scheduled_at.asc()).all()


def _build_candidates(db: Session, appointments: list[Appointment]) -> list[_Candidate]:
    """Snapshot appointments with their contact preference and org branding."""
    contact_ids = {a.contact_id for a in appointments if a.contact_id}
    contact_prefs: dict[UUID, str | None] = {}
    if contact_ids:
        rows = db.query(Contact.id, Contact.notification_preference).filter(
            Contact.id.in_(contact_ids)
        ).all()
        contact_prefs = {row.id: row.notification_preference for row in rows}

    org_ids = {a.organization_id for a in appointments}
    orgs = {org.id: org for org in db.query(Organization).filter(Organization.id.in_(org_ids)).all()}

    return [
        _Candidate(
            details=AppointmentDetails.from_appointment(appointment),
            preference=resolve_preference(
                appointment.notification_preference,
                contact_prefs.get(appointment.contact_id) if appointment.contact_id else None,
            ),
            branding=EmailBranding.for_organization(orgs.get(appointment.organization_id)),
            sms_already_sent=appointment.sms_reminder_sent_at is not None,
            call_already_sent=appointment.reminder_call_sent_at is not None,
        )
        for appointment in appointments
    ]


# =============================================================================
# Claims
# =============================================================================

def claim_stamp(db: Session, appointment_id: UUID, stamp: str, now: datetime) -> bool:
    """Atomically set a reminder stamp if still NULL. True if this caller won."""
    column = getattr(Appointment, stamp)
    result = db.execute(
        update(Appointment)
        .where(
            Appointment.id == appointment_id,
            column.is_(None),
            Appointment.status.in_(ACTIVE_APPOINTMENT_STATUSES),
        )
        .values({stamp: now})
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def release_stamp(db: Session, appointment_id: UUID, stamp: str, claimed_at: datetime) -> None:
    """Undo a claim made by this run (no-op if the stamp has changed since)."""
    column = getattr(Appointment, stamp)
    db.execute(
        update(Appointment)
        .where(Appointment.id == appointment_id, column == claimed_at)
        .values({stamp: None})
        .execution_options(synchronize_session=False)
    )
    db.commit()


# =============================================================================
# Run context
# =============================================================================

@dataclass
class _Run:
    """State shared by every task of one reminder pass."""
    db: Session
    transport: NotificationTransport
    stats: ReminderRunStats
    now: datetime
    limiter: anyio.CapacityLimiter
    timeout: float
    dry_run: bool = False
    # One worker thread at a time touches the run's Session
    db_limiter: anyio.CapacityLimiter = field(default_factory=lambda: anyio.CapacityLimiter(1))

    async def in_db(self, fn: Callable[..., T], *args) -> T:
        """Run a blocking Session call off the event loop."""
        return await anyio.to_thread.run_sync(partial(fn, self.db, *args), limiter=self.db_limiter)

    def record_error(self, appointment_id: UUID, channel: ReminderChannel | str, message: str | None) -> None:
        self.stats.errors.append(str(PartialBatchError(appointment_id, channel, message or "send failed")))


# =============================================================================
# Sends
# =============================================================================

async def _send_with_timeout(
    send: Callable[[], Awaitable[SendResult]],
    timeout: float,
    appointment_id: UUID,
    channel: ReminderChannel,
) -> SendResult:
    """Run one transport call under its own deadline; never raises."""
    try:
        with anyio.fail_after(timeout):
            return await send()
    except TimeoutError:
        logger.warning(
            "Reminder %s send timed out after %ss",
            channel.value,
            timeout,
            extra=build_log_context(appointment_id=appointment_id, channel=channel.value),
        )
        return SendResult.failed(f"timed out after {timeout}s")
    except Exception as exc:
        logger.exception(
            "Reminder %s send crashed",
            channel.value,
            extra=build_log_context(appointment_id=appointment_id, channel=channel.value),
        )
        return SendResult.failed(str(exc) or exc.__class__.__name__)


def _count_dry_run(run: _Run, candidate: _Candidate, policy: ReminderPolicy) -> None:
    """Count the channels a real pass would send, without claiming or sending."""
    details = candidate.details
    wants_email = candidate.preference in (NotificationPreference.EMAIL, NotificationPreference.BOTH)
    wants_phone = candidate.preference in (NotificationPreference.SMS, NotificationPreference.BOTH)

    run.stats.appointments_processed += 1
    if details.attendee_email and wants_email:
        run.stats.emails_sent += 1
    sms = bool(details.attendee_phone and wants_phone and policy.sms_enabled and not candidate.sms_already_sent)
    if sms:
        run.stats.sms_sent += 1
    if (
        details.attendee_phone
        and wants_phone
        and policy.phone_enabled
        and not sms
        and not candidate.sms_already_sent
        and not candidate.call_already_sent
    ):
        run.stats.calls_initiated += 1
    logger.info(
        "[DRY RUN] Reminder pass would notify appointment",
        extra=build_log_context(appointment_id=details.appointment_id),
    )


async def _process_candidate(run: _Run, candidate: _Candidate, policy: ReminderPolicy) -> None:
    details = candidate.details
    appointment_id = details.appointment_id
    transport = run.transport
    wants_email = candidate.preference in (NotificationPreference.EMAIL, NotificationPreference.BOTH)
    wants_phone = candidate.preference in (NotificationPreference.SMS, NotificationPreference.BOTH)

    async with run.limiter:
        run.stats.appointments_processed += 1

        # Email: claimed before sending, never released
        if details.attendee_email and wants_email:
            if await run.in_db(claim_stamp, appointment_id, EMAIL_STAMP, run.now):
                action_urls = build_action_urls(appointment_id, details.attendee_email)
                result = await _send_with_timeout(
                    lambda: transport.send_reminder(
                        details.attendee_email,
                        details.attendee_name,
                        details,
                        policy.lead_hours,
                        candidate.branding,
                        action_urls,
                    ),
                    run.timeout,
                    appointment_id,
                    ReminderChannel.EMAIL,
                )
                if result.success:
                    run.stats.emails_sent += 1
                else:
                    run.record_error(appointment_id, ReminderChannel.EMAIL, result.error)

        # SMS: claimed before sending, released on failure.
        # A lost claim means another run owns the SMS leg.
        sms_handled = candidate.sms_already_sent
        if details.attendee_phone and wants_phone and policy.sms_enabled and not sms_handled:
            if await run.in_db(claim_stamp, appointment_id, SMS_STAMP, run.now):
                result = await _send_with_timeout(
                    lambda: transport.send_sms(details, SmsType.REMINDER),
                    run.timeout,
                    appointment_id,
                    ReminderChannel.SMS,
                )
                if result.success:
                    sms_handled = True
                    run.stats.sms_sent += 1
                else:
                    await run.in_db(release_stamp, appointment_id, SMS_STAMP, run.now)
                    run.record_error(appointment_id, ReminderChannel.SMS, result.error)
            else:
                sms_handled = True

        # Voice: only when no run has handled SMS
        if details.attendee_phone and wants_phone and policy.phone_enabled and not sms_handled:
            if await run.in_db(claim_stamp, appointment_id, CALL_STAMP, run.now):
                result = await _send_with_timeout(
                    lambda: transport.initiate_reminder_call(details),
                    run.timeout,
                    appointment_id,
                    ReminderChannel.CALL,
                )
                if result.success:
                    run.stats.calls_initiated += 1
                else:
                    await run.in_db(release_stamp, appointment_id, CALL_STAMP, run.now)
                    run.record_error(appointment_id, ReminderChannel.CALL, result.error)


async def _process_partition(
    run: _Run,
    policy: ReminderPolicy,
    org_ids: Sequence[UUID] | None = None,
    exclude_org_ids: Sequence[UUID] | None = None,
) -> None:
    window_start, window_end = get_due_window(run.now, policy.lead_hours)

    def load(db: Session) -> list[_Candidate]:
        appointments = select_due_appointments(
            db, window_start, window_end, org_ids=org_ids, exclude_org_ids=exclude_org_ids
        )
        return _build_candidates(db, appointments) if appointments else []

    candidates = await run.in_db(load)
    if not candidates:
        return

    if run.dry_run:
        for candidate in candidates:
            _count_dry_run(run, candidate, policy)
        return

    async def run_one(candidate: _Candidate) -> None:
        try:
            await _process_candidate(run, candidate, policy)
        except Exception as exc:
            await run.in_db(Session.rollback)
            logger.exception(
                "Reminder processing failed",
                extra=build_log_context(appointment_id=candidate.details.appointment_id),
            )
            run.record_error(candidate.details.appointment_id, "processing", str(exc))

    async with anyio.create_task_group() as tg:
        for candidate in candidates:
            tg.start_soon(run_one, candidate)


# =============================================================================
# Entry point
# =============================================================================

def _policy_for(row: CalendarSettings) -> ReminderPolicy:
    return ReminderPolicy(
        lead_hours=row.reminder_hours_before or DEFAULT_REMINDER_HOURS,
        sms_enabled=row.sms_reminders_enabled,
        phone_enabled=row.phone_reminders_enabled,
    )


def _load_policies(db: Session) -> list[tuple[UUID, bool, ReminderPolicy]]:
    return [(row.organization_id, row.send_reminder, _policy_for(row)) for row in db.query(CalendarSettings).all()]


async def process_due_reminders(
    db: Session,
    transport: NotificationTransport,
    now: datetime | None = None,
    max_concurrency: int | None = None,
    send_timeout: float | None = None,
    dry_run: bool = False,
) -> ReminderRunStats:
    """
    Send reminders for every appointment currently inside its due window.

    Organizations are processed one at a time; appointments within an
    organization run concurrently up to max_concurrency. One appointment's
    failure is recorded in `errors` and never aborts the batch.

    Session work runs on a worker thread so the event loop stays free.
    With dry_run, nothing is claimed or sent; the counters report what a
    real pass would send.
    """
    run = _Run(
        db=db,
        transport=transport,
        stats=ReminderRunStats(),
        now=now or datetime.now(timezone.utc),
        limiter=anyio.CapacityLimiter(max(1, max_concurrency or settings.REMINDER_MAX_CONCURRENCY)),
        timeout=send_timeout or settings.NOTIFICATION_SEND_TIMEOUT_SECONDS,
        dry_run=dry_run,
    )

    policies = await run.in_db(_load_policies)
    configured_org_ids = [org_id for org_id, _, _ in policies]

    for org_id, send_reminder, policy in policies:
        if not send_reminder:
            continue
        await _process_partition(run, policy, org_ids=[org_id])

    # Organizations without a settings row
    await _process_partition(run, DEFAULT_POLICY, exclude_org_ids=configured_org_ids)

    stats = run.stats
    logger.info(
        "Reminder run complete%s: processed=%s emails=%s sms=%s calls=%s errors=%s",
        " [DRY RUN]" if dry_run else "",
        stats.appointments_processed,
        stats.emails_sent,
        stats.sms_sent,
        stats.calls_initiated,
        len(stats.errors),
    )
    return stats
