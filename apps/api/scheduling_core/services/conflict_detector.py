"""Interval conflict detection for appointment booking.

Intervals are half-open [start, end): an appointment ending at 10:30 does not
conflict with one starting at 10:30.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, NamedTuple
from uuid import UUID

from sqlalchemy.orm import Session

from scheduling_core.db.enums import ACTIVE_APPOINTMENT_STATUSES
from scheduling_core.db.models import Appointment


class BookedInterval(NamedTuple):
    """Existing booked interval."""
    start: datetime
    end: datetime
    appointment_id: UUID | None = None


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    return start_a < end_b and start_b < end_a


def find_conflict(
    start: datetime,
    end: datetime,
    intervals: Iterable[BookedInterval | tuple[datetime, datetime]],
) -> BookedInterval | None:
    """First interval overlapping [start, end), or None."""
    for interval in intervals:
        booked = interval if isinstance(interval, BookedInterval) else BookedInterval(*interval)
        if overlaps(start, end, booked.start, booked.end):
            return booked
    return None


def has_conflict(
    start: datetime,
    end: datetime,
    intervals: Iterable[BookedInterval | tuple[datetime, datetime]],
) -> bool:
    """True if [start, end) overlaps any existing interval."""
    return find_conflict(start, end, intervals) is not None


def get_booked_intervals(
    db: Session,
    org_id: UUID,
    window_start: datetime,
    window_end: datetime,
    exclude_appointment_id: UUID | None = None,
    buffer_after_minutes: int = 0,
) -> list[BookedInterval]:
    """
    Active appointment intervals for an organization near a time window.

    buffer_after_minutes extends each existing appointment's end.
    """
    buffer = timedelta(minutes=buffer_after_minutes)
    query = db.query(Appointment.id, Appointment.scheduled_at, Appointment.end_at).filter(
        Appointment.organization_id == org_id,
        Appointment.status.in_(ACTIVE_APPOINTMENT_STATUSES),
        Appointment.scheduled_at < window_end,
        Appointment.end_at > window_start - buffer,
    )
    if exclude_appointment_id:
        query = query.filter(Appointment.id != exclude_appointment_id)

    return [
        BookedInterval(start=row.scheduled_at, end=row.end_at + buffer, appointment_id=row.id)
        for row in query.order_by(Appointment.scheduled_at).all()
    ]
