from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta, timezone
from typing import Iterator, List, Optional, Sequence

from loguru import logger
from sqlalchemy.orm import Session

from src.config import get_settings
from src.exceptions import ValidationError
from src.models.booking import Booking, BookingStatus
from src.models.recurrence import RecurrencePattern, RecurrenceType
from src.scheduler.timewindow import TimeWindowCalculator

# Fields copied verbatim from the anchor booking onto every occurrence
COPIED_FIELDS = (
    "client_id",
    "client_name",
    "client_phone",
    "driver_id",
    "pickup_location",
    "pickup_coordinates",
    "destination",
    "destination_coordinates",
    "estimated_duration",
    "estimated_cost",
    "priority",
    "notes",
    "created_by_id",
    "recurrent_price",
)


def sunday_weekday(day: date) -> int:
    """Weekday index with 0 = Sunday ... 6 = Saturday."""
    return day.isoweekday() % 7


def _add_months(day: date, months: int, anchor_day: int) -> date:
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(anchor_day, last_day))


def parse_recurrence_type(value) -> RecurrenceType:
    try:
        return RecurrenceType(value)
    except ValueError:
        raise ValidationError(f"Unknown recurrence type: {value!r}") from None


def occurrence_dates(
    recurrence_type: RecurrenceType,
    days_of_week: Sequence[int],
    anchor_date: date,
    end_date: date,
) -> Iterator[date]:
    """Yield local dates strictly after anchor_date up to end_date inclusive."""
    if recurrence_type == RecurrenceType.monthly:
        months = 1
        current = _add_months(anchor_date, months, anchor_date.day)
        while current <= end_date:
            yield current
            months += 1
            current = _add_months(anchor_date, months, anchor_date.day)
        return

    if recurrence_type == RecurrenceType.weekly:
        days = {int(day) for day in days_of_week or []}
        if not days:
            return
    else:
        days = None

    current = anchor_date + timedelta(days=1)
    while current <= end_date:
        if days is None or sunday_weekday(current) in days:
            yield current
        current += timedelta(days=1)


def expand_recurrence(
    pattern: RecurrencePattern,
    anchor: Booking,
    calculator: Optional[TimeWindowCalculator] = None,
    horizon_days: Optional[int] = None,
) -> List[Booking]:
    """Build the follow-up bookings generated by ``pattern``.

    The anchor's local wall-clock time is kept on every occurrence, so a
    08:00 pickup stays at 08:00 local time across DST changes. Without an
    end date the expansion stops ``horizon_days`` after the anchor date.
    The returned bookings are transient; see ``save_in_batches``.
    """
    calculator = calculator or TimeWindowCalculator()
    if horizon_days is None:
        horizon_days = get_settings().recurrence_default_horizon_days

    local_anchor = calculator.to_local(anchor.scheduled_at)
    anchor_date = local_anchor.date()
    end_date = pattern.end_date or anchor_date + timedelta(days=horizon_days)
    wall_clock = local_anchor.time()
    recurrence_type = parse_recurrence_type(pattern.type)

    bookings = []
    for day in occurrence_dates(
        recurrence_type, pattern.days_of_week, anchor_date, end_date
    ):
        local = datetime.combine(day, wall_clock, tzinfo=calculator.tz)
        booking = Booking(
            scheduled_at=local.astimezone(timezone.utc),
            status=BookingStatus.pending,
            recurrence_id=pattern.id,
        )
        for field in COPIED_FIELDS:
            setattr(booking, field, getattr(anchor, field))
        bookings.append(booking)

    logger.debug(
        f"Recurrence {recurrence_type.value}: {len(bookings)} occurrences "
        f"between {anchor_date} and {end_date}"
    )
    return bookings


def save_in_batches(
    session: Session, bookings: Sequence[Booking], batch_size: Optional[int] = None
) -> int:
    """Persist bookings in fixed-size batches, committing after each one."""
    batch_size = batch_size or get_settings().recurrence_batch_size
    for i in range(0, len(bookings), batch_size):
        batch = bookings[i : i + batch_size]
        session.add_all(batch)
        session.commit()
        logger.debug(f"Saved recurrence batch {i // batch_size + 1} ({len(batch)} bookings)")
    return len(bookings)
