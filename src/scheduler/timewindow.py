"""Timezone-anchored time arithmetic for the scheduled-ride jobs.

Every computation happens in one configured IANA zone so that "tomorrow",
"now" and alert horizons follow the operating market, not the host clock.
Stored instants are UTC; they are converted into the zone before being
compared with local-day boundaries.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Optional, Tuple
from zoneinfo import ZoneInfo

from src.config import get_settings

Clock = Callable[[], datetime]


def system_clock() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TimeUntil:
    total_minutes: float
    hours: int
    minutes: int
    is_past: bool


def _require_aware(value: datetime) -> datetime:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError(f"Expected a timezone-aware datetime, got {value!r}")
    return value


class TimeWindowCalculator:
    def __init__(self, tz_name: Optional[str] = None, clock: Optional[Clock] = None):
        self.tz_name = tz_name or get_settings().timezone
        self.tz = ZoneInfo(self.tz_name)
        self._clock = clock or system_clock

    def now(self) -> datetime:
        """Current instant expressed in the configured zone."""
        return _require_aware(self._clock()).astimezone(self.tz)

    def to_local(self, instant: datetime) -> datetime:
        return _require_aware(instant).astimezone(self.tz)

    def local_midnight(self, day: date) -> datetime:
        return datetime.combine(day, time.min, tzinfo=self.tz)

    def local_day_bounds(self, day: date) -> Tuple[datetime, datetime]:
        """Half-open UTC bounds of one local calendar day.

        Both bounds are local midnights, so the width is 23 or 25 hours on
        DST transition days.
        """
        start = self.local_midnight(day)
        end = self.local_midnight(day + timedelta(days=1))
        return start.astimezone(timezone.utc), end.astimezone(timezone.utc)

    def start_of_next_local_day(self) -> Tuple[datetime, datetime]:
        tomorrow = self.now().date() + timedelta(days=1)
        return self.local_day_bounds(tomorrow)

    def window(self, center: datetime, margin_minutes: float) -> Tuple[datetime, datetime]:
        """Inclusive [center - margin, center + margin] in UTC."""
        seconds = round(margin_minutes * 60)
        if margin_minutes > 0:
            seconds = max(seconds, 1)
        margin = timedelta(seconds=seconds)
        center_utc = _require_aware(center).astimezone(timezone.utc)
        return center_utc - margin, center_utc + margin

    def time_until(self, target: datetime) -> TimeUntil:
        # Subtract in UTC: same-zone subtraction ignores DST offset changes
        delta = _require_aware(target).astimezone(timezone.utc) - self.now().astimezone(
            timezone.utc
        )
        total_minutes = delta.total_seconds() / 60
        remaining = abs(total_minutes)
        return TimeUntil(
            total_minutes=total_minutes,
            hours=int(remaining // 60),
            minutes=int(remaining % 60),
            is_past=total_minutes < 0,
        )

    def format_local(self, instant: datetime, fmt: str = "%Y-%m-%d %H:%M") -> str:
        return self.to_local(instant).strftime(fmt)

    def format_time(self, instant: datetime) -> str:
        """12-hour wall-clock time, e.g. ``02:00 PM``."""
        return self.to_local(instant).strftime("%I:%M %p")
