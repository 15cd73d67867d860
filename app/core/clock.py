"""Clinic clock and time zone helpers.

Every wall-clock decision (check-in windows, business hours, "today") is made
in the clinic's fixed time zone, never in the caller's or the server's.
"""

import math
from collections.abc import Callable
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo


class ClinicClock:
    """Converts instants to and from the clinic time zone."""

    def __init__(
        self,
        timezone_name: str,
        now_func: Callable[[], datetime] | None = None,
    ):
        """
        Initialize clock for a clinic time zone.

        Args:
            timezone_name: IANA zone name, e.g. ``America/Mexico_City``
            now_func: Optional source of the current instant (tests)
        """
        self.tz = ZoneInfo(timezone_name)
        self._now_func = now_func

    def now(self) -> datetime:
        """Return the current instant as an aware UTC datetime."""
        if self._now_func is not None:
            return self.to_utc(self._now_func())
        return datetime.now(UTC)

    def to_clinic(self, value: datetime) -> datetime:
        """Express an instant in the clinic zone."""
        return self.ensure_aware(value).astimezone(self.tz)

    def to_utc(self, value: datetime) -> datetime:
        """Express an instant in UTC."""
        return self.ensure_aware(value).astimezone(UTC)

    @staticmethod
    def ensure_aware(value: datetime) -> datetime:
        """Attach UTC to naive datetimes (stores without zone support return UTC)."""
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    def localize(self, value: datetime) -> datetime:
        """Interpret a naive datetime as clinic wall-clock time."""
        if value.tzinfo is None:
            return value.replace(tzinfo=self.tz)
        return value

    def today(self) -> date:
        """Return the current date in the clinic zone."""
        return self.to_clinic(self.now()).date()

    def is_today(self, value: datetime) -> bool:
        """Check whether an instant falls on the clinic's current day."""
        return self.to_clinic(value).date() == self.today()

    def day_bounds(self, day: date | datetime | None = None) -> tuple[datetime, datetime]:
        """
        Get UTC bounds of a clinic day.

        Args:
            day: Clinic date, or an instant inside the day (default: today)

        Returns:
            Half-open ``[start, end)`` range in UTC
        """
        if day is None:
            day = self.today()
        elif isinstance(day, datetime):
            day = self.to_clinic(day).date()

        start = datetime.combine(day, time.min, tzinfo=self.tz)
        end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=self.tz)
        return start.astimezone(UTC), end.astimezone(UTC)

    @staticmethod
    def minutes_until(target: datetime, now: datetime) -> int:
        """Whole minutes from ``now`` until ``target``, rounded up."""
        seconds = (ClinicClock.ensure_aware(target) - ClinicClock.ensure_aware(now)).total_seconds()
        return max(0, math.ceil(seconds / 60))

    @staticmethod
    def minutes_since(target: datetime, now: datetime) -> int:
        """Whole minutes elapsed since ``target``, rounded up."""
        seconds = (ClinicClock.ensure_aware(now) - ClinicClock.ensure_aware(target)).total_seconds()
        return max(0, math.ceil(seconds / 60))

    def format_clinic(self, value: datetime) -> str:
        """Format an instant as ``dd/mm/yyyy HH:MM`` clinic time."""
        return self.to_clinic(value).strftime("%d/%m/%Y %H:%M")
