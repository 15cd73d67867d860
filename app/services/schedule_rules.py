"""Clinic scheduling constraints for bookable instants."""

from dataclasses import dataclass
from datetime import datetime, timedelta

from app.config import Settings
from app.core.clock import ClinicClock


@dataclass(frozen=True)
class RuleCheck:
    """Result of checking an instant against the schedule."""

    valid: bool
    reason: str | None = None


class ScheduleRules:
    """Business hours, lead time and blackout checks in clinic time."""

    def __init__(
        self,
        clock: ClinicClock,
        work_days: frozenset[int],
        start_hour: int,
        end_hour: int,
        slot_minutes: int,
        max_advance_days: int,
        min_lead_minutes: int,
        lunch: tuple[int, int] | None = None,
        blackouts: list[tuple[datetime, datetime]] | None = None,
    ):
        self.clock = clock
        self.work_days = work_days
        self.start_hour = start_hour
        self.end_hour = end_hour
        self.slot_minutes = slot_minutes
        self.max_advance = timedelta(days=max_advance_days)
        self.min_lead = timedelta(minutes=min_lead_minutes)
        self.lunch = lunch
        # Naive blackout bounds are clinic wall-clock time
        self.blackouts = [
            (clock.to_utc(clock.localize(start)), clock.to_utc(clock.localize(end)))
            for start, end in (blackouts or [])
        ]

    @classmethod
    def from_settings(cls, settings: Settings, clock: ClinicClock) -> "ScheduleRules":
        """Build rules from application settings."""
        lunch = None
        if settings.schedule_lunch_start_hour is not None and settings.schedule_lunch_end_hour:
            lunch = (settings.schedule_lunch_start_hour, settings.schedule_lunch_end_hour)
        return cls(
            clock=clock,
            work_days=settings.schedule_work_days,
            start_hour=settings.schedule_start_hour,
            end_hour=settings.schedule_end_hour,
            slot_minutes=settings.schedule_slot_minutes,
            max_advance_days=settings.schedule_max_advance_days,
            min_lead_minutes=settings.schedule_min_lead_minutes,
            lunch=lunch,
            blackouts=settings.schedule_blackouts,
        )

    def check(self, instant: datetime, now: datetime | None = None) -> RuleCheck:
        """
        Check whether an instant can be booked.

        Args:
            instant: Candidate appointment instant
            now: Reference instant (default: clock now)

        Returns:
            Valid check, or the first violated rule
        """
        now = self.clock.to_utc(now if now is not None else self.clock.now())
        candidate = self.clock.to_utc(instant)
        local = self.clock.to_clinic(candidate)

        if candidate <= now:
            return RuleCheck(False, "Appointment time must be in the future")
        if candidate - now < self.min_lead:
            minutes = int(self.min_lead.total_seconds() // 60)
            return RuleCheck(False, f"Appointments need at least {minutes} minutes of notice")
        if candidate - now > self.max_advance:
            return RuleCheck(
                False, f"Appointments cannot be booked more than {self.max_advance.days} days ahead"
            )
        if local.weekday() not in self.work_days:
            return RuleCheck(False, "The clinic does not book appointments on that day")
        if not self.start_hour <= local.hour < self.end_hour:
            return RuleCheck(
                False,
                f"Outside working hours ({self.start_hour:02d}:00-{self.end_hour:02d}:00)",
            )
        if self.lunch and self.lunch[0] <= local.hour < self.lunch[1]:
            return RuleCheck(
                False, f"Not available during lunch ({self.lunch[0]:02d}:00-{self.lunch[1]:02d}:00)"
            )
        if local.minute % self.slot_minutes or local.second or local.microsecond:
            return RuleCheck(False, f"Time must fall on a {self.slot_minutes}-minute slot")
        for start, end in self.blackouts:
            if start <= candidate < end:
                return RuleCheck(False, "The clinic is closed at that time")
        return RuleCheck(True)
