"""Check-in window classification."""

from dataclasses import dataclass
from datetime import datetime, timedelta

from app.core.clock import ClinicClock
from app.schemas.appointments import CheckInState


@dataclass(frozen=True)
class CheckInEvaluation:
    """Where ``now`` falls relative to an appointment's check-in window."""

    state: CheckInState
    opens_at: datetime
    closes_at: datetime
    minutes_until_open: int | None = None
    minutes_since_close: int | None = None

    @property
    def is_open(self) -> bool:
        return self.state is CheckInState.OPEN


class CheckInWindowEvaluator:
    """Classifies check-in attempts; it never changes appointment state."""

    def __init__(self, clock: ClinicClock, opens_before_minutes: int, closes_after_minutes: int):
        self.clock = clock
        self.opens_before = timedelta(minutes=opens_before_minutes)
        self.closes_after = timedelta(minutes=closes_after_minutes)

    def evaluate(self, scheduled_at: datetime, now: datetime | None = None) -> CheckInEvaluation:
        """
        Classify a check-in attempt.

        The window is ``[scheduled_at - opens_before, scheduled_at + closes_after]``,
        both ends inclusive, compared in the clinic time zone.

        Args:
            scheduled_at: Appointment instant
            now: Attempt instant (default: clock now)

        Returns:
            TOO_EARLY with minutes until open, OPEN, or EXPIRED with minutes since close
        """
        scheduled = self.clock.to_clinic(scheduled_at)
        current = self.clock.to_clinic(now if now is not None else self.clock.now())

        opens_at = scheduled - self.opens_before
        closes_at = scheduled + self.closes_after

        if current < opens_at:
            return CheckInEvaluation(
                state=CheckInState.TOO_EARLY,
                opens_at=opens_at,
                closes_at=closes_at,
                minutes_until_open=self.clock.minutes_until(opens_at, current),
            )
        if current > closes_at:
            return CheckInEvaluation(
                state=CheckInState.EXPIRED,
                opens_at=opens_at,
                closes_at=closes_at,
                minutes_since_close=self.clock.minutes_since(closes_at, current),
            )
        return CheckInEvaluation(state=CheckInState.OPEN, opens_at=opens_at, closes_at=closes_at)
