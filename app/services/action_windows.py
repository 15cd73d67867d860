"""Time guards for no-show, cancellation and reschedule actions."""

from dataclasses import dataclass
from datetime import datetime, timedelta

from app.core.clock import ClinicClock
from app.schemas.appointments import AppointmentStatus

# Statuses still waiting for the patient to arrive
PRE_ARRIVAL_STATUSES = (AppointmentStatus.PROGRAMADA, AppointmentStatus.CONFIRMADA)


@dataclass(frozen=True)
class ActionWindowCheck:
    """Whether a status change is allowed at a given instant."""

    allowed: bool
    reason: str | None = None
    minutes_remaining: int | None = None

    def __bool__(self) -> bool:
        return self.allowed


class ActionWindowGuard:
    """
    Time rules for actions on appointments the patient has not arrived for.

    - NO_ASISTIO only once ``scheduled_at + no_show_after`` has been reached
    - CANCELADA only while the appointment time has not passed
    - REAGENDADA not inside the last ``reschedule_deadline`` before the
      appointment; once the time has passed a missed appointment can be
      rescheduled again

    Appointments in any other status are not restricted here.
    """

    def __init__(
        self,
        clock: ClinicClock,
        no_show_after_minutes: int,
        reschedule_deadline_minutes: int,
    ):
        self.clock = clock
        self.no_show_after = timedelta(minutes=no_show_after_minutes)
        self.reschedule_deadline = timedelta(minutes=reschedule_deadline_minutes)

    def check(
        self,
        current: AppointmentStatus,
        target: AppointmentStatus,
        scheduled_at: datetime,
        now: datetime | None = None,
    ) -> ActionWindowCheck:
        """
        Check whether ``current -> target`` may happen now.

        Args:
            current: Persisted status
            target: Requested status
            scheduled_at: Appointment instant
            now: Attempt instant (default: clock now)

        Returns:
            Allowed, or denied with a reason (and minutes to wait for NO_ASISTIO)
        """
        if current not in PRE_ARRIVAL_STATUSES:
            return ActionWindowCheck(True)

        scheduled = self.clock.to_utc(scheduled_at)
        current_time = self.clock.to_utc(now if now is not None else self.clock.now())

        if target is AppointmentStatus.NO_ASISTIO:
            threshold = scheduled + self.no_show_after
            if current_time < threshold:
                minutes = self.clock.minutes_until(threshold, current_time)
                return ActionWindowCheck(
                    False,
                    f"Wait {minutes} more minutes before marking the appointment NO_ASISTIO",
                    minutes_remaining=minutes,
                )

        elif target is AppointmentStatus.CANCELADA:
            if scheduled < current_time:
                return ActionWindowCheck(
                    False, "Appointments that already passed cannot be cancelled"
                )

        elif target is AppointmentStatus.REAGENDADA:
            deadline = scheduled - self.reschedule_deadline
            if deadline < current_time < scheduled:
                minutes = int(self.reschedule_deadline.total_seconds() // 60)
                return ActionWindowCheck(
                    False,
                    f"Appointments cannot be rescheduled less than {minutes} minutes in advance",
                )

        return ActionWindowCheck(True)
