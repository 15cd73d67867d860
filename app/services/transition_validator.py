"""Appointment status transition table."""

from dataclasses import dataclass

from app.schemas.appointments import AppointmentStatus

S = AppointmentStatus

ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    S.PROGRAMADA: frozenset({S.CONFIRMADA, S.CANCELADA, S.REAGENDADA, S.PRESENTE, S.NO_ASISTIO}),
    S.CONFIRMADA: frozenset({S.CANCELADA, S.REAGENDADA, S.PRESENTE, S.NO_ASISTIO, S.COMPLETADA}),
    S.PRESENTE: frozenset({S.COMPLETADA, S.CANCELADA}),
    S.CANCELADA: frozenset({S.REAGENDADA, S.PROGRAMADA}),
    S.REAGENDADA: frozenset({S.CONFIRMADA, S.PROGRAMADA, S.CANCELADA}),
    S.NO_ASISTIO: frozenset({S.REAGENDADA, S.PROGRAMADA}),
    S.COMPLETADA: frozenset(),
}

# Statuses that keep their (doctor, instant) slot booked
SLOT_HOLDING = frozenset({S.PROGRAMADA, S.CONFIRMADA, S.PRESENTE, S.REAGENDADA})

TERMINAL = frozenset(status for status, targets in ALLOWED_TRANSITIONS.items() if not targets)

if set(ALLOWED_TRANSITIONS) != set(AppointmentStatus):
    raise RuntimeError("Transition table must cover every appointment status")


@dataclass(frozen=True)
class TransitionDecision:
    """Outcome of validating a transition."""

    allowed: bool
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.allowed


def parse_status(value: str | AppointmentStatus) -> AppointmentStatus | None:
    """Return the status for a code, or None when it is not recognized."""
    if isinstance(value, AppointmentStatus):
        return value
    try:
        return AppointmentStatus(value)
    except ValueError:
        return None


class TransitionValidator:
    """Pure state machine check, no I/O."""

    def __init__(
        self,
        transitions: dict[AppointmentStatus, frozenset[AppointmentStatus]] | None = None,
    ):
        self.transitions = transitions if transitions is not None else ALLOWED_TRANSITIONS

    def validate(
        self,
        current: str | AppointmentStatus,
        requested: str | AppointmentStatus,
    ) -> TransitionDecision:
        """
        Decide whether ``current`` may move to ``requested``.

        Args:
            current: Persisted status
            requested: Requested status code

        Returns:
            Allowed decision, or a denial carrying the reason

        Raises:
            ValueError: If the persisted status is not a known status
        """
        current_status = parse_status(current)
        if current_status is None or current_status not in self.transitions:
            # A stored status outside the table means the table or the data is wrong
            raise ValueError(f"Unknown persisted appointment status: {current!r}")

        requested_status = parse_status(requested)
        if requested_status is None:
            return TransitionDecision(
                False,
                f"Cannot change status from {current_status.value} to {requested}: "
                "unknown appointment status",
            )

        targets = self.transitions[current_status]
        if not targets:
            return TransitionDecision(
                False,
                f"Cannot change status from {current_status.value} to {requested_status.value}: "
                f"{current_status.value} is a terminal status",
            )
        if requested_status not in targets:
            return TransitionDecision(
                False,
                f"Cannot change status from {current_status.value} to {requested_status.value}",
            )
        return TransitionDecision(True)

    def allowed_targets(self, current: str | AppointmentStatus) -> list[AppointmentStatus]:
        """List reachable statuses in declaration order."""
        current_status = parse_status(current)
        if current_status is None:
            return []
        targets = self.transitions.get(current_status, frozenset())
        return [status for status in AppointmentStatus if status in targets]


def holds_slot(status: str | AppointmentStatus) -> bool:
    """Check whether a status keeps its slot booked."""
    return parse_status(status) in SLOT_HOLDING
