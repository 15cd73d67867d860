"""Doctor calendar conflict checks."""

from datetime import datetime
from uuid import UUID

import structlog
from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import ClinicClock
from app.models.appointments import SLOT_INDEX_NAME, appointments
from app.services.transition_validator import SLOT_HOLDING

logger = structlog.get_logger(__name__)

# SQLite reports the columns of a violated unique index, not its name
_SQLITE_SLOT_VIOLATION = (
    "UNIQUE constraint failed: appointments.doctor_id, appointments.scheduled_at"
)


def is_slot_violation(error: IntegrityError) -> bool:
    """Tell whether an integrity error was raised by the active-slot unique index."""
    message = str(error.orig)
    return SLOT_INDEX_NAME in message or _SQLITE_SLOT_VIOLATION in message


class SlotConflictDetector:
    """
    Read-only lookup against the shared doctor calendar.

    This is a fast, friendly pre-check. The partial unique index on
    ``(doctor_id, scheduled_at)`` is what actually guarantees a slot is
    never double booked across service instances.
    """

    def __init__(self, db: AsyncSession, clock: ClinicClock):
        """Initialize detector with database session and clinic clock."""
        self.db = db
        self.clock = clock

    async def has_conflict(
        self,
        doctor_id: UUID | None,
        candidate_at: datetime,
        exclude_appointment_id: UUID | None = None,
    ) -> bool:
        """
        Check whether the doctor already holds that exact instant.

        Args:
            doctor_id: Doctor to check; unassigned appointments never collide
            candidate_at: Candidate start instant (exact match, not overlap)
            exclude_appointment_id: Appointment being mutated

        Returns:
            True if another slot-holding appointment occupies the slot
        """
        if doctor_id is None:
            return False

        conditions = [
            appointments.c.doctor_id == doctor_id,
            appointments.c.scheduled_at == self.clock.to_utc(candidate_at),
            appointments.c.status.in_([status.value for status in SLOT_HOLDING]),
        ]
        if exclude_appointment_id is not None:
            conditions.append(appointments.c.id != exclude_appointment_id)

        stmt = select(appointments.c.id).where(and_(*conditions)).limit(1)
        result = await self.db.execute(stmt)
        conflicting_id = result.scalar()

        if conflicting_id is not None:
            logger.info(
                "slot_conflict_detected",
                doctor_id=str(doctor_id),
                scheduled_at=self.clock.to_utc(candidate_at).isoformat(),
                conflicting_appointment_id=str(conflicting_id),
                excluded_appointment_id=str(exclude_appointment_id) if exclude_appointment_id else None,
            )
            return True
        return False
