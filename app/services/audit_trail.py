"""Appointment history recording."""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

import structlog
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.clock import ClinicClock
from app.models.appointments import appointment_history
from app.schemas.appointments import AppointmentStatus, HistoryEntryResponse

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RescheduleDetail:
    """Slot move captured alongside a reschedule."""

    previous_scheduled_at: datetime
    new_scheduled_at: datetime


@dataclass(frozen=True)
class AuditResult:
    """Outcome of a history write."""

    entry: HistoryEntryResponse | None = None
    error: str | None = None

    @property
    def created(self) -> bool:
        return self.entry is not None


class AuditTrailRecorder:
    """
    Appends history entries after a status change is committed.

    Writes use their own session and transaction so they never hold a lock
    on the appointment row and never roll back the primary change. Failures
    are logged and returned, not raised.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: ClinicClock,
        timeout_seconds: float = 5.0,
    ):
        """Initialize recorder with its own session factory."""
        self.session_factory = session_factory
        self.clock = clock
        self.timeout_seconds = timeout_seconds

    async def record(
        self,
        appointment_id: UUID,
        previous_status: AppointmentStatus,
        new_status: AppointmentStatus,
        actor_id: UUID | None,
        note: str | None = None,
        reschedule: RescheduleDetail | None = None,
        changed_at: datetime | None = None,
    ) -> AuditResult:
        """
        Append one history entry for an accepted transition.

        Args:
            appointment_id: Appointment that changed
            previous_status: Status before the change
            new_status: Status after the change
            actor_id: User who made the change, if known
            note: Reason for the change
            reschedule: Old and new instants when the slot moved
            changed_at: Change instant (default: clock now)

        Returns:
            AuditResult with the stored entry, or the error on failure
        """
        values = {
            "appointment_id": appointment_id,
            "previous_status": previous_status.value,
            "new_status": new_status.value,
            "changed_at": self.clock.to_utc(changed_at or self.clock.now()),
            "changed_by": actor_id,
            "reason_note": note
            or f"Status change: {previous_status.value} -> {new_status.value}",
        }
        if reschedule is not None and reschedule.previous_scheduled_at != reschedule.new_scheduled_at:
            values["previous_scheduled_at"] = self.clock.to_utc(reschedule.previous_scheduled_at)
            values["new_scheduled_at"] = self.clock.to_utc(reschedule.new_scheduled_at)

        try:
            entry = await asyncio.wait_for(self._write(values), timeout=self.timeout_seconds)
        except Exception as e:
            # Audit is diagnostic; the committed status change stands
            logger.warning(
                "audit_write_failed",
                appointment_id=str(appointment_id),
                previous_status=previous_status.value,
                new_status=new_status.value,
                error=str(e) or e.__class__.__name__,
            )
            return AuditResult(error=str(e) or e.__class__.__name__)

        logger.info(
            "audit_entry_recorded",
            appointment_id=str(appointment_id),
            history_id=str(entry.id),
        )
        return AuditResult(entry=entry)

    async def _write(self, values: dict) -> HistoryEntryResponse:
        async with self.session_factory() as session:
            try:
                stmt = insert(appointment_history).values(**values).returning(appointment_history)
                result = await session.execute(stmt)
                row = result.fetchone()
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        return HistoryEntryResponse.model_validate(dict(row._mapping))
