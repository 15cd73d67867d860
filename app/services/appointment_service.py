"""Appointment service for business logic."""

from datetime import date
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import and_, func, insert, select, update
from sqlalchemy.engine import Row
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import ClinicClock
from app.core.exceptions import (
    BadRequestException,
    ConcurrentModificationException,
    NotFoundException,
    PersistenceException,
    ScheduleRuleViolationException,
    SchedulingConflictException,
    StatusChangeNotAllowedException,
    ValidationException,
)
from app.core.redis_client import CacheManager
from app.models.appointments import appointment_history, appointments
from app.models.patients import patients
from app.schemas.appointments import (
    AgendaResponse,
    AppointmentCreate,
    AppointmentHistoryResponse,
    AppointmentResponse,
    AppointmentStatus,
    AppointmentUpdate,
    CheckInState,
    CheckInWindowResponse,
    HistoryEntryResponse,
    HistorySummary,
)
from app.services.action_windows import PRE_ARRIVAL_STATUSES, ActionWindowGuard
from app.services.check_in_window import CheckInWindowEvaluator
from app.services.schedule_rules import ScheduleRules
from app.services.slot_conflict import SlotConflictDetector, is_slot_violation
from app.services.transition_validator import TransitionValidator, holds_slot

logger = structlog.get_logger(__name__)

# Pending appointments whose window has expired can only be marked or moved
EXPIRED_ACTIONS = (AppointmentStatus.NO_ASISTIO, AppointmentStatus.REAGENDADA)


def history_cache_key(appointment_id: UUID) -> str:
    """Generate cache key for an appointment history response."""
    return f"appointment:history:{appointment_id}"


async def fetch_appointment(db: AsyncSession, appointment_id: UUID) -> Row:
    """
    Load an appointment row.

    Raises:
        NotFoundException: If appointment not found
    """
    result = await db.execute(select(appointments).where(appointments.c.id == appointment_id))
    row = result.fetchone()
    if not row:
        raise NotFoundException("Appointment not found")
    return row


class AppointmentService:
    """Service for booking, editing and reading appointments."""

    def __init__(
        self,
        db: AsyncSession,
        clock: ClinicClock,
        schedule_rules: ScheduleRules,
        check_in: CheckInWindowEvaluator,
        cache: CacheManager | None = None,
        history_cache_ttl: int = 60,
        action_windows: ActionWindowGuard | None = None,
    ):
        """Initialize service with database session and clinic collaborators."""
        self.db = db
        self.clock = clock
        self.schedule_rules = schedule_rules
        self.check_in = check_in
        self.cache = cache
        self.history_cache_ttl = history_cache_ttl
        self.action_windows = action_windows
        self.conflicts = SlotConflictDetector(db, clock)
        self.validator = TransitionValidator()

    async def create_appointment(self, data: AppointmentCreate) -> AppointmentResponse:
        """
        Book a new appointment in PROGRAMADA.

        Args:
            data: Appointment creation data

        Returns:
            Created appointment

        Raises:
            NotFoundException: If the patient does not exist
            ScheduleRuleViolationException: If the instant is not bookable
            SchedulingConflictException: If the doctor already holds the slot
        """
        patient = await self.db.execute(select(patients.c.id).where(patients.c.id == data.patient_id))
        if patient.scalar() is None:
            raise NotFoundException("Patient not found")

        now = self.clock.now()
        scheduled_at = self.clock.to_utc(data.scheduled_at)

        rule = self.schedule_rules.check(scheduled_at, now)
        if not rule.valid:
            raise ScheduleRuleViolationException(rule.reason or "Time not allowed by clinic schedule")

        if await self.conflicts.has_conflict(data.doctor_id, scheduled_at):
            raise self._conflict(data.doctor_id, scheduled_at)

        values = {
            "patient_id": data.patient_id,
            "doctor_id": data.doctor_id,
            "scheduled_at": scheduled_at,
            "reasons": data.reasons,
            "is_first_visit": data.is_first_visit,
            "notes": data.notes,
            "status": AppointmentStatus.PROGRAMADA.value,
            "created_at": now,
            "updated_at": now,
        }

        stmt = insert(appointments).values(**values).returning(appointments)
        row = await self._write(stmt, data.doctor_id, scheduled_at)

        logger.info(
            "appointment_created",
            appointment_id=str(row.id),
            patient_id=str(data.patient_id),
            doctor_id=str(data.doctor_id) if data.doctor_id else None,
            scheduled_at=scheduled_at.isoformat(),
        )
        return AppointmentResponse.model_validate(dict(row._mapping))

    async def get_appointment(self, appointment_id: UUID) -> AppointmentResponse:
        """
        Get appointment by ID.

        Raises:
            NotFoundException: If appointment not found
        """
        row = await fetch_appointment(self.db, appointment_id)
        return AppointmentResponse.model_validate(dict(row._mapping))

    async def update_appointment(
        self,
        appointment_id: UUID,
        data: AppointmentUpdate,
    ) -> AppointmentResponse:
        """
        Edit non-status fields of an appointment.

        Args:
            appointment_id: Appointment ID
            data: Partial update data

        Returns:
            Updated appointment

        Raises:
            NotFoundException: If appointment not found
            StatusChangeNotAllowedException: If the payload carries a status
            ValidationException: If the appointment can no longer be edited
            ScheduleRuleViolationException: If the new time is not bookable
            SchedulingConflictException: If the new slot is taken
            ConcurrentModificationException: If the appointment changed meanwhile
        """
        current = await fetch_appointment(self.db, appointment_id)

        if "status" in data.model_fields_set:
            raise StatusChangeNotAllowedException()

        current_status = AppointmentStatus(current.status)
        if current_status is AppointmentStatus.COMPLETADA:
            raise ValidationException("Completed appointments cannot be modified")

        changes: dict[str, Any] = data.model_dump(exclude_unset=True, exclude={"status"})
        if "scheduled_at" in changes:
            if changes["scheduled_at"] is None:
                raise ValidationException("scheduled_at cannot be removed")
            changes["scheduled_at"] = self.clock.to_utc(changes["scheduled_at"])
        if "reasons" in changes and not changes["reasons"]:
            raise ValidationException("At least one consultation reason is required")

        current_at = self.clock.to_utc(current.scheduled_at)
        new_at = changes.get("scheduled_at", current_at)
        new_doctor = changes.get("doctor_id", current.doctor_id)
        time_changed = new_at != current_at
        slot_changed = time_changed or new_doctor != current.doctor_id

        if slot_changed and current_status is AppointmentStatus.CANCELADA:
            raise ValidationException(
                "Cancelled appointments must be reactivated before changing doctor or time"
            )

        if time_changed:
            rule = self.schedule_rules.check(new_at)
            if not rule.valid:
                raise ScheduleRuleViolationException(
                    rule.reason or "Time not allowed by clinic schedule"
                )

        if slot_changed and holds_slot(current_status):
            if await self.conflicts.has_conflict(new_doctor, new_at, appointment_id):
                raise self._conflict(new_doctor, new_at)

        if not changes:
            return AppointmentResponse.model_validate(dict(current._mapping))

        changes["updated_at"] = self.clock.now()

        stmt = (
            update(appointments)
            .where(
                and_(
                    appointments.c.id == appointment_id,
                    appointments.c.status == current_status.value,
                    appointments.c.updated_at == current.updated_at,
                )
            )
            .values(**changes)
            .returning(appointments)
        )
        row = await self._write(stmt, new_doctor, new_at)
        self._invalidate_history(appointment_id)

        logger.info(
            "appointment_updated",
            appointment_id=str(appointment_id),
            fields=sorted(k for k in changes if k != "updated_at"),
        )
        return AppointmentResponse.model_validate(dict(row._mapping))

    async def get_history(self, appointment_id: UUID) -> AppointmentHistoryResponse:
        """
        Get the full status history of an appointment with a summary.

        Entries are ordered by their own ``changed_at``, most recent first.

        Raises:
            NotFoundException: If appointment not found
        """
        cache_key = history_cache_key(appointment_id)
        if self.cache:
            cached = self.cache.get_json(cache_key)
            if cached:
                return AppointmentHistoryResponse.model_validate(cached)

        stmt = (
            select(appointments, patients.c.full_name.label("patient_name"))
            .select_from(
                appointments.outerjoin(patients, patients.c.id == appointments.c.patient_id)
            )
            .where(appointments.c.id == appointment_id)
        )
        result = await self.db.execute(stmt)
        current = result.fetchone()
        if not current:
            raise NotFoundException("Appointment not found")

        history_stmt = (
            select(appointment_history)
            .where(appointment_history.c.appointment_id == appointment_id)
            .order_by(appointment_history.c.changed_at.desc(), appointment_history.c.id.desc())
        )
        history_result = await self.db.execute(history_stmt)
        items = [
            HistoryEntryResponse.model_validate(dict(row._mapping))
            for row in history_result.fetchall()
        ]

        scheduled_at = self.clock.to_utc(current.scheduled_at)
        response = AppointmentHistoryResponse(
            summary=HistorySummary(
                appointment_id=current.id,
                current_status=current.status,
                scheduled_at=scheduled_at,
                scheduled_at_local=self.clock.format_clinic(scheduled_at),
                patient_name=current.patient_name,
                total_changes=len(items),
            ),
            items=items,
        )

        if self.cache:
            self.cache.set_json(
                cache_key, response.model_dump(mode="json"), ttl=self.history_cache_ttl
            )
        return response

    async def get_check_in_window(self, appointment_id: UUID) -> CheckInWindowResponse:
        """
        Classify the check-in window of an appointment right now.

        Raises:
            NotFoundException: If appointment not found
        """
        current = await fetch_appointment(self.db, appointment_id)
        status = AppointmentStatus(current.status)
        now = self.clock.now()
        evaluation = self.check_in.evaluate(current.scheduled_at, now)

        actions = self.validator.allowed_targets(status)
        if status in PRE_ARRIVAL_STATUSES:
            if evaluation.state is CheckInState.EXPIRED:
                actions = [a for a in actions if a in EXPIRED_ACTIONS]
            elif not evaluation.is_open:
                actions = [a for a in actions if a is not AppointmentStatus.PRESENTE]
        if self.action_windows is not None:
            actions = [
                a
                for a in actions
                if self.action_windows.check(status, a, current.scheduled_at, now).allowed
            ]

        return CheckInWindowResponse(
            appointment_id=current.id,
            status=status,
            state=evaluation.state,
            minutes_until_open=evaluation.minutes_until_open,
            minutes_since_close=evaluation.minutes_since_close,
            window_opens_at=evaluation.opens_at,
            window_closes_at=evaluation.closes_at,
            is_today=self.clock.is_today(current.scheduled_at),
            available_actions=actions,
        )

    async def get_agenda(self, day: date | None, doctor_id: UUID | None = None) -> AgendaResponse:
        """
        List the appointments of one clinic day ordered by time.

        Args:
            day: Clinic-zone date (default: today)
            doctor_id: Optional doctor filter

        Returns:
            Appointments scheduled within the day
        """
        day = day or self.clock.today()
        start, end = self.clock.day_bounds(day)

        conditions = [
            appointments.c.scheduled_at >= start,
            appointments.c.scheduled_at < end,
        ]
        if doctor_id:
            conditions.append(appointments.c.doctor_id == doctor_id)

        count_stmt = select(func.count()).select_from(appointments).where(and_(*conditions))
        total = (await self.db.execute(count_stmt)).scalar() or 0

        stmt = (
            select(appointments)
            .where(and_(*conditions))
            .order_by(appointments.c.scheduled_at.asc(), appointments.c.id.asc())
        )
        result = await self.db.execute(stmt)
        items = [AppointmentResponse.model_validate(dict(row._mapping)) for row in result.fetchall()]

        return AgendaResponse(day=day, doctor_id=doctor_id, total=total, items=items)

    async def _write(self, stmt: Any, doctor_id: UUID | None, scheduled_at: Any) -> Row:
        """Execute a guarded insert/update and commit, mapping store errors."""
        try:
            result = await self.db.execute(stmt)
            row = result.fetchone()
            if row is None:
                await self.db.rollback()
                raise ConcurrentModificationException()
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            if is_slot_violation(e):
                # The unique slot index caught a booking the pre-check missed
                raise self._conflict(doctor_id, scheduled_at) from e
            logger.warning("appointment_integrity_error", error=str(e.orig))
            raise BadRequestException("Appointment data was rejected by the store") from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("persistence_failure", error=str(e))
            raise PersistenceException() from e
        return row

    def _conflict(self, doctor_id: UUID | None, scheduled_at: Any) -> SchedulingConflictException:
        return SchedulingConflictException(
            details={
                "doctor_id": str(doctor_id) if doctor_id else None,
                "scheduled_at": self.clock.to_utc(scheduled_at).isoformat(),
            }
        )

    def _invalidate_history(self, appointment_id: UUID) -> None:
        if self.cache:
            self.cache.delete(history_cache_key(appointment_id))
