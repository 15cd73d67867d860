"""Appointment lifecycle manager.

Every status change goes through ``AppointmentLifecycleManager.request_transition``:

1. load the appointment
2. check the transition table and the time guards for the action
3. resolve the slot being written and check it against the doctor's calendar
4. check clinic schedule rules for a new reschedule instant
5. commit the status (guarded on the row version that was validated)
6. append the history entry, best effort, in its own transaction
"""

from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

import structlog
from sqlalchemy import and_, update
from sqlalchemy.engine import Row
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import ClinicClock
from app.core.exceptions import (
    ActionWindowException,
    BadRequestException,
    CheckInWindowException,
    ConcurrentModificationException,
    InvalidTransitionException,
    PersistenceException,
    ScheduleRuleViolationException,
    SchedulingConflictException,
)
from app.core.redis_client import CacheManager
from app.models.appointments import appointments
from app.schemas.appointments import (
    AppointmentStatus,
    AppointmentTransitionResponse,
    CheckInState,
    TransitionMeta,
)
from app.services.action_windows import ActionWindowGuard
from app.services.appointment_service import fetch_appointment, history_cache_key
from app.services.audit_trail import AuditResult, RescheduleDetail
from app.services.check_in_window import CheckInWindowEvaluator
from app.services.schedule_rules import RuleCheck
from app.services.slot_conflict import SlotConflictDetector, is_slot_violation
from app.services.transition_validator import TransitionDecision, TransitionValidator, holds_slot

logger = structlog.get_logger(__name__)

_UNSET: Any = object()


class Validator(Protocol):
    def validate(self, current: str, requested: str) -> TransitionDecision: ...

    def allowed_targets(self, current: str) -> list[AppointmentStatus]: ...


class ConflictChecker(Protocol):
    async def has_conflict(
        self,
        doctor_id: UUID | None,
        candidate_at: datetime,
        exclude_appointment_id: UUID | None = None,
    ) -> bool: ...


class Recorder(Protocol):
    async def record(
        self,
        appointment_id: UUID,
        previous_status: AppointmentStatus,
        new_status: AppointmentStatus,
        actor_id: UUID | None,
        note: str | None = None,
        reschedule: RescheduleDetail | None = None,
        changed_at: datetime | None = None,
    ) -> AuditResult: ...


class SlotRules(Protocol):
    def check(self, instant: datetime, now: datetime | None = None) -> RuleCheck: ...


def needs_slot_check(
    current: AppointmentStatus,
    target: AppointmentStatus,
    slot_changed: bool,
) -> bool:
    """
    Decide whether a transition writes a slot that must be checked.

    A slot is written when the target holds its slot and either the slot
    moves, the appointment comes back from a status that released it, or it
    leaves REAGENDADA (the rescheduled slot is confirmed again).
    """
    if not holds_slot(target):
        return False
    return slot_changed or not holds_slot(current) or current is AppointmentStatus.REAGENDADA


class AppointmentLifecycleManager:
    """Moves appointments through their lifecycle."""

    def __init__(
        self,
        db: AsyncSession,
        clock: ClinicClock,
        schedule_rules: SlotRules,
        recorder: Recorder,
        validator: Validator | None = None,
        conflict_checker: ConflictChecker | None = None,
        check_in: CheckInWindowEvaluator | None = None,
        action_windows: ActionWindowGuard | None = None,
        cache: CacheManager | None = None,
    ):
        """
        Initialize manager with its collaborators.

        Args:
            db: Session used for the primary read and commit
            clock: Clinic clock
            schedule_rules: Clinic schedule constraints for reschedules
            recorder: History writer (own session)
            validator: Transition table (default: TransitionValidator)
            conflict_checker: Doctor calendar lookup (default: SlotConflictDetector)
            check_in: When given, PRESENTE requires an open check-in window
            action_windows: When given, NO_ASISTIO, CANCELADA and REAGENDADA are time guarded
            cache: Optional history cache to invalidate after changes
        """
        self.db = db
        self.clock = clock
        self.validator = validator or TransitionValidator()
        self.conflict_checker = conflict_checker or SlotConflictDetector(db, clock)
        self.schedule_rules = schedule_rules
        self.recorder = recorder
        self.check_in = check_in
        self.action_windows = action_windows
        self.cache = cache

    async def request_transition(
        self,
        appointment_id: UUID,
        requested_status: str | AppointmentStatus,
        actor_id: UUID | None = None,
        *,
        new_scheduled_at: datetime | None = None,
        doctor_id: UUID | None = _UNSET,
        reason: str | None = None,
        notes: str | None = None,
    ) -> AppointmentTransitionResponse:
        """
        Change the status of an appointment.

        Args:
            appointment_id: Appointment ID
            requested_status: Target status code
            actor_id: User requesting the change, if known
            new_scheduled_at: New instant, required for REAGENDADA
            doctor_id: New doctor for REAGENDADA (omit to keep the current one)
            reason: Reason stored in the history entry
            notes: Text appended to the appointment notes

        Returns:
            Updated appointment with transition metadata

        Raises:
            NotFoundException: If appointment not found
            InvalidTransitionException: If the transition is not allowed
            BadRequestException: If reschedule data is missing or misplaced
            CheckInWindowException: If checking in outside the window
            ActionWindowException: If the action is not allowed at this time
            SchedulingConflictException: If the slot is taken
            ScheduleRuleViolationException: If the new instant is not bookable
            ConcurrentModificationException: If the appointment changed meanwhile
            PersistenceException: If the primary write failed
        """
        current = await fetch_appointment(self.db, appointment_id)
        current_status = AppointmentStatus(current.status)
        requested = (
            requested_status.value
            if isinstance(requested_status, AppointmentStatus)
            else str(requested_status).strip().upper()
        )

        decision = self.validator.validate(current_status.value, requested)
        if not decision.allowed:
            logger.info(
                "appointment_transition_denied",
                appointment_id=str(appointment_id),
                current_status=current_status.value,
                requested_status=requested,
                reason=decision.reason,
            )
            raise InvalidTransitionException(
                current_status.value,
                requested,
                decision.reason or "Transition not allowed",
                allowed=[s.value for s in self.validator.allowed_targets(current_status.value)],
            )
        target = AppointmentStatus(requested)

        rescheduling = target is AppointmentStatus.REAGENDADA
        if rescheduling and new_scheduled_at is None:
            raise BadRequestException("new_scheduled_at is required when rescheduling")
        if not rescheduling and (new_scheduled_at is not None or doctor_id is not _UNSET):
            raise BadRequestException(
                "new_scheduled_at and doctor_id are only accepted when rescheduling"
            )

        now = self.clock.now()
        current_at = self.clock.to_utc(current.scheduled_at)
        effective_at = self.clock.to_utc(new_scheduled_at) if new_scheduled_at else current_at
        effective_doctor = current.doctor_id if doctor_id is _UNSET else doctor_id
        slot_changed = effective_at != current_at or effective_doctor != current.doctor_id

        if target is AppointmentStatus.PRESENTE and self.check_in is not None:
            self._ensure_check_in_open(current_at, now)

        if self.action_windows is not None:
            self._ensure_action_window(appointment_id, current_status, target, current_at, now)

        if effective_doctor is not None and needs_slot_check(current_status, target, slot_changed):
            if await self.conflict_checker.has_conflict(
                effective_doctor, effective_at, appointment_id
            ):
                raise self._conflict(effective_doctor, effective_at)

        if rescheduling:
            rule = self.schedule_rules.check(effective_at, now)
            if not rule.valid:
                raise ScheduleRuleViolationException(
                    rule.reason or "Time not allowed by clinic schedule"
                )

        values: dict[str, Any] = {"status": target.value, "updated_at": now}
        if effective_at != current_at:
            values["scheduled_at"] = effective_at
        if effective_doctor != current.doctor_id:
            values["doctor_id"] = effective_doctor
        if notes and notes.strip():
            stamped = f"[{self.clock.format_clinic(now)}] {notes.strip()}"
            values["notes"] = f"{current.notes} | {stamped}" if current.notes else stamped

        row = await self._commit(current, values, effective_doctor, effective_at)

        logger.info(
            "appointment_status_changed",
            appointment_id=str(appointment_id),
            previous_status=current_status.value,
            new_status=target.value,
            changed_by=str(actor_id) if actor_id else None,
        )

        reschedule = (
            RescheduleDetail(previous_scheduled_at=current_at, new_scheduled_at=effective_at)
            if rescheduling
            else None
        )
        audit = await self.recorder.record(
            appointment_id,
            current_status,
            target,
            actor_id,
            note=reason,
            reschedule=reschedule,
            changed_at=now,
        )
        self._invalidate_history(appointment_id)

        warnings = []
        if not audit.created:
            warnings.append(f"History entry was not recorded: {audit.error}")

        return AppointmentTransitionResponse.model_validate(
            {
                **dict(row._mapping),
                "meta": TransitionMeta(
                    previous_status=current_status,
                    new_status=target,
                    status_changed_at=now,
                    changed_by=actor_id,
                    audit_trail_created=audit.created,
                    warnings=warnings,
                ),
            }
        )

    def _ensure_check_in_open(self, scheduled_at: datetime, now: datetime) -> None:
        evaluation = self.check_in.evaluate(scheduled_at, now)
        if evaluation.state is CheckInState.TOO_EARLY:
            raise CheckInWindowException(
                f"Too early to check in; the window opens in {evaluation.minutes_until_open} minutes",
                details={
                    "state": evaluation.state.value,
                    "minutes_until_open": evaluation.minutes_until_open,
                },
            )
        if evaluation.state is CheckInState.EXPIRED:
            raise CheckInWindowException(
                "Check-in window has closed; mark the appointment NO_ASISTIO or reschedule it",
                details={
                    "state": evaluation.state.value,
                    "minutes_since_close": evaluation.minutes_since_close,
                },
            )

    def _ensure_action_window(
        self,
        appointment_id: UUID,
        current: AppointmentStatus,
        target: AppointmentStatus,
        scheduled_at: datetime,
        now: datetime,
    ) -> None:
        check = self.action_windows.check(current, target, scheduled_at, now)
        if check.allowed:
            return
        logger.info(
            "appointment_action_outside_window",
            appointment_id=str(appointment_id),
            current_status=current.value,
            requested_status=target.value,
            reason=check.reason,
        )
        details: dict[str, Any] = {"requested_status": target.value}
        if check.minutes_remaining is not None:
            details["minutes_remaining"] = check.minutes_remaining
        raise ActionWindowException(
            check.reason or "Action not allowed at this time", details=details
        )

    async def _commit(
        self,
        current: Row,
        values: dict[str, Any],
        doctor_id: UUID | None,
        scheduled_at: datetime,
    ) -> Any:
        """Write the change only if the row is still the one that was validated."""
        appointment_id = current.id
        stmt = (
            update(appointments)
            .where(
                and_(
                    appointments.c.id == appointment_id,
                    appointments.c.status == current.status,
                    appointments.c.updated_at == current.updated_at,
                )
            )
            .values(**values)
            .returning(appointments)
        )
        try:
            result = await self.db.execute(stmt)
            row = result.fetchone()
            if row is None:
                await self.db.rollback()
                logger.warning(
                    "appointment_concurrent_modification",
                    appointment_id=str(appointment_id),
                    expected_status=current.status,
                )
                raise ConcurrentModificationException()
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            if is_slot_violation(e):
                raise self._conflict(doctor_id, scheduled_at) from e
            logger.warning(
                "appointment_integrity_error",
                appointment_id=str(appointment_id),
                error=str(e.orig),
            )
            raise BadRequestException("Appointment data was rejected by the store") from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "persistence_failure",
                appointment_id=str(appointment_id),
                error=str(e),
            )
            raise PersistenceException("Failed to update appointment status") from e
        return row

    def _conflict(self, doctor_id: UUID | None, scheduled_at: datetime) -> SchedulingConflictException:
        logger.info(
            "appointment_slot_taken",
            doctor_id=str(doctor_id) if doctor_id else None,
            scheduled_at=scheduled_at.isoformat(),
        )
        return SchedulingConflictException(
            details={
                "doctor_id": str(doctor_id) if doctor_id else None,
                "scheduled_at": scheduled_at.isoformat(),
            }
        )

    def _invalidate_history(self, appointment_id: UUID) -> None:
        if self.cache:
            self.cache.delete(history_cache_key(appointment_id))
            logger.debug("history_cache_invalidated", appointment_id=str(appointment_id))
