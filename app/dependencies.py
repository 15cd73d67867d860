"""FastAPI dependencies."""

from functools import lru_cache
from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.core.clock import ClinicClock
from app.core.redis_client import CacheManager, get_redis_client, redis_enabled
from app.core.security import decode_access_token
from app.database import get_db, get_session_factory
from app.services.action_windows import ActionWindowGuard
from app.services.appointment_lifecycle import AppointmentLifecycleManager
from app.services.appointment_service import AppointmentService
from app.services.audit_trail import AuditTrailRecorder
from app.services.check_in_window import CheckInWindowEvaluator
from app.services.schedule_rules import ScheduleRules

# Security
security = HTTPBearer()


async def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> UUID:
    """
    Extract and validate the staff user ID from a JWT token.

    Args:
        credentials: Bearer token credentials

    Returns:
        User ID from token

    Raises:
        HTTPException: If token is invalid or expired
    """
    payload = decode_access_token(credentials.credentials)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id_str = payload.get("sub")
    if user_id_str is None or not isinstance(user_id_str, str):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return UUID(user_id_str)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user ID format",
            headers={"WWW-Authenticate": "Bearer"},
        )


@lru_cache
def get_clock() -> ClinicClock:
    """Get the clinic clock."""
    return ClinicClock(settings.clinic_timezone)


def get_cache_manager() -> CacheManager | None:
    """Get the history cache, or None when Redis is not configured."""
    if not redis_enabled():
        return None
    return CacheManager(get_redis_client())


def get_schedule_rules(clock: Annotated[ClinicClock, Depends(get_clock)]) -> ScheduleRules:
    """Get clinic schedule rules."""
    return ScheduleRules.from_settings(settings, clock)


def get_check_in_evaluator(
    clock: Annotated[ClinicClock, Depends(get_clock)],
) -> CheckInWindowEvaluator:
    """Get the check-in window evaluator."""
    return CheckInWindowEvaluator(
        clock,
        opens_before_minutes=settings.check_in_opens_before_minutes,
        closes_after_minutes=settings.check_in_closes_after_minutes,
    )


def get_action_window_guard(
    clock: Annotated[ClinicClock, Depends(get_clock)],
) -> ActionWindowGuard | None:
    """Get the no-show, cancellation and reschedule time guards, or None when disabled."""
    if not settings.enforce_action_windows:
        return None
    return ActionWindowGuard(
        clock,
        no_show_after_minutes=settings.no_show_after_minutes,
        reschedule_deadline_minutes=settings.reschedule_deadline_minutes,
    )


def get_appointment_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    clock: Annotated[ClinicClock, Depends(get_clock)],
    schedule_rules: Annotated[ScheduleRules, Depends(get_schedule_rules)],
    check_in: Annotated[CheckInWindowEvaluator, Depends(get_check_in_evaluator)],
    cache: Annotated[CacheManager | None, Depends(get_cache_manager)],
    action_windows: Annotated[ActionWindowGuard | None, Depends(get_action_window_guard)],
) -> AppointmentService:
    """Build the appointment service for a request."""
    return AppointmentService(
        db,
        clock,
        schedule_rules,
        check_in,
        cache=cache,
        history_cache_ttl=settings.history_cache_ttl_seconds,
        action_windows=action_windows,
    )


def get_lifecycle_manager(
    db: Annotated[AsyncSession, Depends(get_db)],
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
    clock: Annotated[ClinicClock, Depends(get_clock)],
    schedule_rules: Annotated[ScheduleRules, Depends(get_schedule_rules)],
    check_in: Annotated[CheckInWindowEvaluator, Depends(get_check_in_evaluator)],
    cache: Annotated[CacheManager | None, Depends(get_cache_manager)],
    action_windows: Annotated[ActionWindowGuard | None, Depends(get_action_window_guard)],
) -> AppointmentLifecycleManager:
    """Build the lifecycle manager for a request."""
    recorder = AuditTrailRecorder(
        session_factory,
        clock,
        timeout_seconds=settings.audit_write_timeout_seconds,
    )
    return AppointmentLifecycleManager(
        db,
        clock,
        schedule_rules,
        recorder,
        check_in=check_in if settings.enforce_check_in_window else None,
        action_windows=action_windows,
        cache=cache,
    )


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
CurrentUserId = Annotated[UUID, Depends(get_current_user_id)]
Appointments = Annotated[AppointmentService, Depends(get_appointment_service)]
Lifecycle = Annotated[AppointmentLifecycleManager, Depends(get_lifecycle_manager)]
