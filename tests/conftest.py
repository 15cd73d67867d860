import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

# Settings are read at import time; pin what the tests depend on
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./clinic_appointments.db")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ["REDIS_HOST"] = ""
os.environ["CLINIC_TIMEZONE"] = "America/Mexico_City"
os.environ["CHECK_IN_OPENS_BEFORE_MINUTES"] = "30"
os.environ["CHECK_IN_CLOSES_AFTER_MINUTES"] = "15"
os.environ["ENFORCE_CHECK_IN_WINDOW"] = "true"
os.environ["NO_SHOW_AFTER_MINUTES"] = "15"
os.environ["RESCHEDULE_DEADLINE_MINUTES"] = "120"
os.environ["ENFORCE_ACTION_WINDOWS"] = "true"
os.environ["SCHEDULE_WORK_DAYS"] = "0,1,2,3,4,5"
os.environ["SCHEDULE_START_HOUR"] = "9"
os.environ["SCHEDULE_END_HOUR"] = "15"
os.environ["SCHEDULE_LUNCH_START_HOUR"] = "12"
os.environ["SCHEDULE_LUNCH_END_HOUR"] = "13"
os.environ["SCHEDULE_SLOT_MINUTES"] = "30"
os.environ["SCHEDULE_MAX_ADVANCE_DAYS"] = "60"
os.environ["SCHEDULE_MIN_LEAD_MINUTES"] = "120"
os.environ["SCHEDULE_BLACKOUTS"] = ""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core.clock import ClinicClock
from app.core.security import create_access_token
from app.database import get_db, get_session_factory
from app.dependencies import get_cache_manager, get_clock
from app.main import app
from app.models.appointments import appointments
from app.models.appointments import metadata as appointments_metadata
from app.models.patients import metadata as patients_metadata
from app.models.patients import patients
from app.services.action_windows import ActionWindowGuard
from app.services.appointment_lifecycle import AppointmentLifecycleManager
from app.services.appointment_service import AppointmentService
from app.services.audit_trail import AuditTrailRecorder
from app.services.check_in_window import CheckInWindowEvaluator
from app.services.schedule_rules import ScheduleRules

CLINIC_TZ = "America/Mexico_City"

# Monday 2 March 2026, 09:00 clinic time (UTC-6)
ANCHOR = datetime(2026, 3, 2, 15, 0, tzinfo=UTC)

DOCTOR_ID = UUID("7d3b5c1e-2f4a-4b8e-9c6d-1a2b3c4d5e6f")
OTHER_DOCTOR_ID = UUID("0f9e8d7c-6b5a-4c3d-8e2f-1a0b9c8d7e6f")


class FrozenClock(ClinicClock):
    """Clinic clock that only moves when told to."""

    def __init__(self, timezone_name: str, current: datetime):
        super().__init__(timezone_name, now_func=lambda: self.current)
        self.current = current

    def move_to(self, value: datetime) -> None:
        self.current = value

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Create a throwaway SQLite database per test."""
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'appointments.db'}",
        echo=False,
        poolclass=NullPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(patients_metadata.create_all)
        await conn.run_sync(appointments_metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FrozenClock:
    """Clinic clock frozen at the anchor instant."""
    return FrozenClock(CLINIC_TZ, ANCHOR)


@pytest.fixture
def schedule_rules(clock: FrozenClock) -> ScheduleRules:
    """Clinic schedule: Mon-Sat 09-15, lunch 12-13, 30 minute slots."""
    return ScheduleRules(
        clock,
        work_days=frozenset(range(6)),
        start_hour=9,
        end_hour=15,
        slot_minutes=30,
        max_advance_days=60,
        min_lead_minutes=120,
        lunch=(12, 13),
    )


@pytest.fixture
def check_in(clock: FrozenClock) -> CheckInWindowEvaluator:
    """Check-in window opening 30 minutes before and closing 15 minutes after."""
    return CheckInWindowEvaluator(clock, opens_before_minutes=30, closes_after_minutes=15)


@pytest.fixture
def action_windows(clock: FrozenClock) -> ActionWindowGuard:
    """No-show after 15 minutes, no reschedule in the last 2 hours."""
    return ActionWindowGuard(clock, no_show_after_minutes=15, reschedule_deadline_minutes=120)


@pytest.fixture
def recorder(
    session_factory: async_sessionmaker[AsyncSession],
    clock: FrozenClock,
) -> AuditTrailRecorder:
    """History recorder on its own sessions."""
    return AuditTrailRecorder(session_factory, clock, timeout_seconds=5.0)


@pytest.fixture
def manager(
    db_session: AsyncSession,
    clock: FrozenClock,
    schedule_rules: ScheduleRules,
    recorder: AuditTrailRecorder,
    check_in: CheckInWindowEvaluator,
    action_windows: ActionWindowGuard,
) -> AppointmentLifecycleManager:
    """Lifecycle manager with check-in and action window enforcement."""
    return AppointmentLifecycleManager(
        db_session,
        clock,
        schedule_rules,
        recorder,
        check_in=check_in,
        action_windows=action_windows,
    )


@pytest.fixture
def service(
    db_session: AsyncSession,
    clock: FrozenClock,
    schedule_rules: ScheduleRules,
    check_in: CheckInWindowEvaluator,
    action_windows: ActionWindowGuard,
) -> AppointmentService:
    """Appointment service without a cache."""
    return AppointmentService(
        db_session, clock, schedule_rules, check_in, action_windows=action_windows
    )


@pytest_asyncio.fixture
async def patient_id(db_session: AsyncSession) -> UUID:
    """Create a patient and return its ID."""
    new_id = uuid4()
    await db_session.execute(
        insert(patients).values(id=new_id, full_name="María López", phone="+525512345678")
    )
    await db_session.commit()
    return new_id


@pytest.fixture
def make_appointment(db_session: AsyncSession, patient_id: UUID):
    """Insert an appointment directly, bypassing booking rules."""

    async def _make(
        scheduled_at: datetime,
        status: str = "PROGRAMADA",
        doctor_id: UUID | None = DOCTOR_ID,
        notes: str | None = None,
    ) -> UUID:
        new_id = uuid4()
        await db_session.execute(
            insert(appointments).values(
                id=new_id,
                patient_id=patient_id,
                doctor_id=doctor_id,
                scheduled_at=scheduled_at.astimezone(UTC),
                reasons=["CONSULTA_GENERAL"],
                is_first_visit=False,
                notes=notes,
                status=status,
                created_at=ANCHOR,
                updated_at=ANCHOR,
            )
        )
        await db_session.commit()
        return new_id

    return _make


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
    clock: FrozenClock,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_cache_manager] = lambda: None

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def doctor_id() -> UUID:
    return DOCTOR_ID


@pytest.fixture
def other_doctor_id() -> UUID:
    return OTHER_DOCTOR_ID


@pytest.fixture
def staff_id() -> UUID:
    return UUID("11111111-2222-4333-8444-555555555555")


@pytest.fixture
def auth_headers(staff_id: UUID) -> dict:
    """Create authentication headers for testing protected endpoints."""
    token = create_access_token(data={"sub": str(staff_id)}, expires_delta=timedelta(minutes=30))
    return {"Authorization": f"Bearer {token}"}
