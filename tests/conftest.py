import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="afya-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP_DIR}/app.db"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["ENV"] = "test"
os.environ["REMINDER_POLLER_ENABLED"] = "false"
os.environ["AUTO_CONFIRM_BOOKINGS"] = "false"
os.environ["SMTP_HOST"] = ""
os.environ["TWILIO_ACCOUNT_SID"] = ""

from datetime import date, datetime  # noqa: E402

import fakeredis  # noqa: E402
import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

import app.models  # noqa: E402,F401 - register tables
from app.core.db import get_session  # noqa: E402
from app.core.security import create_access_token  # noqa: E402
from app.main import app as fastapi_app  # noqa: E402
from app.models.appointment import AppointmentCreate, ReminderPreferences  # noqa: E402
from app.models.availability import TimeRange  # noqa: E402
from app.services import availability_service  # noqa: E402
from app.services.notification_service import NotificationDispatcher  # noqa: E402
from app.services.rate_limiter import FixedWindowRateLimiter  # noqa: E402

DOCTOR = "doc-1"
HOSPITAL = "hosp-1"
PATIENT = "pat-1"
MONDAY = date(2030, 3, 11)
TUESDAY = date(2030, 3, 12)
BEFORE_MONDAY = datetime(2030, 3, 1, 8, 0)


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
async def monday_schedule(session):
    """Doctor works Mondays 09:00-12:00 in 30 minute slots."""
    availability = await availability_service.save_weekly_template(
        session, DOCTOR, HOSPITAL, {1: TimeRange(start_time="09:00", end_time="12:00")}
    )
    await session.commit()
    return availability


def booking(slot_time: str = "10:00", slot_date: date = MONDAY, patient_id: str = PATIENT, **kwargs) -> AppointmentCreate:
    kwargs.setdefault("contact_email", "patient@example.com")
    kwargs.setdefault("contact_phone", "+254712345678")
    kwargs.setdefault("reminder_preferences", ReminderPreferences(email=True, intervals=[24, 1]))
    return AppointmentCreate(
        patient_id=patient_id,
        doctor_id=DOCTOR,
        hospital_id=HOSPITAL,
        slot_date=slot_date,
        slot_time=slot_time,
        **kwargs,
    )


def auth_header(subject: str, role: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(subject, role)}"}


@pytest.fixture
def redis_server():
    return fakeredis.FakeServer()


@pytest.fixture
async def redis_client(redis_server):
    client = fakeredis.FakeAsyncRedis(server=redis_server, decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def rate_limiter(redis_client):
    return FixedWindowRateLimiter(redis_client, limit=10, window_seconds=3600)


@pytest.fixture
async def client(session_maker, rate_limiter):
    async def _get_session():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    fastapi_app.dependency_overrides[get_session] = _get_session
    fastapi_app.state.dispatcher = NotificationDispatcher(rate_limiter=rate_limiter)
    async with AsyncClient(transport=ASGITransport(app=fastapi_app), base_url="http://test") as c:
        yield c
    fastapi_app.dependency_overrides.clear()
