"""Shared test fixtures for Bookwell API tests.

Each test gets its own SQLite file (aiosqlite) so separate sessions see each
other's commits the way they would against PostgreSQL. Collaborators are
replaced with in-memory fakes and a clock the test controls.
"""

import os

os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("SWEEPER_ENABLED", "false")

from datetime import datetime, timedelta
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from bookwell.core.database import Base, get_db
from bookwell.main import app
from bookwell.models.appointment import Appointment  # noqa: F401
from bookwell.models.participant import Participant, ParticipantKind
from bookwell.services.auth import create_access_token
from bookwell.services.collaborators import Collaborators, ProviderLocks, SideEffectRunner

# Monday
MONDAY = datetime(2030, 1, 7)
WEEKDAY_HOURS = {"is_available": True, "windows": [{"start_time": "09:00", "end_time": "17:00"}]}
WEEKDAYS = {str(day): WEEKDAY_HOURS for day in range(1, 6)}


class FakeClock:
    def __init__(self, now: datetime):
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current

    def set(self, value: datetime) -> None:
        self.current = value


class FakeNotifier:
    def __init__(self):
        self.sent = []
        self.fail = False

    async def notify(self, event, appointment, context):
        if self.fail:
            raise RuntimeError("notifier down")
        self.sent.append((event, appointment, context))

    def events(self):
        return [event for event, _, _ in self.sent]


class FakePayments:
    def __init__(self):
        self.refunds = []
        self.cancellations = []
        self.fail = False

    async def request_refund(self, transaction_id):
        if self.fail:
            raise RuntimeError("gateway down")
        self.refunds.append(transaction_id)

    async def cancel_payment(self, transaction_id):
        if self.fail:
            raise RuntimeError("gateway down")
        self.cancellations.append(transaction_id)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    """Direct DB session for test setup/assertions."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    return FakeClock(MONDAY.replace(hour=8))


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def payments():
    return FakePayments()


@pytest.fixture
def collab(notifier, payments, clock):
    return Collaborators(
        notifier=notifier,
        payments=payments,
        effects=SideEffectRunner(timeout_seconds=1.0),
        locks=ProviderLocks(),
        clock=clock,
    )


@pytest_asyncio.fixture
async def client(session_factory, collab):
    """Async HTTP test client wired to the per-test database and fakes."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.collaborators = collab
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    await collab.effects.drain()
    app.dependency_overrides.clear()


async def create_participant(db, kind, **fields):
    participant = Participant(kind=kind, **fields)
    db.add(participant)
    await db.commit()
    await db.refresh(participant)
    return participant


@pytest_asyncio.fixture
async def provider(db):
    return await create_participant(
        db,
        ParticipantKind.PROVIDER,
        display_name="Dr. Ada",
        phone="+15550000001",
        timezone_offset_minutes=0,
        weekly_availability=WEEKDAYS,
        session_rate=5000,
    )


@pytest_asyncio.fixture
async def consumer(db):
    return await create_participant(
        db,
        ParticipantKind.CONSUMER,
        display_name="Grace",
        phone="+15550000002",
        timezone_offset_minutes=0,
    )


def auth_headers(participant_id, role=None):
    claims = {"sub": str(participant_id)}
    if role:
        claims["role"] = role
    return {"Authorization": f"Bearer {create_access_token(claims)}"}
