import os
import sys
from datetime import datetime, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Must be set before agenda modules build the engine and settings
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["REDIS_URL"] = "memory://"
os.environ["LOG_JSON"] = "false"

# Add the project root to Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from agenda.api.deps.business import get_broker, get_locks
from agenda.core.database import create_tables, get_db
from agenda.core.locks import LocalCalendarLockProvider
from agenda.main import app
from agenda.services.calendar_store import CalendarStore
from agenda.services.events import InMemoryEventBroker
from agenda.services.scheduling import AvailabilityEngine
from tests.fixtures.scheduling_fixtures import FixedClock


@pytest.fixture
async def db_engine(tmp_path):
    """Per-test SQLite file so concurrent sessions share committed data."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'agenda.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    """Create a fresh database session for each test."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FixedClock:
    # Sunday evening before the 2030-01-07 test week
    return FixedClock(datetime(2030, 1, 6, 18, 0, tzinfo=timezone.utc))


@pytest.fixture
def locks() -> LocalCalendarLockProvider:
    return LocalCalendarLockProvider(timeout=2.0)


@pytest.fixture
def broker() -> InMemoryEventBroker:
    return InMemoryEventBroker()


@pytest.fixture
def store(db, locks, broker, clock) -> CalendarStore:
    return CalendarStore(db, lock_provider=locks, broker=broker, clock=clock)


@pytest.fixture
def availability(db, clock) -> AvailabilityEngine:
    return AvailabilityEngine(db, clock)


@pytest.fixture(autouse=True)
def override_dependencies(db: AsyncSession, locks, broker):
    """Point the app at the test database, locks and broker."""

    async def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_locks] = lambda: locks
    app.dependency_overrides[get_broker] = lambda: broker
    yield
    app.dependency_overrides.clear()


# Import all scheduling fixtures to make them available
pytest_plugins = ["tests.fixtures.scheduling_fixtures"]
