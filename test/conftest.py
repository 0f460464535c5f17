"""
Pytest configuration and fixtures for GeoTrack tests
"""

import os
import sys
from collections.abc import AsyncGenerator
from types import SimpleNamespace

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))  # noqa: PTH100, PTH118, PTH119, PTH120

import geotrack.database as database_module  # noqa: E402
from geotrack.database import Base  # noqa: E402
from geotrack.models import User  # noqa: E402
from geotrack.services.audit_service import AuditLogger, get_audit_logger  # noqa: E402
from geotrack.services.consent_service import ConsentStore, get_consent_store  # noqa: E402
from geotrack.services.current_location_cache import CurrentLocationCache  # noqa: E402
from geotrack.services.location_ingestor import LocationIngestor, get_location_ingestor  # noqa: E402
from geotrack.services.location_query_service import (  # noqa: E402
    LocationQueryService,
    get_location_query_service,
)
from geotrack.services.realtime_notifier import RealtimeNotifier, get_realtime_notifier  # noqa: E402
from main import app  # noqa: E402
from utils.mock_utils import PUNE, FakeClock, StubGeocoder, create_test_user  # noqa: E402

# ============== Database ==============


@pytest.fixture(scope="function")
async def test_engine(tmp_path):
    """
    Fresh SQLite database per test.

    A file is used rather than :memory: so that the audit logger's own
    sessions get their own connections, as they would in production.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'geotrack_test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine, monkeypatch):
    """Session maker bound to the test engine, also patched into geotrack.database."""
    factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    monkeypatch.setattr(database_module, "AsyncSessionLocal", factory)
    return factory


@pytest.fixture(scope="function")
async def test_db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ============== Users ==============


@pytest.fixture
async def employee(test_db: AsyncSession) -> User:
    """A subject on the field team"""
    return await create_test_user(test_db, "alice", team="field")


@pytest.fixture
async def other_employee(test_db: AsyncSession) -> User:
    """A subject on the warehouse team"""
    return await create_test_user(test_db, "bob", team="warehouse")


@pytest.fixture
async def manager(test_db: AsyncSession) -> User:
    """An operator"""
    return await create_test_user(test_db, "maria", role="manager", team="field")


@pytest.fixture
async def admin(test_db: AsyncSession) -> User:
    """An operator who may also read the audit log"""
    return await create_test_user(test_db, "adam", role="admin", team=None)


# ============== Services ==============


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def consent_store(clock) -> ConsentStore:
    return ConsentStore(clock=clock)


@pytest.fixture
def location_cache(clock) -> CurrentLocationCache:
    return CurrentLocationCache(clock=clock)


@pytest.fixture
def notifier() -> RealtimeNotifier:
    return RealtimeNotifier(max_queue_size=10)


@pytest.fixture
def audit_logger(session_factory) -> AuditLogger:
    return AuditLogger(session_factory=session_factory, max_pending=100)


@pytest.fixture
def geocoder() -> StubGeocoder:
    return StubGeocoder(address=PUNE)


@pytest.fixture
def ingestor(consent_store, location_cache, notifier, geocoder, clock) -> LocationIngestor:
    return LocationIngestor(
        consent_store=consent_store,
        cache=location_cache,
        notifier=notifier,
        geocoder=geocoder,
        clock=clock,
    )


@pytest.fixture
def query_service(consent_store, location_cache, audit_logger, clock) -> LocationQueryService:
    return LocationQueryService(
        consent_store=consent_store,
        cache=location_cache,
        audit=audit_logger,
        clock=clock,
    )


# ============== HTTP ==============


@pytest.fixture
def app_services(session_factory) -> SimpleNamespace:
    """Fresh real-clock service instances wired the way the app wires its singletons."""
    store = ConsentStore()
    cache = CurrentLocationCache()
    realtime = RealtimeNotifier(max_queue_size=10)
    audit = AuditLogger(session_factory=session_factory, max_pending=100)
    ingest = LocationIngestor(
        consent_store=store,
        cache=cache,
        notifier=realtime,
        geocoder=StubGeocoder(address=PUNE),
    )
    queries = LocationQueryService(consent_store=store, cache=cache, audit=audit)
    return SimpleNamespace(
        consent_store=store,
        cache=cache,
        notifier=realtime,
        audit=audit,
        ingestor=ingest,
        queries=queries,
    )


@pytest.fixture
async def client(app_services) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app; singletons are swapped out so tests never share state."""
    app.dependency_overrides[get_consent_store] = lambda: app_services.consent_store
    app.dependency_overrides[get_realtime_notifier] = lambda: app_services.notifier
    app.dependency_overrides[get_audit_logger] = lambda: app_services.audit
    app.dependency_overrides[get_location_ingestor] = lambda: app_services.ingestor
    app.dependency_overrides[get_location_query_service] = lambda: app_services.queries

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
