"""Test fixtures — in-memory realtime plus isolated DB sessions.

Learn: Two kinds of tests live here:

1. Realtime tests run entirely on MemoryTransport and an in-memory alarm
   repository — no Redis, no PostgreSQL. Most of the suite is these.
2. SQL tests use the savepoint pattern: each test gets its own
   engine + connection + transaction, the session uses
   join_transaction_mode="create_savepoint" so service-layer commit()s
   become SAVEPOINTs, and the outer transaction rolls back afterwards.
   They skip when PostgreSQL isn't reachable.
"""

from contextlib import asynccontextmanager

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from sitewatch.api.deps import hub_dependency
from sitewatch.config import Settings, settings
from sitewatch.db.engine import get_db
from sitewatch.db.models import Base
from sitewatch.main import app
from sitewatch.realtime.hub import RealtimeHub
from sitewatch.realtime.memory import MemoryTransport
from sitewatch.services.alarm_cache import GlobalAlarmCache
from sitewatch.services.alarm_service import SqlAlarmRepository
from sitewatch.services.broadcaster import EventBroadcaster

from helpers import InMemoryAlarmRepository, make_alarm


TEST_DB_URL = settings.database_url


# ═══════════════════════════════════════════════════════════
# Realtime fixtures
# ═══════════════════════════════════════════════════════════


@pytest.fixture
def memory_transport():
    return MemoryTransport(record=True)


@pytest.fixture
def broadcaster(memory_transport):
    return EventBroadcaster(memory_transport)


@pytest.fixture
def alarm_cache():
    """A private cache, so tests never touch the process-wide one."""
    return GlobalAlarmCache()


@pytest.fixture
def alarm_repo():
    return InMemoryAlarmRepository([
        make_alarm(1, site_id=7),
        make_alarm(2, site_id=7, read=True),
        make_alarm(3, site_id=8),
    ])


@pytest.fixture
def test_settings():
    return Settings(
        transport="memory",
        bridge_request_timeout_seconds=0.2,
        system_event_history=3,
        user_activity_history=3,
    )


@pytest_asyncio.fixture()
async def hub(memory_transport, alarm_repo, alarm_cache, test_settings):
    """A started hub on MemoryTransport."""
    hub = RealtimeHub(memory_transport, alarm_repo, test_settings, cache=alarm_cache)
    await hub.start()
    try:
        yield hub
    finally:
        await hub.close()


@pytest_asyncio.fixture()
async def client(hub):
    """HTTP client wired to the in-memory hub. Routes needing the DB are not usable."""
    app.dependency_overrides[hub_dependency] = lambda: hub

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ═══════════════════════════════════════════════════════════
# Database fixtures
# ═══════════════════════════════════════════════════════════


@pytest_asyncio.fixture()
async def db_session():
    """Per-test session with automatic rollback via savepoints.

    Tables are created inside the outer transaction (PostgreSQL DDL is
    transactional), so the test database needs no migrations.
    """
    engine = create_async_engine(TEST_DB_URL, echo=False)
    try:
        conn = await engine.connect()
    except (OSError, OperationalError, DBAPIError) as e:
        await engine.dispose()
        pytest.skip(f"PostgreSQL not available: {e}")

    try:
        trans = await conn.begin()
        await conn.run_sync(Base.metadata.create_all)
        session = AsyncSession(
            bind=conn,
            expire_on_commit=False,
            join_transaction_mode="create_savepoint",
        )
        try:
            yield session
        finally:
            await session.close()
            await trans.rollback()
    finally:
        await conn.close()
        await engine.dispose()


@pytest_asyncio.fixture()
async def db_hub(memory_transport, db_session, alarm_cache, test_settings):
    """A started hub whose alarm store reads and writes through db_session."""
    @asynccontextmanager
    async def shared_session():
        yield db_session

    hub = RealtimeHub(
        memory_transport, SqlAlarmRepository(shared_session), test_settings, cache=alarm_cache
    )
    await hub.start()
    try:
        yield hub
    finally:
        await hub.close()


@pytest_asyncio.fixture()
async def db_client(db_hub, db_session):
    """HTTP client with the DB session overridden and the hub on PostgreSQL."""
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[hub_dependency] = lambda: db_hub

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def site(db_session):
    """A site with one bridge and one camera. Returns (site, bridge, camera)."""
    import uuid

    from sitewatch.db.models import Bridge, Camera, Site

    site = Site(site_name="Warehouse North", arm_status="armed")
    db_session.add(site)
    await db_session.flush()
    bridge = Bridge(
        bridge_name="north-gw", bridge_uuid=uuid.uuid4(), site_id=site.id, healthy=True
    )
    db_session.add(bridge)
    await db_session.flush()
    camera = Camera(
        bridge_id=bridge.id, camera_name="Dock 1", ip_address="10.0.0.21",
        is_registered=True, healthy=True,
    )
    db_session.add(camera)
    await db_session.commit()
    return site, bridge, camera
