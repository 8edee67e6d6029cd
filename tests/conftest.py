from datetime import datetime, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base, get_db
from main import app
from routers import rate_limit
from services.ledger.entitlements import EntitlementService
from services.ledger.locks import KeyedLock
from services.settings_service import SystemSettingsService
from tests.helpers import TickingClock


@pytest.fixture(autouse=True)
def reset_app_state():
    """Keep in-memory rate-limit and policy cache state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    app.state.system_settings_service = SystemSettingsService(ttl_seconds=0)
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "ledger.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield maker
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def clock():
    return TickingClock(datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def service(clock):
    return EntitlementService(locks=KeyedLock(), now=clock)


@pytest_asyncio.fixture
async def client(session_maker):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
        yield http_client

    app.dependency_overrides.pop(get_db, None)
