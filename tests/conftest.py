from collections.abc import AsyncIterator
from pathlib import Path

import httpx
import pytest

from support import USER, FakeClock, FakeRedis, FakeXero, make_credential
from xerolink.auth.refresher import TokenRefresher
from xerolink.auth.store import CredentialStore
from xerolink.client.executor import RequestExecutor
from xerolink.config import (
    DatabaseSettings,
    OAuthSettings,
    RateLimitSettings,
    RedisSettings,
    Settings,
    SyncSettings,
)
from xerolink.db.engine import Database
from xerolink.db.repositories import SyncRecordRepository
from xerolink.ratelimit.limiter import RateLimiter


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_xero() -> FakeXero:
    return FakeXero()


@pytest.fixture
async def http_client(fake_xero: FakeXero) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(transport=fake_xero.transport()) as client:
        yield client


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        oauth=OAuthSettings(
            client_id="client-id",
            client_secret="client-secret",
            refresh_backoff_max_seconds=0,
        ),
        redis=RedisSettings(ping_timeout_seconds=0.5),
        rate_limit=RateLimitSettings(
            base_delay_seconds=0,
            minute_safety_buffer=0,
            daily_safety_buffer=0,
        ),
        sync=SyncSettings(child_retry_backoff_seconds=0),
        database=DatabaseSettings(path=tmp_path / "xerolink.db"),
    )


@pytest.fixture
def store(fake_redis: FakeRedis) -> CredentialStore:
    return CredentialStore(fake_redis)


@pytest.fixture
def limiter(settings: Settings, clock: FakeClock) -> RateLimiter:
    return RateLimiter(settings.rate_limit, clock=clock, sleeper=clock.sleep)


@pytest.fixture
def executor(
    store: CredentialStore,
    http_client: httpx.AsyncClient,
    limiter: RateLimiter,
    settings: Settings,
) -> RequestExecutor:
    refresher = TokenRefresher(store, http_client, settings.oauth)
    return RequestExecutor(store, refresher, limiter, http_client, settings.oauth)


@pytest.fixture
async def connected(store: CredentialStore) -> None:
    """Store a valid grant covering both fake tenants for ``USER``."""
    await store.put(USER, make_credential())


@pytest.fixture
async def database(settings: Settings) -> AsyncIterator[Database]:
    db = Database(settings.database.path)
    await db.init()
    yield db
    await db.close()


@pytest.fixture
def repository(database: Database) -> SyncRecordRepository:
    return SyncRecordRepository(database)
