"""Tests for CredentialStore."""

import pytest

from support import FakeClock, FakeRedis, make_credential
from xerolink.auth.models import Tenant
from xerolink.auth.store import (
    CredentialStore,
    credential_key,
    selected_tenant_key,
    tenants_key,
)
from xerolink.config import RedisSettings
from xerolink.exceptions import StoreUnavailableError, ValidationError


SEVEN_DAYS = 7 * 24 * 3600


@pytest.fixture
def store(fake_redis: FakeRedis, clock: FakeClock) -> CredentialStore:
    return CredentialStore(fake_redis, RedisSettings(), grace_seconds=1000, clock=clock)


@pytest.mark.asyncio
async def test_put_then_get_returns_equal_credential(store, fake_redis):
    credential = make_credential()
    await store.put("user-1", credential)

    loaded = await store.get("user-1")
    assert loaded == credential
    assert credential_key("user-1") in fake_redis.data


@pytest.mark.asyncio
async def test_default_ttl_is_remaining_validity_plus_grace(fake_redis):
    store = CredentialStore(fake_redis, RedisSettings(), grace_seconds=1000)
    await store.put("user-1", make_credential(expires_in=1800))

    ttl = fake_redis.ttls[credential_key("user-1")]
    assert 2795 <= ttl <= 2800


@pytest.mark.asyncio
async def test_expired_credential_still_gets_grace_ttl(fake_redis):
    store = CredentialStore(fake_redis, RedisSettings(), grace_seconds=1000)
    await store.put("user-1", make_credential(expires_in=-500))

    assert fake_redis.ttls[credential_key("user-1")] == 1000


@pytest.mark.asyncio
async def test_explicit_ttl_is_used(store, fake_redis):
    await store.put("user-1", make_credential(), ttl=42)
    assert fake_redis.ttls[credential_key("user-1")] == 42


@pytest.mark.asyncio
async def test_get_missing_credential_returns_none(store):
    assert await store.get("nobody") is None


@pytest.mark.asyncio
async def test_credential_operations_raise_when_redis_down(store, fake_redis):
    fake_redis.available = False

    with pytest.raises(StoreUnavailableError):
        await store.get("user-1")
    with pytest.raises(StoreUnavailableError):
        await store.put("user-1", make_credential())
    with pytest.raises(StoreUnavailableError):
        await store.get_tenants("user-1")


@pytest.mark.asyncio
async def test_store_unavailable_is_retryable(store, fake_redis):
    fake_redis.available = False
    with pytest.raises(StoreUnavailableError) as exc_info:
        await store.get("user-1")
    assert exc_info.value.retryable is True
    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_blank_user_id_is_rejected(store):
    with pytest.raises(ValidationError):
        await store.get("")
    with pytest.raises(ValidationError):
        await store.put("   ", make_credential())
    with pytest.raises(ValidationError):
        await store.set_selected_tenant("", "tenant-a")


@pytest.mark.asyncio
async def test_tenants_round_trip_with_seven_day_ttl(store, fake_redis):
    tenants = [
        Tenant(tenant_id="t1", tenant_name="One"),
        Tenant(tenant_id="t2", tenant_name="Two", tenant_type="PRACTICE"),
    ]
    await store.put_tenants("user-1", tenants)

    assert await store.get_tenants("user-1") == tenants
    assert fake_redis.ttls[tenants_key("user-1")] == SEVEN_DAYS


@pytest.mark.asyncio
async def test_selection_written_to_redis_with_ttl(store, fake_redis):
    await store.set_selected_tenant("user-1", "tenant-b")

    assert fake_redis.data[selected_tenant_key("user-1")] == "tenant-b"
    assert fake_redis.ttls[selected_tenant_key("user-1")] == SEVEN_DAYS
    assert await store.get_selected_tenant("user-1") == "tenant-b"


@pytest.mark.asyncio
async def test_selection_survives_redis_outage(store, fake_redis):
    await store.set_selected_tenant("user-1", "tenant-b")
    fake_redis.available = False

    assert await store.get_selected_tenant("user-1") == "tenant-b"


@pytest.mark.asyncio
async def test_selection_written_during_outage_is_served_from_memory(store, fake_redis):
    fake_redis.available = False
    await store.set_selected_tenant("user-1", "tenant-a")

    assert await store.get_selected_tenant("user-1") == "tenant-a"
    assert selected_tenant_key("user-1") not in fake_redis.data


@pytest.mark.asyncio
async def test_redis_value_wins_over_memory_when_reachable(store, fake_redis):
    fake_redis.available = False
    await store.set_selected_tenant("user-1", "tenant-a")
    fake_redis.available = True
    fake_redis.data[selected_tenant_key("user-1")] = "tenant-b"

    assert await store.get_selected_tenant("user-1") == "tenant-b"


@pytest.mark.asyncio
async def test_memory_selection_expires_after_ttl(store, fake_redis, clock):
    fake_redis.available = False
    await store.set_selected_tenant("user-1", "tenant-a")

    clock.now += SEVEN_DAYS + 1
    assert await store.get_selected_tenant("user-1") is None


@pytest.mark.asyncio
async def test_store_without_redis_keeps_selection_in_memory(clock):
    store = CredentialStore(None, clock=clock)
    await store.set_selected_tenant("user-1", "tenant-a")

    assert await store.get_selected_tenant("user-1") == "tenant-a"
    with pytest.raises(StoreUnavailableError):
        await store.get("user-1")


@pytest.mark.asyncio
async def test_clear_user_removes_everything(store, fake_redis):
    await store.put("user-1", make_credential())
    await store.put_tenants("user-1", [Tenant(tenant_id="t1")])
    await store.set_selected_tenant("user-1", "t1")

    await store.clear_user("user-1")

    assert fake_redis.data == {}
    assert await store.get("user-1") is None
    fake_redis.available = False
    assert await store.get_selected_tenant("user-1") is None
