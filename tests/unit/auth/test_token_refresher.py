"""Tests for TokenRefresher: validity, rotation, failure classification and collapsing."""

import asyncio

import httpx
import pytest

from support import TENANT_A, TENANT_B, FakeXero, make_credential
from xerolink.auth.refresher import TokenRefresher
from xerolink.auth.store import CredentialStore
from xerolink.config import Settings
from xerolink.exceptions import (
    CredentialAlreadyErroredError,
    NoRefreshTokenError,
    RefreshFailedError,
    TokenEndpointUnavailableError,
)


@pytest.fixture
def refresher(
    store: CredentialStore, http_client: httpx.AsyncClient, settings: Settings
) -> TokenRefresher:
    return TokenRefresher(store, http_client, settings.oauth)


@pytest.mark.asyncio
async def test_valid_credential_is_returned_unchanged(refresher, fake_xero):
    credential = make_credential(expires_in=1800)

    result = await refresher.ensure_valid("user-1", credential)

    assert result is credential
    assert fake_xero.refresh_calls == 0


@pytest.mark.asyncio
async def test_credential_within_safety_margin_is_refreshed(refresher, store, fake_xero):
    credential = make_credential(expires_in=120)
    await store.put("user-1", credential)

    result = await refresher.ensure_valid("user-1", credential)

    assert fake_xero.refresh_calls == 1
    assert fake_xero.refresh_tokens_seen == ["refresh-0"]
    assert result.access_token == "access-1"
    assert result.refresh_token == "refresh-1"
    assert result.expires_in_seconds() > 1700


@pytest.mark.asyncio
async def test_rotated_tokens_and_tenants_are_persisted(refresher, store, fake_xero):
    credential = make_credential(expires_in=-10, tenants=[])
    await store.put("user-1", credential)

    await refresher.ensure_valid("user-1", credential)

    stored = await store.get("user-1")
    assert stored is not None
    assert stored.refresh_token == "refresh-1"
    assert stored.tenant_ids == [TENANT_A, TENANT_B]
    assert stored.tenant_id == TENANT_A
    tenants = await store.get_tenants("user-1")
    assert [t.tenant_id for t in tenants] == [TENANT_A, TENANT_B]


@pytest.mark.asyncio
async def test_omitted_refresh_token_keeps_previous(refresher, store, fake_xero):
    fake_xero.rotate_refresh_token = False
    credential = make_credential(expires_in=-10)
    await store.put("user-1", credential)

    result = await refresher.ensure_valid("user-1", credential)

    assert result.access_token == "access-1"
    assert result.refresh_token == "refresh-0"


@pytest.mark.asyncio
async def test_rejected_refresh_marks_credential_errored(refresher, store, fake_xero):
    """Test that a 4xx from the token endpoint is terminal."""
    fake_xero.token_statuses = [400]
    credential = make_credential(expires_in=-10)
    await store.put("user-1", credential)

    with pytest.raises(RefreshFailedError) as exc_info:
        await refresher.ensure_valid("user-1", credential)

    assert exc_info.value.upstream_status == 400
    assert exc_info.value.reauthenticate is True
    stored = await store.get("user-1")
    assert stored is not None
    assert stored.error == "refresh_rejected:400"
    assert stored.refresh_token == "refresh-0"


@pytest.mark.asyncio
async def test_errored_credential_fails_without_network_call(refresher, store, fake_xero):
    fake_xero.token_statuses = [400]
    credential = make_credential(expires_in=-10)
    await store.put("user-1", credential)
    with pytest.raises(RefreshFailedError):
        await refresher.ensure_valid("user-1", credential)
    calls = fake_xero.refresh_calls

    stored = await store.get("user-1")
    with pytest.raises(CredentialAlreadyErroredError):
        await refresher.ensure_valid("user-1", stored)
    assert fake_xero.refresh_calls == calls


@pytest.mark.asyncio
async def test_transient_failures_leave_credential_untouched(refresher, store, fake_xero):
    """Test that exhausted 5xx retries do not mark the credential."""
    fake_xero.token_statuses = [500, 500, 500]
    credential = make_credential(expires_in=-10)
    await store.put("user-1", credential)

    with pytest.raises(TokenEndpointUnavailableError) as exc_info:
        await refresher.ensure_valid("user-1", credential)

    assert exc_info.value.retryable is True
    assert fake_xero.refresh_calls == 3
    stored = await store.get("user-1")
    assert stored == credential
    assert stored.error is None


@pytest.mark.asyncio
async def test_transient_failure_then_success(refresher, store, fake_xero):
    fake_xero.token_statuses = [503]
    credential = make_credential(expires_in=-10)
    await store.put("user-1", credential)

    result = await refresher.ensure_valid("user-1", credential)

    assert fake_xero.refresh_calls == 2
    assert result.access_token == "access-2"


@pytest.mark.asyncio
async def test_unreachable_token_endpoint(store, settings):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        refresher = TokenRefresher(store, client, settings.oauth)
        credential = make_credential(expires_in=-10)
        await store.put("user-1", credential)

        with pytest.raises(TokenEndpointUnavailableError):
            await refresher.ensure_valid("user-1", credential)

    assert (await store.get("user-1")).error is None


@pytest.mark.asyncio
async def test_missing_refresh_token(refresher, fake_xero):
    credential = make_credential(refresh_token=None, expires_in=-10)

    with pytest.raises(NoRefreshTokenError):
        await refresher.ensure_valid("user-1", credential)
    assert fake_xero.refresh_calls == 0


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_refresh(refresher, store, fake_xero):
    """Test that ten concurrent callers spend the refresh token once."""
    credential = make_credential(expires_in=-10)
    await store.put("user-1", credential)

    results = await asyncio.gather(
        *(refresher.ensure_valid("user-1", credential) for _ in range(10))
    )

    assert fake_xero.refresh_calls == 1
    assert {r.access_token for r in results} == {"access-1"}


@pytest.mark.asyncio
async def test_different_keys_refresh_independently(refresher, store, fake_xero):
    first = make_credential(expires_in=-10)
    second = make_credential(expires_in=-10)
    await store.put("user-1", first)
    await store.put("user-2", second)

    await asyncio.gather(
        refresher.ensure_valid("user-1", first),
        refresher.ensure_valid("user-2", second),
    )

    assert fake_xero.refresh_calls == 2


@pytest.mark.asyncio
async def test_force_refreshes_valid_credential(refresher, store, fake_xero):
    credential = make_credential(expires_in=1800)
    await store.put("user-1", credential)

    result = await refresher.ensure_valid("user-1", credential, force=True)

    assert fake_xero.refresh_calls == 1
    assert result.access_token == "access-1"


@pytest.mark.asyncio
async def test_stale_caller_receives_newer_stored_credential(refresher, store, fake_xero):
    """Test that a credential rotated elsewhere is picked up from the store."""
    stale = make_credential(access_token="access-0", expires_in=-10)
    newer = make_credential(access_token="access-9", refresh_token="refresh-9")
    await store.put("user-1", newer)

    result = await refresher.ensure_valid("user-1", stale)

    assert result.access_token == "access-9"
    assert fake_xero.refresh_calls == 0


@pytest.mark.asyncio
async def test_stale_caller_uses_latest_refresh_token(refresher, store, fake_xero):
    stale = make_credential(access_token="access-0", refresh_token="refresh-0", expires_in=-10)
    rotated = make_credential(access_token="access-5", refresh_token="refresh-5", expires_in=-10)
    await store.put("user-1", rotated)

    await refresher.ensure_valid("user-1", stale)

    assert fake_xero.refresh_tokens_seen == ["refresh-5"]


@pytest.mark.asyncio
async def test_connections_failure_keeps_previous_tenants(store, settings):
    fake = FakeXero()
    fake.tenants = []

    def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url).startswith(FakeXero.CONNECTIONS_URL):
            return httpx.Response(500, json={"Title": "down"})
        return fake.handle(request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        refresher = TokenRefresher(store, client, settings.oauth)
        credential = make_credential(expires_in=-10)
        await store.put("user-1", credential)

        result = await refresher.ensure_valid("user-1", credential)

    assert result.access_token == "access-1"
    assert result.tenant_ids == [TENANT_A, TENANT_B]
