"""Access-token refresh with per-key collapsing of concurrent refreshes."""

import asyncio
import time
from collections.abc import Callable
from typing import Any

import httpx
from structlog import get_logger
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from xerolink.auth.models import Credential, default_tenant
from xerolink.auth.store import CredentialStore
from xerolink.auth.token_exchange import (
    TokenExchangeError,
    fetch_connections,
    is_transient_error,
    refresh_access_token,
)
from xerolink.config.oauth import OAuthSettings
from xerolink.exceptions import (
    CredentialAlreadyErroredError,
    NoRefreshTokenError,
    RefreshFailedError,
    TokenEndpointUnavailableError,
)


logger = get_logger(__name__)


class TokenRefresher:
    """Keeps credentials valid.

    A credential is valid while more than ``refresh_safety_margin_seconds`` of
    its lifetime remain. Concurrent ``ensure_valid`` calls for one key share a
    single in-flight refresh, so a rotated refresh token is only spent once.
    """

    def __init__(
        self,
        store: CredentialStore,
        http_client: httpx.AsyncClient,
        settings: OAuthSettings | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._client = http_client
        self._settings = settings or OAuthSettings()
        self._clock = clock
        self._inflight: dict[str, asyncio.Task[Credential]] = {}

    def is_valid(self, credential: Credential) -> bool:
        return not credential.needs_refresh(
            self._settings.refresh_safety_margin_seconds, now=self._clock()
        )

    async def ensure_valid(
        self, key: str, credential: Credential, *, force: bool = False
    ) -> Credential:
        """Return a credential safe to use for at least the safety margin.

        Args:
            key: Store key (user id) the credential lives under
            credential: The credential currently held by the caller
            force: Refresh even if the credential still looks valid (after a 401)

        Raises:
            CredentialAlreadyErroredError: A previous refresh was rejected
            NoRefreshTokenError: The credential cannot be refreshed
            RefreshFailedError: The provider rejected the refresh token
            TokenEndpointUnavailableError: The token endpoint kept failing transiently
        """
        if credential.error:
            raise CredentialAlreadyErroredError()
        if not force and self.is_valid(credential):
            return credential
        if not credential.refresh_token:
            raise NoRefreshTokenError()

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._refresh(key, credential))
            self._inflight[key] = task
            task.add_done_callback(lambda done: self._forget(key, done))
        else:
            logger.debug("token_refresh_joined", key=key)
        return await asyncio.shield(task)

    def _forget(self, key: str, task: "asyncio.Task[Credential]") -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # Marks the exception retrieved when every waiter was cancelled
            task.exception()

    async def _refresh(self, key: str, credential: Credential) -> Credential:
        # Another process may already have rotated the tokens
        latest = await self._store.get(key)
        if latest is not None and latest.access_token != credential.access_token:
            if latest.error:
                raise CredentialAlreadyErroredError()
            if self.is_valid(latest):
                logger.debug("token_refresh_skipped_newer_stored", key=key)
                return latest
            if latest.refresh_token:
                credential = latest

        assert credential.refresh_token is not None
        logger.info(
            "token_refresh_started",
            key=key,
            expires_in=int(credential.expires_in_seconds(self._clock())),
        )

        try:
            payload = await self._request_with_retry(key, credential.refresh_token)
        except TokenExchangeError as e:
            if e.is_transient:
                raise TokenEndpointUnavailableError() from e
            errored = credential.with_error(f"refresh_rejected:{e.status_code}")
            await self._store.put(key, errored)
            logger.error(
                "token_refresh_rejected",
                key=key,
                status=e.status_code,
                error=e.response_text,
            )
            raise RefreshFailedError(
                upstream_status=e.status_code, response_text=e.response_text
            ) from e
        except httpx.TransportError as e:
            logger.error("token_endpoint_unreachable", key=key, error=str(e))
            raise TokenEndpointUnavailableError() from e

        refreshed = Credential.from_token_response(
            payload, previous=credential, now=self._clock()
        )
        # The rotated refresh token must be durable before anything else can fail
        await self._store.put(key, refreshed)

        refreshed = await self.attach_tenants(key, refreshed)
        logger.info(
            "token_refresh_success",
            key=key,
            new_expires_in=int(refreshed.expires_in_seconds(self._clock())),
            tenants=len(refreshed.tenants),
        )
        return refreshed

    async def _request_with_retry(self, key: str, refresh_token: str) -> dict[str, Any]:
        attempts = self._settings.refresh_attempts

        def before_sleep_log(retry_state: Any) -> None:
            """Log retry attempts before sleeping."""
            logger.warning(
                "token_refresh_retry",
                key=key,
                attempt=retry_state.attempt_number,
                max_attempts=attempts,
                wait_seconds=retry_state.next_action.sleep
                if retry_state.next_action
                else 0,
                error=str(retry_state.outcome.exception())
                if retry_state.outcome
                else None,
            )

        async for attempt in AsyncRetrying(
            wait=wait_exponential(
                multiplier=0.5, max=self._settings.refresh_backoff_max_seconds
            ),
            stop=stop_after_attempt(attempts),
            retry=retry_if_exception(is_transient_error),
            before_sleep=before_sleep_log,
            reraise=True,
        ):
            with attempt:
                return await refresh_access_token(self._client, refresh_token, self._settings)
        raise AssertionError("unreachable")  # pragma: no cover

    async def attach_tenants(self, key: str, credential: Credential) -> Credential:
        """Refresh the tenant list the grant covers and persist it alongside."""
        try:
            tenants = await fetch_connections(self._client, credential.access_token, self._settings)
        except (TokenExchangeError, httpx.TransportError) as e:
            logger.warning("connections_fetch_failed", key=key, error=str(e))
            return credential

        credential.tenants = tenants
        if credential.tenant_id not in credential.tenant_ids:
            fallback = default_tenant(tenants)
            credential.tenant_id = fallback.tenant_id if fallback else None
        await self._store.put(key, credential)
        await self._store.put_tenants(key, tenants)
        return credential
