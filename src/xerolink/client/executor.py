"""Authorized, rate-limited requests against the provider API."""

import time
from dataclasses import dataclass, field
from typing import Any

import httpx
from structlog import get_logger

from xerolink.auth.models import Credential
from xerolink.auth.refresher import TokenRefresher
from xerolink.auth.store import CredentialStore
from xerolink.config.oauth import OAuthSettings
from xerolink.exceptions import (
    CredentialNotFoundError,
    HTTPConnectionError,
    HTTPTimeoutError,
    RateLimitedError,
    RemoteUnauthorizedError,
    UpstreamHTTPError,
    ValidationError,
)
from xerolink.ratelimit.headers import parse_retry_after
from xerolink.ratelimit.limiter import RateLimiter


logger = get_logger(__name__)

IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "PUT", "DELETE"})


@dataclass
class ApiRequest:
    """One call to make on behalf of a tenant."""

    method: str
    path: str
    params: dict[str, Any] | None = None
    json: Any = None
    headers: dict[str, str] = field(default_factory=dict)
    idempotency_key: str | None = None

    @property
    def retry_safe(self) -> bool:
        """Whether resending cannot create a duplicate remotely."""
        return self.method.upper() in IDEMPOTENT_METHODS or self.idempotency_key is not None


class RequestExecutor:
    """Sends requests with a valid token, tenant header and quota pacing."""

    def __init__(
        self,
        store: CredentialStore,
        refresher: TokenRefresher,
        limiter: RateLimiter,
        http_client: httpx.AsyncClient,
        settings: OAuthSettings | None = None,
    ) -> None:
        self._store = store
        self._refresher = refresher
        self._limiter = limiter
        self._client = http_client
        self._settings = settings or OAuthSettings()

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self._settings.api_base_url.rstrip('/')}/{path.lstrip('/')}"

    async def call(self, tenant_id: str, user_id: str, request: ApiRequest) -> httpx.Response:
        """Execute ``request`` for ``tenant_id`` using ``user_id``'s grant.

        Raises:
            CredentialNotFoundError: The user never connected
            RemoteUnauthorizedError: 401 persisted after a forced refresh
            RateLimitedError: 429 that could not be retried safely
            UpstreamHTTPError: Any other non-2xx response
            HTTPTimeoutError, HTTPConnectionError: Transport failures
        """
        credential = await self._store.get(user_id)
        if credential is None:
            raise CredentialNotFoundError()
        if not credential.covers_tenant(tenant_id):
            raise ValidationError(
                f"Tenant {tenant_id} is not covered by this connection",
                details={"tenant_id": tenant_id},
            )

        credential = await self._refresher.ensure_valid(user_id, credential)
        response = await self._send(tenant_id, credential, request)

        if response.status_code == 401:
            logger.warning(
                "remote_unauthorized_refreshing",
                tenant_id=tenant_id,
                path=request.path,
            )
            credential = await self._refresher.ensure_valid(user_id, credential, force=True)
            response = await self._send(tenant_id, credential, request)
            if response.status_code == 401:
                raise RemoteUnauthorizedError()

        if response.status_code == 429:
            retry_after = parse_retry_after(response.headers.get("retry-after"), time.time())
            if not request.retry_safe:
                raise RateLimitedError(retry_after=retry_after)
            logger.warning(
                "remote_rate_limited_retrying",
                tenant_id=tenant_id,
                path=request.path,
                retry_after=retry_after,
            )
            # The limiter absorbed Retry-After, so this waits for it
            response = await self._send(tenant_id, credential, request)
            if response.status_code == 429:
                raise RateLimitedError(
                    retry_after=parse_retry_after(
                        response.headers.get("retry-after"), time.time()
                    )
                )

        if not response.is_success:
            logger.warning(
                "upstream_error_response",
                tenant_id=tenant_id,
                method=request.method,
                path=request.path,
                status=response.status_code,
            )
            raise UpstreamHTTPError(
                f"{request.method} {request.path} returned {response.status_code}",
                response=response,
                upstream_status=response.status_code,
            )
        return response

    async def _send(
        self, tenant_id: str, credential: Credential, request: ApiRequest
    ) -> httpx.Response:
        await self._limiter.wait_if_needed(tenant_id)

        headers = {
            "Accept": "application/json",
            **request.headers,
            "Authorization": f"Bearer {credential.access_token}",
            self._settings.tenant_header: tenant_id,
        }
        if request.idempotency_key:
            headers["Idempotency-Key"] = request.idempotency_key

        try:
            response = await self._client.request(
                request.method.upper(),
                self._url(request.path),
                params=request.params,
                json=request.json,
                headers=headers,
                timeout=self._settings.request_timeout_seconds,
            )
        except httpx.TimeoutException as e:
            raise HTTPTimeoutError(f"{request.method} {request.path} timed out") from e
        except httpx.TransportError as e:
            raise HTTPConnectionError(f"{request.method} {request.path} failed: {e}") from e

        await self._limiter.update_from_headers(tenant_id, response.headers)
        logger.debug(
            "api_call_completed",
            tenant_id=tenant_id,
            method=request.method,
            path=request.path,
            status=response.status_code,
        )
        return response
