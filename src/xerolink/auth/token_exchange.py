"""Token endpoint and connections client.

Refresh requests use the standard OAuth 2.0 form-encoded body with HTTP Basic
client authentication.
"""

from typing import Any

import httpx
from structlog import get_logger

from xerolink.auth.models import Tenant
from xerolink.config.oauth import OAuthSettings


logger = get_logger(__name__)


class TokenExchangeError(Exception):
    """Raised when the token or connections endpoint answers with an error status."""

    def __init__(
        self, message: str, status_code: int | None = None, response_text: str | None = None
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_text = response_text

    @property
    def is_transient(self) -> bool:
        """5xx and 429 are worth retrying; other 4xx are a rejection."""
        if self.status_code is None:
            return True
        return self.status_code >= 500 or self.status_code == 429


def is_transient_error(exc: BaseException) -> bool:
    """Retry predicate for token endpoint calls."""
    if isinstance(exc, httpx.TransportError):
        return True
    return isinstance(exc, TokenExchangeError) and exc.is_transient


def _handle_error_response(response: httpx.Response, operation: str) -> None:
    """Handle error response and raise TokenExchangeError."""
    error_text = response.text[:500]
    logger.warning(
        f"oauth_{operation}_failed",
        status=response.status_code,
        error=error_text,
    )
    raise TokenExchangeError(
        f"{operation} failed: {error_text}",
        status_code=response.status_code,
        response_text=error_text,
    )


async def refresh_access_token(
    client: httpx.AsyncClient,
    refresh_token: str,
    settings: OAuthSettings,
) -> dict[str, Any]:
    """Exchange a refresh token for a new token set.

    Returns:
        Token response dict with access_token, refresh_token, expires_in

    Raises:
        TokenExchangeError: If the endpoint answers with a non-200 status
        httpx.TransportError: If the endpoint cannot be reached
    """
    auth = httpx.BasicAuth(settings.client_id or "", settings.client_secret or "")
    response = await client.post(
        settings.token_url,
        data={"grant_type": "refresh_token", "refresh_token": refresh_token},
        headers={"Accept": "application/json"},
        auth=auth,
        timeout=settings.request_timeout_seconds,
    )

    if response.status_code != 200:
        _handle_error_response(response, "token_refresh")

    result: dict[str, Any] = response.json()
    return result


async def fetch_connections(
    client: httpx.AsyncClient,
    access_token: str,
    settings: OAuthSettings,
) -> list[Tenant]:
    """List the tenants the access token is authorized for."""
    response = await client.get(
        settings.connections_url,
        headers={
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        },
        timeout=settings.request_timeout_seconds,
    )

    if response.status_code != 200:
        _handle_error_response(response, "connections")

    return [Tenant.from_dict(entry) for entry in response.json()]
