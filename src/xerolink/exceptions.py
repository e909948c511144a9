"""Consolidated exception hierarchy for xerolink.

All exceptions use proper exception chaining with the `from` keyword.
Authentication-class errors set ``reauthenticate`` so callers can tell the user
to reconnect instead of retrying; transient errors set ``retryable``.
"""

from enum import StrEnum
from typing import Any

from starlette import status


REAUTHENTICATE_MESSAGE = "Your Xero connection has expired. Please re-authenticate."


class ErrorType(StrEnum):
    """Error type codes for API responses."""

    INVALID_REQUEST = "invalid_request_error"
    AUTHENTICATION = "authentication_error"
    NOT_FOUND = "not_found_error"
    RATE_LIMIT = "rate_limit_error"
    TIMEOUT = "timeout_error"
    SERVICE_UNAVAILABLE = "service_unavailable_error"
    UPSTREAM = "upstream_error"
    SYNC = "sync_error"
    INTERNAL_SERVER = "internal_server_error"


# ============================================================================
# Base Exceptions
# ============================================================================


class XeroLinkError(Exception):
    """Base exception for all xerolink errors.

    Supports HTTP status codes and structured error details.
    """

    reauthenticate: bool = False
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        error_type: ErrorType | str = ErrorType.INTERNAL_SERVER,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if isinstance(error_type, str) and not isinstance(error_type, ErrorType):
            try:
                self.error_type = ErrorType(error_type)
            except ValueError:
                self.error_type = error_type  # type: ignore[assignment]
        else:
            self.error_type = error_type
        self.status_code = status_code
        self.details = details or {}


# ============================================================================
# HTTP & Network Errors
# ============================================================================


class HTTPError(XeroLinkError):
    """Base exception for outbound HTTP failures."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int = 500,
        error_type: ErrorType = ErrorType.UPSTREAM,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message,
            error_type=error_type,
            status_code=status_code,
            details=details,
        )


class HTTPTimeoutError(HTTPError):
    """Exception raised when an outbound request times out."""

    retryable = True

    def __init__(self, message: str = "Request timed out") -> None:
        super().__init__(
            message,
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            error_type=ErrorType.TIMEOUT,
        )


class HTTPConnectionError(HTTPError):
    """Exception raised when an outbound connection fails."""

    retryable = True

    def __init__(self, message: str = "Connection failed") -> None:
        super().__init__(
            message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_type=ErrorType.SERVICE_UNAVAILABLE,
        )


class UpstreamHTTPError(HTTPError):
    """The provider answered with a non-success status that is not retried."""

    def __init__(self, message: str, *, response: Any = None, upstream_status: int) -> None:
        super().__init__(
            message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            details={"upstream_status": upstream_status},
        )
        self.response = response
        self.upstream_status = upstream_status
        self.retryable = upstream_status >= 500


class RateLimitedError(HTTPError):
    """The provider rejected a call despite local pacing (429)."""

    retryable = True

    def __init__(
        self, message: str = "Provider rate limit exceeded", *, retry_after: float | None = None
    ) -> None:
        super().__init__(
            message,
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            error_type=ErrorType.RATE_LIMIT,
            details={"retry_after": retry_after},
        )
        self.retry_after = retry_after


# ============================================================================
# API Errors (Client-facing)
# ============================================================================


class ValidationError(XeroLinkError):
    """Validation error (400)."""

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            message,
            error_type=ErrorType.INVALID_REQUEST,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


class NotFoundError(XeroLinkError):
    """Not found error (404)."""

    def __init__(self, message: str = "Resource not found") -> None:
        super().__init__(
            message,
            error_type=ErrorType.NOT_FOUND,
            status_code=status.HTTP_404_NOT_FOUND,
        )


class SyncRecordNotFoundError(NotFoundError):
    """No locally synced record exists for the requested remote id."""

    def __init__(self, tenant_id: str, remote_id: str) -> None:
        super().__init__(f"Record {remote_id} not found in local storage for tenant {tenant_id}")
        self.tenant_id = tenant_id
        self.remote_id = remote_id


# ============================================================================
# Credentials & OAuth Errors
# ============================================================================


class AuthenticationError(XeroLinkError):
    """Authentication error (401). The user has to reconnect."""

    reauthenticate = True

    def __init__(self, message: str = REAUTHENTICATE_MESSAGE) -> None:
        super().__init__(
            message,
            error_type=ErrorType.AUTHENTICATION,
            status_code=status.HTTP_401_UNAUTHORIZED,
        )


class CredentialNotFoundError(AuthenticationError):
    """No prior grant is stored for this user."""

    def __init__(self, message: str = "No Xero connection found. Please connect to Xero.") -> None:
        super().__init__(message)


class NoRefreshTokenError(AuthenticationError):
    """The stored credential cannot be refreshed."""

    pass


class RefreshFailedError(AuthenticationError):
    """The provider rejected the refresh token."""

    def __init__(
        self,
        message: str = REAUTHENTICATE_MESSAGE,
        *,
        upstream_status: int | None = None,
        response_text: str | None = None,
    ) -> None:
        super().__init__(message)
        self.upstream_status = upstream_status
        self.response_text = response_text


class CredentialAlreadyErroredError(AuthenticationError):
    """A previous refresh already marked this credential unusable."""

    pass


class RemoteUnauthorizedError(AuthenticationError):
    """The provider kept answering 401 after a forced refresh."""

    pass


class TokenEndpointUnavailableError(XeroLinkError):
    """The token endpoint could not be reached; the credential is untouched."""

    retryable = True

    def __init__(self, message: str = "Token endpoint unavailable") -> None:
        super().__init__(
            message,
            error_type=ErrorType.SERVICE_UNAVAILABLE,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )


class StoreUnavailableError(XeroLinkError):
    """The durable credential store is unreachable."""

    retryable = True

    def __init__(self, message: str = "Credential store unavailable") -> None:
        super().__init__(
            message,
            error_type=ErrorType.SERVICE_UNAVAILABLE,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )


# ============================================================================
# Sync Errors
# ============================================================================


class PerRecordSyncFailure(XeroLinkError):
    """One record failed to sync. Recorded on the run result, never raised out of it."""

    def __init__(
        self,
        remote_id: str,
        message: str,
        *,
        name: str = "",
        idempotency_key: str | None = None,
    ) -> None:
        super().__init__(
            message,
            error_type=ErrorType.SYNC,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"remote_id": remote_id, "idempotency_key": idempotency_key},
        )
        self.remote_id = remote_id
        self.name = name
        self.idempotency_key = idempotency_key


class RemoteMutationFailedError(HTTPError):
    """A create/update call returned a non-2xx status."""

    def __init__(self, message: str, *, idempotency_key: str, upstream_status: int) -> None:
        super().__init__(
            message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            details={"idempotency_key": idempotency_key, "upstream_status": upstream_status},
        )
        self.idempotency_key = idempotency_key
        self.upstream_status = upstream_status


__all__ = [
    "REAUTHENTICATE_MESSAGE",
    # Enums
    "ErrorType",
    # Base
    "XeroLinkError",
    # HTTP & Network
    "HTTPError",
    "HTTPTimeoutError",
    "HTTPConnectionError",
    "UpstreamHTTPError",
    "RateLimitedError",
    # API Errors
    "ValidationError",
    "NotFoundError",
    "SyncRecordNotFoundError",
    # Credentials & OAuth
    "AuthenticationError",
    "CredentialNotFoundError",
    "NoRefreshTokenError",
    "RefreshFailedError",
    "CredentialAlreadyErroredError",
    "RemoteUnauthorizedError",
    "TokenEndpointUnavailableError",
    "StoreUnavailableError",
    # Sync
    "PerRecordSyncFailure",
    "RemoteMutationFailedError",
]
