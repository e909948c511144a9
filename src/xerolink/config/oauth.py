"""OAuth client and provider endpoint settings."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class OAuthSettings(BaseSettings):
    """Xero OAuth2 client configuration."""

    model_config = SettingsConfigDict(
        env_prefix="XERO_",
        case_sensitive=False,
        extra="ignore",
    )

    client_id: str | None = Field(
        default=None,
        description="OAuth client id registered with the provider",
    )

    client_secret: str | None = Field(
        default=None,
        description="OAuth client secret used for HTTP Basic auth on refresh",
    )

    token_url: str = Field(
        default="https://identity.xero.com/connect/token",
        description="Token endpoint for refresh_token grants",
    )

    connections_url: str = Field(
        default="https://api.xero.com/connections",
        description="Endpoint listing the tenants a grant covers",
    )

    api_base_url: str = Field(
        default="https://api.xero.com",
        description="Base URL for resource calls",
    )

    tenant_header: str = Field(
        default="Xero-Tenant-Id",
        description="Request header carrying the tenant id",
    )

    refresh_safety_margin_seconds: int = Field(
        default=300,
        ge=0,
        description="Refresh when fewer than this many seconds of validity remain",
    )

    refresh_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts against the token endpoint on transient failures",
    )

    refresh_backoff_max_seconds: float = Field(
        default=10.0,
        ge=0.0,
        description="Upper bound for the exponential backoff between refresh attempts",
    )

    credential_grace_seconds: int = Field(
        default=60 * 24 * 3600,
        ge=0,
        description="Extra store TTL past access-token expiry (refresh-token lifetime)",
    )

    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for outbound HTTP requests",
    )
