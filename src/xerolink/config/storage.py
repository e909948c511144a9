"""Redis and database settings."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_DB_PATH = Path("~/.xerolink").expanduser() / "xerolink.db"


class RedisSettings(BaseSettings):
    """Durable credential/tenant store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        case_sensitive=False,
        extra="ignore",
    )

    url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL",
    )

    ping_timeout_seconds: float = Field(
        default=0.5,
        gt=0,
        description="Upper bound for the health probe run before each store operation",
    )

    tenant_ttl_seconds: int = Field(
        default=7 * 24 * 3600,
        ge=1,
        description="TTL for tenant lists and tenant selections",
    )


class DatabaseSettings(BaseSettings):
    """Local SyncRecord storage."""

    model_config = SettingsConfigDict(
        env_prefix="XEROLINK_DB_",
        case_sensitive=False,
        extra="ignore",
    )

    path: Path = Field(
        default=DEFAULT_DB_PATH,
        description="SQLite file holding synced records",
    )

    echo: bool = Field(default=False, description="Log emitted SQL")
