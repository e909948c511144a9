"""Rate limiting, synchronization and tenant profile settings."""

from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_REQUIRED_TASKS = ["Manhour", "Overtime", "Supply Labour", "Transport"]


class RateLimitSettings(BaseSettings):
    """Quota pacing configuration."""

    model_config = SettingsConfigDict(
        env_prefix="XEROLINK_RATE_LIMIT_",
        case_sensitive=False,
        extra="ignore",
    )

    header_schema: Literal["xero", "pipedrive"] = Field(
        default="xero",
        description="Which provider's rate-limit headers to parse",
    )

    minute_limit: int = Field(default=60, ge=1)
    daily_limit: int = Field(default=5000, ge=1)
    minute_window_seconds: float = Field(default=60.0, gt=0)

    minute_safety_buffer: int = Field(
        default=5,
        ge=0,
        description="Minute-window units held back from pacing",
    )
    daily_safety_buffer: int = Field(
        default=50,
        ge=0,
        description="Daily-window units held back from pacing",
    )

    minute_low_water_mark: int = Field(
        default=10,
        ge=0,
        description="Below this many remaining calls the minute window is spread out",
    )
    daily_low_water_mark: int = Field(default=250, ge=0)

    base_delay_seconds: float = Field(
        default=0.05,
        ge=0,
        description="Minimum spacing between calls for one tenant",
    )


class TenantProfile(BaseModel):
    """Per-tenant defaults used when creating required child items."""

    currency: str = "USD"
    charge_type: str = "FIXED"
    rate_value: float = 1.0
    estimate_minutes: int = 1
    required_tasks: list[str] = Field(default_factory=lambda: list(DEFAULT_REQUIRED_TASKS))


class SyncSettings(BaseSettings):
    """Collection synchronization configuration."""

    model_config = SettingsConfigDict(
        env_prefix="XEROLINK_SYNC_",
        case_sensitive=False,
        extra="ignore",
    )

    page_size: int = Field(default=100, ge=1, le=1000)
    max_pages: int = Field(
        default=50,
        ge=1,
        description="Hard ceiling on pages fetched per run",
    )
    record_concurrency: int = Field(default=4, ge=1, le=32)

    child_fetch_attempts: int = Field(default=3, ge=1, le=10)
    child_retry_backoff_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Backoff multiplier between child fetch attempts",
    )

    ensure_required_tasks: bool = Field(
        default=False,
        description="Create missing required tasks on each synced project",
    )

    numeric_tolerance: float = Field(default=0.01, ge=0)
    verify_default_limit: int = Field(default=10, ge=1)

    default_profile: TenantProfile = Field(default_factory=TenantProfile)
    tenant_profiles: dict[str, TenantProfile] = Field(
        default_factory=dict,
        description="Profile overrides keyed by tenant id",
    )
