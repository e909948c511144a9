"""Settings configuration for xerolink."""

import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any

import structlog
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .discovery import find_toml_config_file
from .oauth import OAuthSettings
from .server import ServerSettings
from .storage import DatabaseSettings, RedisSettings
from .sync import RateLimitSettings, SyncSettings


__all__ = [
    "Settings",
    "ConfigurationError",
    "get_settings",
]

logger = structlog.get_logger(__name__)


class ConfigurationError(Exception):
    """Raised when configuration loading or validation fails."""

    pass


def _coerce_settings(value: Any, settings_class: type) -> Any:
    """Coerce value to settings class instance.

    Handles: None → default, dict → instance, passthrough existing instances.
    """
    if value is None:
        return settings_class()
    if isinstance(value, settings_class):
        return value
    if isinstance(value, dict):
        return settings_class(**value)
    return value


class Settings(BaseSettings):
    """
    Configuration settings for the xerolink coordinator.

    Settings are loaded from environment variables, .env files, and TOML configuration files.
    Nested groups can be set with a double underscore, e.g. ``SYNC__PAGE_SIZE=50``.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )

    oauth: OAuthSettings = Field(
        default_factory=OAuthSettings,
        description="OAuth client and provider endpoints",
    )

    redis: RedisSettings = Field(
        default_factory=RedisSettings,
        description="Credential store configuration",
    )

    rate_limit: RateLimitSettings = Field(
        default_factory=RateLimitSettings,
        description="Quota pacing configuration",
    )

    sync: SyncSettings = Field(
        default_factory=SyncSettings,
        description="Collection synchronization configuration",
    )

    database: DatabaseSettings = Field(
        default_factory=DatabaseSettings,
        description="Local record storage",
    )

    server: ServerSettings = Field(
        default_factory=ServerSettings,
        description="Server configuration settings",
    )

    @field_validator("oauth", mode="before")
    @classmethod
    def validate_oauth(cls, v: Any) -> Any:
        return _coerce_settings(v, OAuthSettings)

    @field_validator("redis", mode="before")
    @classmethod
    def validate_redis(cls, v: Any) -> Any:
        return _coerce_settings(v, RedisSettings)

    @field_validator("rate_limit", mode="before")
    @classmethod
    def validate_rate_limit(cls, v: Any) -> Any:
        return _coerce_settings(v, RateLimitSettings)

    @field_validator("sync", mode="before")
    @classmethod
    def validate_sync(cls, v: Any) -> Any:
        return _coerce_settings(v, SyncSettings)

    @field_validator("database", mode="before")
    @classmethod
    def validate_database(cls, v: Any) -> Any:
        return _coerce_settings(v, DatabaseSettings)

    @field_validator("server", mode="before")
    @classmethod
    def validate_server(cls, v: Any) -> Any:
        return _coerce_settings(v, ServerSettings)

    @property
    def server_url(self) -> str:
        """Get the complete server URL."""
        return f"http://{self.server.host}:{self.server.port}"

    @classmethod
    def load_toml_config(cls, toml_path: Path) -> dict[str, Any]:
        """Load configuration from a TOML file.

        Raises:
            ValueError: If the TOML file is invalid or cannot be read
        """
        try:
            with toml_path.open("rb") as f:
                return tomllib.load(f)
        except OSError as e:
            raise ValueError(f"Cannot read TOML config file {toml_path}: {e}") from e
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML syntax in {toml_path}: {e}") from e

    @classmethod
    def from_config(
        cls, config_path: Path | str | None = None, **kwargs: Any
    ) -> "Settings":
        """Create Settings instance from configuration file.

        Args:
            config_path: Path to configuration file. Can be:
                - None: Auto-discover config file or use XEROLINK_CONFIG_FILE env var
                - Path or str: Use this specific config file
            **kwargs: Additional keyword arguments to override config values
        """
        if config_path is None:
            config_path_env = os.environ.get("XEROLINK_CONFIG_FILE")
            if config_path_env:
                config_path = Path(config_path_env)

        if isinstance(config_path, str):
            config_path = Path(config_path)

        if config_path is None:
            config_path = find_toml_config_file()

        config_data: dict[str, Any] = {}
        if config_path and config_path.exists():
            if config_path.suffix.lower() != ".toml":
                raise ValueError(
                    f"Unsupported config file format: {config_path.suffix}. "
                    "Only TOML (.toml) files are supported."
                )
            config_data = cls.load_toml_config(config_path)
            logger.debug("config_file_loaded", path=str(config_path))

        merged_config = {**config_data, **kwargs}
        return cls(**merged_config)


@lru_cache
def get_settings(config_path: Path | str | None = None) -> Settings:
    """Get the process-wide settings instance.

    Raises:
        ConfigurationError: If the configuration cannot be loaded
    """
    try:
        return Settings.from_config(config_path=config_path)
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Failed to load configuration: {e}") from e
