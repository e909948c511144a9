"""Configuration module for xerolink."""

from .oauth import OAuthSettings
from .server import ServerSettings
from .settings import ConfigurationError, Settings, get_settings
from .storage import DatabaseSettings, RedisSettings
from .sync import RateLimitSettings, SyncSettings, TenantProfile


__all__ = [
    "Settings",
    "get_settings",
    "ConfigurationError",
    "OAuthSettings",
    "RedisSettings",
    "RateLimitSettings",
    "SyncSettings",
    "TenantProfile",
    "DatabaseSettings",
    "ServerSettings",
]
