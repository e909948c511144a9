"""Credential, tenant list and tenant selection storage.

Redis is the durable tier. Every operation first runs a bounded-latency PING;
when it fails, tenant selections degrade to an in-process TTL cache while
credentials and tenant lists raise ``StoreUnavailableError``.
"""

import asyncio
import time
from collections.abc import Callable

import orjson
from cachetools import TTLCache
from redis.asyncio import Redis
from redis.exceptions import RedisError
from structlog import get_logger

from xerolink.auth.models import Credential, Tenant
from xerolink.config.storage import RedisSettings
from xerolink.exceptions import StoreUnavailableError, ValidationError


logger = get_logger(__name__)

DEFAULT_GRACE_SECONDS = 60 * 24 * 3600
SELECTION_CACHE_SIZE = 10_000


def credential_key(user_id: str) -> str:
    return f"xero:token:{user_id}"


def tenants_key(user_id: str) -> str:
    return f"user:{user_id}:xero:tenants"


def selected_tenant_key(user_id: str) -> str:
    return f"user:{user_id}:xero:selected_tenant"


def _require_user_id(user_id: str) -> str:
    if not user_id or not user_id.strip():
        raise ValidationError("A user id is required")
    return user_id


def _as_str(value: str | bytes) -> str:
    return value.decode() if isinstance(value, bytes) else value


class CredentialStore:
    """Two-tier key/value store for per-user OAuth state."""

    def __init__(
        self,
        redis: Redis | None,
        settings: RedisSettings | None = None,
        *,
        grace_seconds: int = DEFAULT_GRACE_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis = redis
        self._settings = settings or RedisSettings()
        self._grace_seconds = grace_seconds
        self._clock = clock
        self._selections: TTLCache[str, str] = TTLCache(
            maxsize=SELECTION_CACHE_SIZE,
            ttl=self._settings.tenant_ttl_seconds,
            timer=clock,
        )

    async def is_available(self) -> bool:
        """Probe the durable tier with a bounded PING."""
        if self._redis is None:
            return False
        try:
            await asyncio.wait_for(
                self._redis.ping(), timeout=self._settings.ping_timeout_seconds
            )
            return True
        except (RedisError, OSError, TimeoutError) as e:
            logger.warning("redis_unavailable", error=str(e) or type(e).__name__)
            return False

    async def _durable(self) -> Redis:
        if not await self.is_available():
            raise StoreUnavailableError()
        assert self._redis is not None
        return self._redis

    # Credentials

    async def get(self, key: str) -> Credential | None:
        """Load the credential stored for ``key`` (a user id)."""
        redis = await self._durable()
        try:
            raw = await redis.get(credential_key(_require_user_id(key)))
        except RedisError as e:
            raise StoreUnavailableError(f"Credential read failed: {e}") from e
        if raw is None:
            return None
        return Credential.from_json(raw)

    async def put(self, key: str, credential: Credential, ttl: int | None = None) -> None:
        """Persist ``credential`` wholesale.

        The default TTL is the remaining access-token validity plus the grace
        period, so abandoned grants are reclaimed by Redis.
        """
        _require_user_id(key)
        if ttl is None:
            remaining = max(credential.expires_in_seconds(self._clock()), 0)
            ttl = int(remaining) + self._grace_seconds
        redis = await self._durable()
        try:
            await redis.set(credential_key(key), credential.to_json(), ex=max(ttl, 1))
        except RedisError as e:
            raise StoreUnavailableError(f"Credential write failed: {e}") from e
        logger.debug("credential_stored", user_id=key, ttl=ttl)

    # Tenant lists

    async def get_tenants(self, user_id: str) -> list[Tenant] | None:
        redis = await self._durable()
        try:
            raw = await redis.get(tenants_key(_require_user_id(user_id)))
        except RedisError as e:
            raise StoreUnavailableError(f"Tenant list read failed: {e}") from e
        if raw is None:
            return None
        return [Tenant.from_dict(entry) for entry in orjson.loads(raw)]

    async def put_tenants(self, user_id: str, tenants: list[Tenant]) -> None:
        _require_user_id(user_id)
        redis = await self._durable()
        payload = orjson.dumps([tenant.to_dict() for tenant in tenants])
        try:
            await redis.set(tenants_key(user_id), payload, ex=self._settings.tenant_ttl_seconds)
        except RedisError as e:
            raise StoreUnavailableError(f"Tenant list write failed: {e}") from e

    # Tenant selection

    async def get_selected_tenant(self, user_id: str) -> str | None:
        """Read the selection from Redis when reachable, else from memory."""
        _require_user_id(user_id)
        if await self.is_available():
            assert self._redis is not None
            try:
                raw = await self._redis.get(selected_tenant_key(user_id))
            except RedisError as e:
                logger.warning("tenant_selection_read_failed", user_id=user_id, error=str(e))
            else:
                if raw is not None:
                    return _as_str(raw)
        return self._selections.get(user_id)

    async def set_selected_tenant(self, user_id: str, tenant_id: str) -> None:
        """Write the selection to memory always and to Redis when reachable."""
        _require_user_id(user_id)
        if not tenant_id:
            raise ValidationError("A tenant id is required")
        self._selections[user_id] = tenant_id
        if not await self.is_available():
            logger.info("tenant_selection_memory_only", user_id=user_id)
            return
        assert self._redis is not None
        try:
            await self._redis.set(
                selected_tenant_key(user_id),
                tenant_id,
                ex=self._settings.tenant_ttl_seconds,
            )
        except RedisError as e:
            logger.warning("tenant_selection_write_failed", user_id=user_id, error=str(e))

    async def clear_user(self, user_id: str) -> None:
        """Forget everything stored for ``user_id``."""
        _require_user_id(user_id)
        self._selections.pop(user_id, None)
        redis = await self._durable()
        try:
            await redis.delete(
                credential_key(user_id), tenants_key(user_id), selected_tenant_key(user_id)
            )
        except RedisError as e:
            raise StoreUnavailableError(f"Clearing user state failed: {e}") from e
        logger.info("user_state_cleared", user_id=user_id)
