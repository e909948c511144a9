"""Coordinator facade wiring the store, refresher, limiter, executor and sync.

All long-lived resources (Redis connection, HTTP client, database engine) are
owned here and released by ``close()``.
"""

import asyncio
import time
from types import TracebackType
from typing import Any

import httpx
import redis.asyncio as aioredis
from structlog import get_logger

from xerolink.auth.models import Credential, TokenContext, default_tenant
from xerolink.auth.refresher import TokenRefresher
from xerolink.auth.store import CredentialStore
from xerolink.client.executor import RequestExecutor
from xerolink.config.settings import Settings
from xerolink.db.engine import Database
from xerolink.db.repositories import SyncRecordRepository
from xerolink.exceptions import CredentialNotFoundError, ValidationError
from xerolink.ratelimit.limiter import RateLimiter, RateLimitState
from xerolink.sync.models import SyncRunResult
from xerolink.sync.orchestrator import SyncOrchestrator
from xerolink.sync.tenant_profiles import TenantProfiles
from xerolink.verify.drift import DriftVerifier, VerificationReport, summarize


logger = get_logger(__name__)


class XeroCoordinator:
    """Entry point for hosts: HTTP API, CLI, or embedding applications."""

    def __init__(
        self,
        settings: Settings,
        *,
        redis: aioredis.Redis | None = None,
        http_client: httpx.AsyncClient | None = None,
        database: Database | None = None,
        limiter: RateLimiter | None = None,
    ) -> None:
        self.settings = settings
        self._owns_redis = redis is None
        self._owns_http = http_client is None
        self._owns_db = database is None

        self.redis = redis
        self.http_client = http_client
        self.database = database or Database(settings.database.path, echo=settings.database.echo)
        self.limiter = limiter or RateLimiter(settings.rate_limit)
        self._initialized = False

    async def init(self) -> None:
        if self._initialized:
            return
        if self.redis is None:
            self.redis = aioredis.from_url(
                self.settings.redis.url,
                decode_responses=True,
                socket_connect_timeout=5,
            )
        if self.http_client is None:
            self.http_client = httpx.AsyncClient(
                timeout=self.settings.oauth.request_timeout_seconds
            )
        await self.database.init()

        self.store = CredentialStore(
            self.redis,
            self.settings.redis,
            grace_seconds=self.settings.oauth.credential_grace_seconds,
        )
        self.refresher = TokenRefresher(self.store, self.http_client, self.settings.oauth)
        self.executor = RequestExecutor(
            self.store, self.refresher, self.limiter, self.http_client, self.settings.oauth
        )
        self.repository = SyncRecordRepository(self.database)
        self.orchestrator = SyncOrchestrator(
            self.executor,
            self.repository,
            self.settings.sync,
            profiles=TenantProfiles.from_settings(self.settings.sync),
        )
        self.verifier = DriftVerifier(
            self.executor,
            self.repository,
            tolerance=self.settings.sync.numeric_tolerance,
        )
        self._initialized = True
        logger.info("coordinator_initialized")

    async def close(self) -> None:
        if self._owns_http and self.http_client is not None:
            await self.http_client.aclose()
            self.http_client = None
        if self._owns_redis and self.redis is not None:
            await self.redis.aclose()
            self.redis = None
        if self._owns_db:
            await self.database.close()
        self._initialized = False
        logger.info("coordinator_closed")

    async def __aenter__(self) -> "XeroCoordinator":
        await self.init()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    # Tokens and tenants

    async def store_grant(self, user_id: str, token_payload: dict[str, Any]) -> Credential:
        """Persist the token set from an initial authorization-code exchange.

        The tenant list is fetched right away so the grant is usable at once.
        """
        if "access_token" not in token_payload:
            raise ValidationError("Token payload has no access_token")
        credential = Credential.from_token_response(token_payload, now=time.time())
        await self.store.put(user_id, credential)
        credential = await self.refresher.attach_tenants(user_id, credential)
        logger.info("grant_stored", user_id=user_id, tenants=len(credential.tenants))
        return credential

    async def ensure_valid_token(self, user_id: str) -> TokenContext:
        """Valid access token plus the tenant to act on.

        The tenant is the user's selection when it is still part of the grant,
        otherwise the first ORGANISATION tenant.
        """
        credential = await self.store.get(user_id)
        if credential is None:
            raise CredentialNotFoundError()
        credential = await self.refresher.ensure_valid(user_id, credential)

        tenants = credential.tenants or await self.store.get_tenants(user_id) or []
        selected = await self.store.get_selected_tenant(user_id)
        tenant_ids = [tenant.tenant_id for tenant in tenants]
        if selected and (not tenant_ids or selected in tenant_ids):
            tenant_id = selected
        elif credential.tenant_id and credential.tenant_id in tenant_ids:
            tenant_id = credential.tenant_id
        else:
            fallback = default_tenant(tenants)
            if fallback is None:
                raise ValidationError("This connection does not cover any organisation")
            tenant_id = fallback.tenant_id

        return TokenContext(
            access_token=credential.access_token,
            tenant_id=tenant_id,
            available_tenants=tenants,
        )

    async def select_tenant(self, user_id: str, tenant_id: str) -> None:
        credential = await self.store.get(user_id)
        if credential is not None and not credential.covers_tenant(tenant_id):
            raise ValidationError(
                f"Tenant {tenant_id} is not covered by this connection",
                details={"tenant_id": tenant_id},
            )
        await self.store.set_selected_tenant(user_id, tenant_id)
        logger.info("tenant_selected", user_id=user_id, tenant_id=tenant_id)

    # Sync and verification

    async def sync_projects_for_tenant(
        self,
        tenant_id: str,
        user_id: str,
        *,
        cancel_event: asyncio.Event | None = None,
        run_id: str | None = None,
        ensure_required: bool | None = None,
    ) -> SyncRunResult:
        return await self.orchestrator.sync_collection(
            tenant_id,
            user_id,
            cancel_event=cancel_event,
            run_id=run_id,
            ensure_required=ensure_required,
        )

    async def verify_project_sync(
        self, tenant_id: str, user_id: str, remote_id: str
    ) -> VerificationReport:
        mismatches = await self.verifier.verify(tenant_id, user_id, remote_id)
        return summarize(mismatches, records_checked=1)

    async def verify_all_projects(
        self, tenant_id: str, user_id: str, limit: int | None = None
    ) -> VerificationReport:
        return await self.verifier.verify_all_report(
            tenant_id,
            user_id,
            limit=limit or self.settings.sync.verify_default_limit,
        )

    async def last_sync_info(self, tenant_id: str) -> dict[str, Any]:
        last_synced_at, count = await self.orchestrator.get_last_sync_info(tenant_id)
        return {
            "tenant_id": tenant_id,
            "last_synced_at": last_synced_at.isoformat() if last_synced_at else None,
            "record_count": count,
        }

    def api_usage(self, tenant_id: str) -> RateLimitState:
        return self.limiter.snapshot(tenant_id)
