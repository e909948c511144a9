"""Idempotent, partially-failable sync of a paginated collection into local storage.

A run fetches every page first; a failing page aborts the run before anything
is written. Records are then processed concurrently: each one fetches its
children, optionally creates missing required children, and is upserted in
its own transaction. A record's failure is captured on the run result and
never stops the others.
"""

import asyncio
from datetime import UTC, datetime
from typing import Any

from structlog import get_logger
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
)

from xerolink.client.executor import ApiRequest, RequestExecutor
from xerolink.config.sync import SyncSettings
from xerolink.core.async_utils import Sleeper, async_timer, gather_with_concurrency, sleep
from xerolink.db.models import SyncRecord
from xerolink.db.repositories import SyncRecordRepository
from xerolink.exceptions import (
    HTTPConnectionError,
    HTTPTimeoutError,
    PerRecordSyncFailure,
    RateLimitedError,
    RemoteMutationFailedError,
    UpstreamHTTPError,
)
from xerolink.sync.idempotency import child_creation_key
from xerolink.sync.models import (
    CollectionSpec,
    RecordError,
    SyncRunResult,
    SyncState,
)
from xerolink.sync.pagination import Paginator
from xerolink.sync.projects import XERO_PROJECTS, build_task_payload
from xerolink.sync.tenant_profiles import TenantProfiles


logger = get_logger(__name__)


def is_transient(exc: BaseException) -> bool:
    """Transport failures, 5xx and 429 are worth another attempt."""
    if isinstance(exc, (HTTPTimeoutError, HTTPConnectionError, RateLimitedError)):
        return True
    return isinstance(exc, UpstreamHTTPError) and exc.upstream_status >= 500


class SyncOrchestrator:
    """Reconciles one remote collection per tenant into ``sync_records``."""

    def __init__(
        self,
        executor: RequestExecutor,
        repository: SyncRecordRepository,
        settings: SyncSettings | None = None,
        *,
        spec: CollectionSpec = XERO_PROJECTS,
        profiles: TenantProfiles | None = None,
        sleeper: Sleeper = sleep,
    ) -> None:
        self._executor = executor
        self._repository = repository
        self._settings = settings or SyncSettings()
        if spec.child_create_path and not spec.child_path:
            raise ValueError(
                f"{spec.name}: child_create_path needs child_path to detect missing children"
            )
        self._spec = spec
        self._profiles = profiles or TenantProfiles.from_settings(self._settings)
        self._sleep = sleeper

    async def sync_collection(
        self,
        tenant_id: str,
        user_id: str,
        *,
        cancel_event: asyncio.Event | None = None,
        run_id: str | None = None,
        ensure_required: bool | None = None,
    ) -> SyncRunResult:
        """Run one sync of the configured collection for ``tenant_id``.

        Args:
            tenant_id: Tenant whose collection is synced
            user_id: Owner of the grant used for the calls
            cancel_event: When set, no further pages or records are started
            run_id: Scopes idempotency keys to one logical run when given
            ensure_required: Override ``SyncSettings.ensure_required_tasks``

        Raises:
            XeroLinkError: When fetching a page fails; nothing is written then
        """
        result = SyncRunResult(tenant_id=tenant_id)
        create_required = (
            self._settings.ensure_required_tasks if ensure_required is None else ensure_required
        )
        log = logger.bind(tenant_id=tenant_id, collection=self._spec.name)

        async with async_timer() as elapsed:
            log.info("sync_state", state=SyncState.FETCHING)
            paginator = Paginator(
                lambda params: self._fetch_page(tenant_id, user_id, params),
                self._spec.pagination,
                page_size=self._settings.page_size,
                max_pages=self._settings.max_pages,
                items_field=self._spec.items_field,
                cancel_event=cancel_event,
            )
            try:
                items = await paginator.collect()
            finally:
                result.pages_fetched = paginator.pages_fetched
            result.truncated = paginator.hit_page_ceiling

            if paginator.cancelled:
                result.cancelled = True
            else:
                log.info("sync_state", state=SyncState.PROCESSING, records=len(items))
                outcomes = await gather_with_concurrency(
                    self._settings.record_concurrency,
                    *(
                        self._sync_record(
                            tenant_id, user_id, item, cancel_event, run_id, create_required
                        )
                        for item in items
                    ),
                    return_exceptions=True,
                )
                for item, outcome in zip(items, outcomes, strict=True):
                    if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                        raise outcome
                    if isinstance(outcome, Exception):
                        # Escaped _sync_record; counted like any other record failure
                        outcome = RecordError(
                            remote_id=self._item_id(item),
                            name="",
                            error=str(outcome),
                            error_type=type(outcome).__name__,
                        )
                    if outcome is None:
                        result.cancelled = True
                    elif isinstance(outcome, RecordError):
                        result.failed_count += 1
                        result.per_record_errors.append(outcome)
                    else:
                        result.succeeded_count += 1
                        result.child_item_count += outcome

            result.duration_ms = int(elapsed() * 1000)

        if result.cancelled:
            final_state = SyncState.CANCELLED
        elif result.truncated:
            final_state = SyncState.TRUNCATED
        else:
            final_state = SyncState.COMPLETED
        log.info(
            "sync_state",
            state=final_state,
            succeeded=result.succeeded_count,
            failed=result.failed_count,
            children=result.child_item_count,
            pages=result.pages_fetched,
            duration_ms=result.duration_ms,
        )
        return result

    async def _fetch_page(
        self, tenant_id: str, user_id: str, params: dict[str, Any]
    ) -> dict[str, Any]:
        response = await self._executor.call(
            tenant_id, user_id, ApiRequest("GET", self._spec.path, params=params)
        )
        body: dict[str, Any] = response.json()
        return body

    def _item_id(self, item: Any) -> str:
        if not isinstance(item, dict):
            return ""
        return str(item.get(self._spec.id_field) or "")

    async def _sync_record(
        self,
        tenant_id: str,
        user_id: str,
        item: dict[str, Any],
        cancel_event: asyncio.Event | None,
        run_id: str | None,
        create_required: bool,
    ) -> int | RecordError | None:
        """Sync one record. Returns its child count, a RecordError, or None if cancelled."""
        if cancel_event is not None and cancel_event.is_set():
            return None
        try:
            return await self._process_record(tenant_id, user_id, item, run_id, create_required)
        except PerRecordSyncFailure as failure:
            error = RecordError.from_failure(failure)
            logger.warning(
                "record_sync_failed",
                tenant_id=tenant_id,
                remote_id=error.remote_id,
                error=error.error,
                error_type=error.error_type,
            )
            return error

    async def _process_record(
        self,
        tenant_id: str,
        user_id: str,
        item: dict[str, Any],
        run_id: str | None,
        create_required: bool,
    ) -> int:
        """Fetch children, create missing ones, upsert.

        Raises:
            PerRecordSyncFailure: Wrapping whatever went wrong for this record
        """
        remote_id = self._item_id(item)
        name = ""
        try:
            name = str(item.get(self._spec.name_field) or "")
            if not remote_id:
                raise ValueError(f"missing {self._spec.id_field}")

            children = await self._fetch_children(tenant_id, user_id, remote_id)
            if create_required and self._spec.child_create_path:
                children = await self._create_missing_children(
                    tenant_id,
                    user_id,
                    remote_id,
                    children,
                    run_id,
                    self._spec.child_create_path,
                )

            transformed = self._spec.transform(item, children)
            await self._repository.upsert(
                SyncRecord(
                    tenant_id=tenant_id,
                    remote_id=remote_id,
                    name=transformed.name,
                    project_code=transformed.project_code,
                    status=transformed.status,
                    payload=item,
                    child_items=children,
                    computed_totals=transformed.computed_totals,
                    last_synced_at=datetime.now(UTC),
                )
            )
        except Exception as e:
            raise PerRecordSyncFailure(
                remote_id,
                str(e),
                name=name,
                idempotency_key=getattr(e, "idempotency_key", None),
            ) from e

        logger.debug("record_synced", tenant_id=tenant_id, remote_id=remote_id, children=len(children))
        return len(children)

    async def _fetch_children(
        self, tenant_id: str, user_id: str, remote_id: str
    ) -> list[dict[str, Any]]:
        if not self._spec.child_path:
            return []
        path = self._spec.child_path.format(id=remote_id)
        attempts = self._settings.child_fetch_attempts
        backoff = self._settings.child_retry_backoff_seconds

        def before_sleep_log(retry_state: Any) -> None:
            logger.warning(
                "child_fetch_retry",
                tenant_id=tenant_id,
                remote_id=remote_id,
                attempt=retry_state.attempt_number,
                max_attempts=attempts,
                error=str(retry_state.outcome.exception()) if retry_state.outcome else None,
            )

        try:
            async for attempt in AsyncRetrying(
                wait=wait_incrementing(start=backoff, increment=backoff),
                stop=stop_after_attempt(attempts),
                retry=retry_if_exception(is_transient),
                before_sleep=before_sleep_log,
                sleep=self._sleep,
                reraise=True,
            ):
                with attempt:
                    response = await self._executor.call(
                        tenant_id, user_id, ApiRequest("GET", path)
                    )
        except UpstreamHTTPError as e:
            if e.upstream_status == 404:
                return []
            raise

        body = response.json() or {}
        return list(body.get(self._spec.child_items_field) or [])

    async def _create_missing_children(
        self,
        tenant_id: str,
        user_id: str,
        remote_id: str,
        children: list[dict[str, Any]],
        run_id: str | None,
        create_path: str,
    ) -> list[dict[str, Any]]:
        """Create required children absent remotely, each under a deterministic key."""
        profile = self._profiles.for_tenant(tenant_id)
        existing = {
            str(child.get(self._spec.child_name_field) or "").strip().lower()
            for child in children
        }
        path = create_path.format(id=remote_id)
        created: list[dict[str, Any]] = []

        for required in profile.required_tasks:
            if required.strip().lower() in existing:
                continue
            key = child_creation_key(tenant_id, remote_id, required, run_id=run_id)
            try:
                response = await self._executor.call(
                    tenant_id,
                    user_id,
                    ApiRequest(
                        "POST",
                        path,
                        json=build_task_payload(required, profile),
                        idempotency_key=key,
                    ),
                )
            except UpstreamHTTPError as e:
                raise RemoteMutationFailedError(
                    f"Creating '{required}' on {remote_id} failed with {e.upstream_status}",
                    idempotency_key=key,
                    upstream_status=e.upstream_status,
                ) from e
            logger.info(
                "required_child_created",
                tenant_id=tenant_id,
                remote_id=remote_id,
                child=required,
                idempotency_key=key,
            )
            created.append(response.json() if response.content else {"name": required})

        return [*children, *created]

    # Queries over stored records

    async def get_stored_records(self, tenant_id: str) -> list[SyncRecord]:
        return await self._repository.list_for_tenant(tenant_id)

    async def get_record_by_code(self, tenant_id: str, project_code: str) -> SyncRecord | None:
        return await self._repository.get_by_code(tenant_id, project_code)

    async def get_last_sync_info(self, tenant_id: str) -> tuple[datetime | None, int]:
        return await self._repository.last_sync_info(tenant_id)
