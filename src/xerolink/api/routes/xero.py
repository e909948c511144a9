"""Xero token, sync, verification and usage endpoints."""

import asyncio
from typing import Any

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field
from structlog import get_logger

from xerolink.api.dependencies import CoordinatorDep, UserIdDep


logger = get_logger(__name__)

router = APIRouter(prefix="/api/xero", tags=["xero"])

DISCONNECT_POLL_SECONDS = 0.5


class SyncRequest(BaseModel):
    """Optional knobs for a sync run."""

    tenant_id: str | None = Field(
        default=None,
        description="Tenant to sync; defaults to the user's selected tenant",
    )
    run_id: str | None = Field(
        default=None,
        description="Scope idempotency keys to this run",
    )
    ensure_required_tasks: bool | None = Field(
        default=None,
        description="Create missing required tasks (overrides configuration)",
    )


@router.get("/token")
async def get_token(coordinator: CoordinatorDep, user_id: UserIdDep) -> dict[str, Any]:
    """Valid access token, effective tenant and available tenants."""
    context = await coordinator.ensure_valid_token(user_id)
    return context.to_dict()


async def watch_disconnect(
    request: Request,
    cancel: asyncio.Event,
    interval: float = DISCONNECT_POLL_SECONDS,
) -> None:
    """Set ``cancel`` once the client has gone away."""
    while not cancel.is_set():
        if await request.is_disconnected():
            logger.info("sync_client_disconnected")
            cancel.set()
            return
        await asyncio.sleep(interval)


@router.post("/projects/sync")
async def sync_projects(
    request: Request,
    coordinator: CoordinatorDep,
    user_id: UserIdDep,
    body: SyncRequest | None = None,
) -> dict[str, Any]:
    """Run a sync; a client disconnect cancels records not yet started."""
    options = body or SyncRequest()
    tenant_id = options.tenant_id
    if tenant_id is None:
        tenant_id = (await coordinator.ensure_valid_token(user_id)).tenant_id

    cancel = asyncio.Event()
    watcher = asyncio.create_task(watch_disconnect(request, cancel))
    try:
        result = await coordinator.sync_projects_for_tenant(
            tenant_id,
            user_id,
            cancel_event=cancel,
            run_id=options.run_id,
            ensure_required=options.ensure_required_tasks,
        )
    finally:
        watcher.cancel()
    return result.to_dict()


@router.get("/projects/sync")
async def last_sync(coordinator: CoordinatorDep, user_id: UserIdDep) -> dict[str, Any]:
    """When the effective tenant was last synced and how many records are stored."""
    context = await coordinator.ensure_valid_token(user_id)
    return await coordinator.last_sync_info(context.tenant_id)


@router.get("/verify-sync")
async def verify_sync(
    coordinator: CoordinatorDep,
    user_id: UserIdDep,
    project_id: str = Query(alias="projectId", min_length=1),
) -> dict[str, Any]:
    context = await coordinator.ensure_valid_token(user_id)
    report = await coordinator.verify_project_sync(context.tenant_id, user_id, project_id)
    return report.to_dict()


@router.get("/verify-sync/all")
async def verify_all(
    coordinator: CoordinatorDep,
    user_id: UserIdDep,
    limit: int | None = Query(default=None, ge=1, le=500),
) -> dict[str, Any]:
    context = await coordinator.ensure_valid_token(user_id)
    report = await coordinator.verify_all_projects(context.tenant_id, user_id, limit=limit)
    return report.to_dict()


@router.get("/api-usage")
async def api_usage(coordinator: CoordinatorDep, user_id: UserIdDep) -> dict[str, Any]:
    """Current quota snapshot for the effective tenant."""
    context = await coordinator.ensure_valid_token(user_id)
    state = coordinator.api_usage(context.tenant_id)
    return {"tenant_id": context.tenant_id, **state.to_dict()}
