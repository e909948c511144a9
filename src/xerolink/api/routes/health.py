"""Health check endpoint."""

from typing import Any

from fastapi import APIRouter

from xerolink import __version__
from xerolink.api.dependencies import CoordinatorDep


router = APIRouter(tags=["health"])


@router.get("/health")
async def health(coordinator: CoordinatorDep) -> dict[str, Any]:
    """Liveness plus whether the durable store answers."""
    store_available = await coordinator.store.is_available()
    return {
        "status": "ok" if store_available else "degraded",
        "version": __version__,
        "store": "available" if store_available else "unavailable",
    }
