"""Tenant selection endpoints."""

from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel, Field

from xerolink.api.dependencies import CoordinatorDep, UserIdDep


router = APIRouter(prefix="/api/tenants", tags=["tenants"])


class TenantSelection(BaseModel):
    tenant_id: str = Field(min_length=1, description="Tenant to act on by default")


@router.put("/selected")
async def select_tenant(
    selection: TenantSelection,
    coordinator: CoordinatorDep,
    user_id: UserIdDep,
) -> dict[str, Any]:
    await coordinator.select_tenant(user_id, selection.tenant_id)
    return {"success": True, "selected_tenant": selection.tenant_id}
