"""Credential and tenant models.

Credentials are persisted as JSON (orjson) under one key per user and are
replaced wholesale whenever they change.
"""

import time
from dataclasses import dataclass, field, replace
from typing import Any

import orjson


ORGANISATION = "ORGANISATION"


@dataclass
class Tenant:
    """One organisation a grant gives access to (from ``GET /connections``)."""

    tenant_id: str
    tenant_name: str = ""
    tenant_type: str = ORGANISATION
    created_date_utc: str | None = None
    updated_date_utc: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to the provider's camelCase shape."""
        return {
            "tenantId": self.tenant_id,
            "tenantName": self.tenant_name,
            "tenantType": self.tenant_type,
            "createdDateUtc": self.created_date_utc,
            "updatedDateUtc": self.updated_date_utc,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Tenant":
        """Create from a connections entry or a stored dict."""
        return cls(
            tenant_id=data["tenantId"],
            tenant_name=data.get("tenantName") or "",
            tenant_type=data.get("tenantType") or ORGANISATION,
            created_date_utc=data.get("createdDateUtc"),
            updated_date_utc=data.get("updatedDateUtc"),
        )


def default_tenant(tenants: list[Tenant]) -> Tenant | None:
    """First ORGANISATION tenant, else the first tenant, else None."""
    for tenant in tenants:
        if tenant.tenant_type == ORGANISATION:
            return tenant
    return tenants[0] if tenants else None


@dataclass
class Credential:
    """OAuth credentials for one user's grant."""

    access_token: str
    refresh_token: str | None
    expires_at: float  # Unix timestamp in seconds
    scope: str = ""
    tenant_id: str | None = None
    tenants: list[Tenant] = field(default_factory=list)
    error: str | None = None

    def expires_in_seconds(self, now: float | None = None) -> float:
        """Seconds until the access token expires (negative if expired)."""
        current = time.time() if now is None else now
        return self.expires_at - current

    def is_expired(self, now: float | None = None) -> bool:
        return self.expires_in_seconds(now) <= 0

    def needs_refresh(self, margin_seconds: float, now: float | None = None) -> bool:
        """Check if the token is within ``margin_seconds`` of expiry."""
        return self.expires_in_seconds(now) <= margin_seconds

    @property
    def tenant_ids(self) -> list[str]:
        return [tenant.tenant_id for tenant in self.tenants]

    def covers_tenant(self, tenant_id: str) -> bool:
        """Whether the grant includes ``tenant_id``. Unknown tenant lists allow any."""
        return not self.tenants or tenant_id in self.tenant_ids

    def with_error(self, error: str) -> "Credential":
        return replace(self, error=error)

    def to_dict(self) -> dict[str, Any]:
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "expiresAt": self.expires_at,
            "scope": self.scope,
            "tenantId": self.tenant_id,
            "tenants": [tenant.to_dict() for tenant in self.tenants],
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Credential":
        return cls(
            access_token=data["accessToken"],
            refresh_token=data.get("refreshToken"),
            expires_at=float(data["expiresAt"]),
            scope=data.get("scope") or "",
            tenant_id=data.get("tenantId"),
            tenants=[Tenant.from_dict(t) for t in data.get("tenants") or []],
            error=data.get("error"),
        )

    def to_json(self) -> bytes:
        return orjson.dumps(self.to_dict())

    @classmethod
    def from_json(cls, raw: str | bytes) -> "Credential":
        return cls.from_dict(orjson.loads(raw))

    @classmethod
    def from_token_response(
        cls,
        payload: dict[str, Any],
        *,
        previous: "Credential | None" = None,
        now: float | None = None,
    ) -> "Credential":
        """Build a credential from a token endpoint response.

        The previous refresh token is kept only when the provider omits a new one.
        """
        current = time.time() if now is None else now
        refresh_token = payload.get("refresh_token") or (
            previous.refresh_token if previous else None
        )
        return cls(
            access_token=payload["access_token"],
            refresh_token=refresh_token,
            expires_at=current + float(payload.get("expires_in", 1800)),
            scope=payload.get("scope") or (previous.scope if previous else ""),
            tenant_id=previous.tenant_id if previous else None,
            tenants=list(previous.tenants) if previous else [],
        )


@dataclass(frozen=True)
class TokenContext:
    """What a caller needs to talk to the provider on behalf of a user."""

    access_token: str
    tenant_id: str
    available_tenants: list[Tenant]

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "tenant_id": self.tenant_id,
            "available_tenants": [tenant.to_dict() for tenant in self.available_tenants],
        }
