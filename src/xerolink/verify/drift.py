"""Compare stored child items against the live remote copy.

Verification is read-only: it never touches local storage.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from structlog import get_logger

from xerolink.client.executor import ApiRequest, RequestExecutor
from xerolink.db.models import SyncRecord
from xerolink.db.repositories import SyncRecordRepository
from xerolink.exceptions import SyncRecordNotFoundError, XeroLinkError
from xerolink.sync.models import CollectionSpec
from xerolink.sync.projects import XERO_PROJECTS


logger = get_logger(__name__)

COMPARED_FIELDS = (
    "name",
    "rate.value",
    "rate.currency",
    "chargeType",
    "status",
    "estimateMinutes",
    "totalAmount.value",
)
EXISTENCE = "existence"
EXISTS = "exists"
NOT_FOUND = "not found"


@dataclass
class Mismatch:
    remote_id: str
    child_id: str
    field: str
    local_value: Any
    remote_value: Any
    last_synced_at: datetime | None
    child_name: str = ""
    project_code: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if self.last_synced_at is not None:
            data["last_synced_at"] = self.last_synced_at.isoformat()
        return data


@dataclass
class VerificationReport:
    records_checked: int
    records_with_mismatches: int
    total_mismatches: int
    mismatches: list[Mismatch] = field(default_factory=list)
    summary: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "records_checked": self.records_checked,
            "records_with_mismatches": self.records_with_mismatches,
            "total_mismatches": self.total_mismatches,
            "mismatches": [m.to_dict() for m in self.mismatches],
            "summary": self.summary,
        }


def get_path(data: dict[str, Any] | None, dotted: str) -> Any:
    """Resolve ``"rate.value"`` style paths; missing segments give None."""
    current: Any = data
    for part in dotted.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def values_differ(local: Any, remote: Any, tolerance: float) -> bool:
    """Numbers differ beyond ``tolerance``; everything else must be equal."""
    if _is_number(local) and _is_number(remote):
        return abs(local - remote) > tolerance
    return local != remote


def summarize(mismatches: list[Mismatch], records_checked: int | None = None) -> VerificationReport:
    """Count mismatches by category."""
    affected = {m.remote_id for m in mismatches}
    rate_value = sum(1 for m in mismatches if m.field == "rate.value")
    estimate_minutes = sum(1 for m in mismatches if m.field == "estimateMinutes")
    status = sum(1 for m in mismatches if m.field == "status")
    return VerificationReport(
        records_checked=len(affected) if records_checked is None else records_checked,
        records_with_mismatches=len(affected),
        total_mismatches=len(mismatches),
        mismatches=list(mismatches),
        summary={
            "rate_value": rate_value,
            "estimate_minutes": estimate_minutes,
            "status": status,
            "other": len(mismatches) - rate_value - estimate_minutes - status,
        },
    )


class DriftVerifier:
    """Detects drift between ``sync_records`` and the provider."""

    def __init__(
        self,
        executor: RequestExecutor,
        repository: SyncRecordRepository,
        *,
        spec: CollectionSpec = XERO_PROJECTS,
        child_id_field: str = "taskId",
        tolerance: float = 0.01,
    ) -> None:
        if not spec.child_path:
            raise ValueError(f"{spec.name} has no child_path to verify against")
        self._executor = executor
        self._repository = repository
        self._spec = spec
        self._child_path = spec.child_path
        self._child_id_field = child_id_field
        self._tolerance = tolerance

    async def verify(self, tenant_id: str, user_id: str, remote_id: str) -> list[Mismatch]:
        """Compare one stored record's children with the remote ones.

        Raises:
            SyncRecordNotFoundError: Nothing is stored for ``remote_id``
        """
        record = await self._repository.get(tenant_id, remote_id)
        if record is None:
            raise SyncRecordNotFoundError(tenant_id, remote_id)
        remote_children = await self._fetch_remote_children(tenant_id, user_id, remote_id)
        return self.compare(record, remote_children)

    async def verify_all(
        self, tenant_id: str, user_id: str, limit: int = 10
    ) -> list[Mismatch]:
        report = await self.verify_all_report(tenant_id, user_id, limit=limit)
        return report.mismatches

    async def verify_all_report(
        self, tenant_id: str, user_id: str, limit: int = 10
    ) -> VerificationReport:
        """Verify up to ``limit`` stored records; records that error are skipped."""
        records = await self._repository.list_for_tenant(tenant_id, limit=limit)
        mismatches: list[Mismatch] = []
        checked = 0
        for record in records:
            try:
                remote_children = await self._fetch_remote_children(
                    tenant_id, user_id, record.remote_id
                )
            except XeroLinkError as e:
                logger.warning(
                    "record_verification_skipped",
                    tenant_id=tenant_id,
                    remote_id=record.remote_id,
                    error=str(e),
                )
                continue
            checked += 1
            mismatches.extend(self.compare(record, remote_children))

        report = summarize(mismatches, records_checked=checked)
        logger.info(
            "verification_completed",
            tenant_id=tenant_id,
            records_checked=report.records_checked,
            total_mismatches=report.total_mismatches,
        )
        return report

    async def _fetch_remote_children(
        self, tenant_id: str, user_id: str, remote_id: str
    ) -> list[dict[str, Any]]:
        response = await self._executor.call(
            tenant_id,
            user_id,
            ApiRequest("GET", self._child_path.format(id=remote_id)),
        )
        body = response.json() or {}
        return list(body.get(self._spec.child_items_field) or [])

    def _child_key(self, child: dict[str, Any]) -> str:
        """Match children by id; children without one fall back to their name."""
        child_id = child.get(self._child_id_field)
        if child_id not in (None, ""):
            return f"id:{child_id}"
        return "name:" + str(child.get("name") or "").strip().lower()

    def _child_id(self, child: dict[str, Any]) -> str:
        child_id = child.get(self._child_id_field)
        return "" if child_id is None else str(child_id)

    def compare(
        self, record: SyncRecord, remote_children: list[dict[str, Any]]
    ) -> list[Mismatch]:
        """Field-by-field comparison plus existence checks in both directions.

        Every child is accounted for: duplicates and children without an id
        are paired one-to-one, and whatever stays unpaired is reported.
        """
        remote_by_key: dict[str, list[dict[str, Any]]] = {}
        for child in remote_children:
            if not isinstance(child, dict):
                logger.warning("remote_child_ignored", remote_id=record.remote_id, child=child)
                continue
            remote_by_key.setdefault(self._child_key(child), []).append(child)
        mismatches: list[Mismatch] = []

        def mismatch(child_id: str, child_name: str, fld: str, local: Any, remote: Any) -> Mismatch:
            return Mismatch(
                remote_id=record.remote_id,
                child_id=child_id,
                field=fld,
                local_value=local,
                remote_value=remote,
                last_synced_at=record.last_synced_at,
                child_name=child_name,
                project_code=record.project_code or "",
            )

        for local_child in record.child_items:
            child_id = self._child_id(local_child)
            child_name = local_child.get("name") or ""
            candidates = remote_by_key.get(self._child_key(local_child))
            if not candidates:
                mismatches.append(mismatch(child_id, child_name, EXISTENCE, EXISTS, NOT_FOUND))
                continue
            remote_child = candidates.pop(0)
            for fld in COMPARED_FIELDS:
                local_value = get_path(local_child, fld)
                remote_value = get_path(remote_child, fld)
                if values_differ(local_value, remote_value, self._tolerance):
                    mismatches.append(
                        mismatch(child_id, child_name, fld, local_value, remote_value)
                    )

        for leftovers in remote_by_key.values():
            for remote_child in leftovers:
                mismatches.append(
                    mismatch(
                        self._child_id(remote_child),
                        remote_child.get("name") or "",
                        EXISTENCE,
                        NOT_FOUND,
                        EXISTS,
                    )
                )

        return mismatches
