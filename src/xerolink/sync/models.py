"""Sync run types."""

from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any

from xerolink.exceptions import PerRecordSyncFailure


class SyncState(StrEnum):
    FETCHING = "fetching"
    PROCESSING = "processing"
    COMPLETED = "completed"
    TRUNCATED = "truncated"
    CANCELLED = "cancelled"


class PaginationStyle(StrEnum):
    PAGE = "page"
    OFFSET = "offset"
    CURSOR = "cursor"


@dataclass
class RecordError:
    """Why one record was not synced."""

    remote_id: str
    name: str
    error: str
    idempotency_key: str | None = None
    error_type: str | None = None

    @classmethod
    def from_failure(cls, failure: PerRecordSyncFailure) -> "RecordError":
        cause = failure.__cause__
        return cls(
            remote_id=failure.remote_id,
            name=failure.name,
            error=failure.message,
            idempotency_key=failure.idempotency_key,
            error_type=type(cause).__name__ if cause is not None else None,
        )


@dataclass
class SyncRunResult:
    """Outcome of one run.

    ``truncated`` means pagination stopped at the page ceiling while the
    provider still reported more records.
    """

    tenant_id: str
    succeeded_count: int = 0
    failed_count: int = 0
    child_item_count: int = 0
    duration_ms: int = 0
    pages_fetched: int = 0
    cancelled: bool = False
    truncated: bool = False
    per_record_errors: list[RecordError] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed_count == 0 and not self.cancelled and not self.truncated

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["success"] = self.success
        return data


@dataclass
class TransformedRecord:
    """Derived fields stored next to the raw payload."""

    name: str
    project_code: str | None
    status: str | None
    computed_totals: dict[str, Any]


@dataclass(frozen=True)
class CollectionSpec:
    """Describes a paginated remote collection with optional per-record children.

    ``child_path`` and ``child_create_path`` are formatted with ``id``.
    """

    name: str
    path: str
    pagination: PaginationStyle
    id_field: str
    transform: Callable[[dict[str, Any], list[dict[str, Any]]], TransformedRecord]
    name_field: str = "name"
    items_field: str = "items"
    child_path: str | None = None
    child_items_field: str = "items"
    child_name_field: str = "name"
    child_create_path: str | None = None
