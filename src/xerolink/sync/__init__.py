"""Collection synchronization."""

from .idempotency import child_creation_key, idempotency_key
from .models import (
    CollectionSpec,
    PaginationStyle,
    RecordError,
    SyncRunResult,
    SyncState,
    TransformedRecord,
)
from .orchestrator import SyncOrchestrator
from .pagination import Paginator
from .projects import XERO_PROJECTS, extract_project_code
from .tenant_profiles import TenantProfiles


__all__ = [
    "CollectionSpec",
    "PaginationStyle",
    "RecordError",
    "SyncRunResult",
    "SyncState",
    "TransformedRecord",
    "SyncOrchestrator",
    "Paginator",
    "TenantProfiles",
    "XERO_PROJECTS",
    "extract_project_code",
    "idempotency_key",
    "child_creation_key",
]
