"""Xero Projects collection: field extraction and totals."""

import re
from typing import Any

from xerolink.config.sync import TenantProfile
from xerolink.sync.models import CollectionSpec, PaginationStyle, TransformedRecord


PROJECT_CODE_PATTERNS = (
    re.compile(r"^([A-Z]{2,3}\d{3,6})"),
    re.compile(r"^([A-Z]+\d+)"),
)
WORD_SEPARATORS = re.compile(r"[\s\-_:]")


def extract_project_code(name: str | None) -> str:
    """Leading code of a project name, e.g. ``"NY2401 - Pump refit"`` -> ``"NY2401"``.

    Falls back to the first word, then to the whole name.
    """
    if not name or not isinstance(name, str):
        return ""
    for pattern in PROJECT_CODE_PATTERNS:
        match = pattern.match(name)
        if match:
            return match.group(1)
    first_word = WORD_SEPARATORS.split(name)[0]
    return first_word or name


def _amount(container: Any) -> float:
    """Money value of ``{"value": ...}``; a bare number is taken as the value."""
    value = container.get("value") if isinstance(container, dict) else container
    if value is None or value == "":
        return 0.0
    return float(value)


def compute_totals(project: dict[str, Any], tasks: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "total_tasks": len(tasks),
        "total_task_value": sum(_amount(task.get("totalAmount")) for task in tasks),
        "total_project_value": _amount(project.get("totalTaskAmount"))
        + _amount(project.get("totalExpenseAmount")),
    }


def transform_project(
    project: dict[str, Any], tasks: list[dict[str, Any]]
) -> TransformedRecord:
    name = project.get("name") or ""
    return TransformedRecord(
        name=name,
        project_code=extract_project_code(name) or None,
        status=project.get("status"),
        computed_totals=compute_totals(project, tasks),
    )


def build_task_payload(name: str, profile: TenantProfile) -> dict[str, Any]:
    """Body for creating a required task with the tenant's defaults."""
    return {
        "name": name,
        "rate": {"currency": profile.currency, "value": profile.rate_value},
        "chargeType": profile.charge_type,
        "estimateMinutes": profile.estimate_minutes,
    }


XERO_PROJECTS = CollectionSpec(
    name="xero_projects",
    path="/projects.xro/2.0/Projects",
    pagination=PaginationStyle.PAGE,
    id_field="projectId",
    transform=transform_project,
    child_path="/projects.xro/2.0/Projects/{id}/Tasks",
    child_create_path="/projects.xro/2.0/Projects/{id}/Tasks",
)
