"""SQLModel database models."""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class SyncRecord(SQLModel, table=True):
    """Local mirror of one remote record and its children."""

    __tablename__ = "sync_records"

    tenant_id: str = Field(primary_key=True)
    remote_id: str = Field(primary_key=True)
    name: str = ""
    project_code: str | None = Field(default=None, index=True)
    status: str | None = None

    payload: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    child_items: list[dict[str, Any]] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )
    computed_totals: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSON, nullable=False)
    )

    last_synced_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
