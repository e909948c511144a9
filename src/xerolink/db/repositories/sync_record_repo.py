"""SyncRecord repository for database operations."""

from datetime import datetime

from sqlalchemy import func
from sqlmodel import select

from xerolink.db.engine import Database
from xerolink.db.models import SyncRecord


class SyncRecordRepository:
    """Repository for synced record operations."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def upsert(self, record: SyncRecord) -> SyncRecord:
        """Replace the stored row for (tenant_id, remote_id) in one transaction."""
        async with self._db.session() as session:
            existing = await session.get(SyncRecord, (record.tenant_id, record.remote_id))

            if existing:
                existing.name = record.name
                existing.project_code = record.project_code
                existing.status = record.status
                existing.payload = record.payload
                existing.child_items = record.child_items
                existing.computed_totals = record.computed_totals
                existing.last_synced_at = record.last_synced_at
                stored = existing
            else:
                session.add(record)
                stored = record

            await session.commit()
            await session.refresh(stored)
            return stored

    async def get(self, tenant_id: str, remote_id: str) -> SyncRecord | None:
        async with self._db.session() as session:
            return await session.get(SyncRecord, (tenant_id, remote_id))

    async def get_by_code(self, tenant_id: str, project_code: str) -> SyncRecord | None:
        async with self._db.session() as session:
            result = await session.execute(
                select(SyncRecord).where(
                    SyncRecord.tenant_id == tenant_id,
                    SyncRecord.project_code == project_code,
                )
            )
            return result.scalars().first()

    async def list_for_tenant(
        self, tenant_id: str, *, limit: int | None = None
    ) -> list[SyncRecord]:
        """Stored records for a tenant, ordered by project code then name."""
        async with self._db.session() as session:
            query = (
                select(SyncRecord)
                .where(SyncRecord.tenant_id == tenant_id)
                .order_by(SyncRecord.project_code, SyncRecord.name)
            )
            if limit is not None:
                query = query.limit(limit)
            result = await session.execute(query)
            return list(result.scalars().all())

    async def last_sync_info(self, tenant_id: str) -> tuple[datetime | None, int]:
        """Most recent sync time and row count for a tenant."""
        async with self._db.session() as session:
            result = await session.execute(
                select(
                    func.max(SyncRecord.last_synced_at),
                    func.count(),
                ).where(SyncRecord.tenant_id == tenant_id)
            )
            last_synced_at, count = result.one()
            return last_synced_at, int(count)

    async def count(self, tenant_id: str) -> int:
        _, count = await self.last_sync_info(tenant_id)
        return count
