"""External license snapshot repository."""

from typing import Any

from sqlalchemy import func, select

from licence_admin.models.domain.license import ExternalSyncStatus
from licence_admin.models.orm.external_license import ExternalLicenseSnapshotORM
from licence_admin.repositories.base import BaseRepository


class ExternalLicenseRepository(BaseRepository[ExternalLicenseSnapshotORM]):
    """Repository for staged provider records."""

    model = ExternalLicenseSnapshotORM

    async def get_by_external_id(self, external_id: str) -> ExternalLicenseSnapshotORM | None:
        """Get a snapshot by its stable provider identifier."""
        result = await self.session.execute(
            select(ExternalLicenseSnapshotORM).where(
                ExternalLicenseSnapshotORM.external_id == external_id
            )
        )
        return result.scalar_one_or_none()

    async def get_by_status(
        self,
        sync_status: ExternalSyncStatus,
        limit: int = 100,
    ) -> list[ExternalLicenseSnapshotORM]:
        """Get snapshots in a given sync status, least recently touched first."""
        result = await self.session.execute(
            select(ExternalLicenseSnapshotORM)
            .where(ExternalLicenseSnapshotORM.sync_status == sync_status.value)
            .order_by(ExternalLicenseSnapshotORM.updated_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_sync_stats(self) -> dict[str, Any]:
        """Count snapshots per sync status."""
        result = await self.session.execute(
            select(ExternalLicenseSnapshotORM.sync_status, func.count()).group_by(
                ExternalLicenseSnapshotORM.sync_status
            )
        )
        counts = {status.value: 0 for status in ExternalSyncStatus}
        for status, count in result.all():
            counts[status] = count

        last_synced = (
            await self.session.execute(select(func.max(ExternalLicenseSnapshotORM.last_synced_at)))
        ).scalar_one()

        return {
            "total": sum(counts.values()),
            "by_status": counts,
            "last_synced_at": last_synced,
        }
