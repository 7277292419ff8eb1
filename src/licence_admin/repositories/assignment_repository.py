"""License assignment repository."""

from uuid import UUID

from sqlalchemy import and_, select

from licence_admin.models.domain.assignment import AssignmentStatus
from licence_admin.models.orm.assignment import LicenseAssignmentORM
from licence_admin.repositories.base import BaseRepository


class AssignmentRepository(BaseRepository[LicenseAssignmentORM]):
    """Repository for license assignment operations."""

    model = LicenseAssignmentORM

    async def get_non_revoked(self, license_id: UUID, user_id: str) -> LicenseAssignmentORM | None:
        """Get the open (assigned or unassigned) assignment for a user on a license."""
        result = await self.session.execute(
            select(LicenseAssignmentORM).where(
                and_(
                    LicenseAssignmentORM.license_id == license_id,
                    LicenseAssignmentORM.user_id == user_id,
                    LicenseAssignmentORM.status != AssignmentStatus.REVOKED.value,
                )
            )
        )
        return result.scalars().first()

    async def get_by_license(
        self,
        license_id: UUID,
        status: str | None = None,
    ) -> list[LicenseAssignmentORM]:
        """Get assignments of a license, oldest first."""
        query = select(LicenseAssignmentORM).where(LicenseAssignmentORM.license_id == license_id)
        if status:
            query = query.where(LicenseAssignmentORM.status == status)
        result = await self.session.execute(query.order_by(LicenseAssignmentORM.assigned_at))
        return list(result.scalars().all())

    async def get_by_user(self, user_id: str, include_revoked: bool = False) -> list[LicenseAssignmentORM]:
        """Get assignments held by a user."""
        query = select(LicenseAssignmentORM).where(LicenseAssignmentORM.user_id == user_id)
        if not include_revoked:
            query = query.where(LicenseAssignmentORM.status != AssignmentStatus.REVOKED.value)
        result = await self.session.execute(query.order_by(LicenseAssignmentORM.assigned_at))
        return list(result.scalars().all())

    async def has_active_assignments(self, license_id: UUID) -> bool:
        """Check whether any assignment on the license still holds a seat."""
        result = await self.session.execute(
            select(LicenseAssignmentORM.id)
            .where(
                and_(
                    LicenseAssignmentORM.license_id == license_id,
                    LicenseAssignmentORM.status == AssignmentStatus.ASSIGNED.value,
                )
            )
            .limit(1)
        )
        return result.first() is not None
