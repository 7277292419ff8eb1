"""Assignment ledger: seat grants and seat-count enforcement."""

import logging
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from licence_admin.exceptions import (
    AssignmentNotFoundError,
    BusinessRuleViolation,
    DataIntegrityError,
    LicenseNotFoundError,
)
from licence_admin.models.domain.assignment import Assignment, AssignmentStatus
from licence_admin.models.domain.audit import AuditEventType, EntityType
from licence_admin.models.domain.license import License
from licence_admin.models.orm.assignment import LicenseAssignmentORM
from licence_admin.models.orm.license import LicenseORM
from licence_admin.repositories.assignment_repository import AssignmentRepository
from licence_admin.repositories.license_repository import LicenseRepository
from licence_admin.services.audit_service import AuditService
from licence_admin.utils.locks import KeyedLock

logger = logging.getLogger(__name__)

# Serializes read-modify-write of one license's seats within this process
_license_locks = KeyedLock()


class AssignmentService:
    """Service for license assignment operations.

    ``seats_used`` is recomputed from assignment rows inside the same
    transaction as every assignment write, under a per-license lock.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize service with database session."""
        self.session = session
        self.license_repo = LicenseRepository(session)
        self.assignment_repo = AssignmentRepository(session)
        self.audit_service = AuditService(session)

    async def _lock_license(self, license_id: UUID) -> LicenseORM:
        license_orm = await self.license_repo.get_for_update(license_id)
        if license_orm is None:
            raise LicenseNotFoundError(str(license_id))
        return license_orm

    async def _get_assignment(self, assignment_id: UUID) -> LicenseAssignmentORM:
        assignment = await self.assignment_repo.get(assignment_id)
        if assignment is None:
            raise AssignmentNotFoundError(str(assignment_id))
        return assignment

    async def _recalculate(self, license_orm: LicenseORM) -> int:
        seats_used = await self.license_repo.recalculate_seats_used(license_orm)
        if not 0 <= seats_used <= license_orm.seats_total:
            raise DataIntegrityError(
                "Seat count out of bounds",
                {
                    "license_id": str(license_orm.id),
                    "seats_used": seats_used,
                    "seats_total": license_orm.seats_total,
                },
            )
        return seats_used

    async def assign_license(
        self,
        license_id: UUID,
        user_id: str,
        actor_id: str | None = None,
        notes: str | None = None,
    ) -> Assignment:
        """Grant a seat on a license to a user.

        Args:
            license_id: License UUID
            user_id: User receiving the seat
            actor_id: Acting user
            notes: Optional note

        Returns:
            The created assignment

        Raises:
            LicenseNotFoundError: If the license does not exist
            BusinessRuleViolation: Duplicate assignment, inactive or expired
                license, or no seats left
        """
        now = datetime.now(UTC)
        async with _license_locks.hold(str(license_id)):
            license_orm = await self._lock_license(license_id)
            license = License.model_validate(license_orm)

            existing = await self.assignment_repo.get_non_revoked(license_id, user_id)
            if existing is not None:
                raise BusinessRuleViolation(
                    "User already has an assignment on this license",
                    {"license_id": str(license_id), "user_id": user_id},
                )

            if not license.is_active:
                raise BusinessRuleViolation(
                    "Cannot assign seats on a license that is not active",
                    {"license_id": str(license_id), "status": str(license.status)},
                )
            if license.is_expired(now):
                raise BusinessRuleViolation(
                    "Cannot assign seats on an expired license",
                    {"license_id": str(license_id)},
                )

            seats_used = await self.license_repo.count_assigned_seats(license_id)
            if seats_used >= license_orm.seats_total:
                raise BusinessRuleViolation(
                    "No seats available on this license",
                    {"license_id": str(license_id), "seats_total": license_orm.seats_total},
                )

            assignment = await self.assignment_repo.create(
                license_id=license_id,
                user_id=user_id,
                status=AssignmentStatus.ASSIGNED.value,
                assigned_at=now,
                assigned_by=actor_id,
                notes=notes,
            )
            seats_used = await self._recalculate(license_orm)

            await self.audit_service.record_event(
                AuditEventType.ASSIGNMENT_CREATED,
                actor_id,
                assignment.id,
                EntityType.ASSIGNMENT,
                {"license_id": license_id, "user_id": user_id, "seats_used": seats_used},
            )

        logger.info(f"Assigned license {license_orm.key} to user {user_id}")
        return Assignment.model_validate(assignment)

    async def revoke_assignment(
        self,
        assignment_id: UUID,
        actor_id: str | None = None,
        reason: str | None = None,
    ) -> Assignment:
        """Revoke an assignment, freeing its seat. Revocation is final for the row.

        Raises:
            AssignmentNotFoundError: If the assignment does not exist
            BusinessRuleViolation: If it is already revoked
        """
        assignment = await self._get_assignment(assignment_id)
        async with _license_locks.hold(str(assignment.license_id)):
            license_orm = await self._lock_license(assignment.license_id)
            await self.session.refresh(assignment)

            if assignment.status == AssignmentStatus.REVOKED.value:
                raise BusinessRuleViolation(
                    "Assignment is already revoked", {"assignment_id": str(assignment_id)}
                )

            previous_status = assignment.status
            # revoked_at must be strictly after assigned_at
            revoked_at = max(
                datetime.now(UTC), assignment.assigned_at + timedelta(microseconds=1)
            )
            Assignment.model_validate(
                {
                    **Assignment.model_validate(assignment).model_dump(),
                    "status": AssignmentStatus.REVOKED,
                    "revoked_at": revoked_at,
                }
            )

            assignment = await self.assignment_repo.update(
                assignment,
                status=AssignmentStatus.REVOKED.value,
                revoked_at=revoked_at,
                revoked_by=actor_id,
            )
            seats_used = await self._recalculate(license_orm)

            await self.audit_service.record_event(
                AuditEventType.ASSIGNMENT_REVOKED,
                actor_id,
                assignment.id,
                EntityType.ASSIGNMENT,
                {
                    "license_id": assignment.license_id,
                    "user_id": assignment.user_id,
                    "from_status": previous_status,
                    "reason": reason,
                    "seats_used": seats_used,
                },
            )

        return Assignment.model_validate(assignment)

    async def unassign(self, assignment_id: UUID, actor_id: str | None = None) -> Assignment:
        """Release the seat but keep the user's row open (status ``unassigned``).

        Raises:
            AssignmentNotFoundError: If the assignment does not exist
            BusinessRuleViolation: If the assignment does not currently hold a seat
        """
        assignment = await self._get_assignment(assignment_id)
        async with _license_locks.hold(str(assignment.license_id)):
            license_orm = await self._lock_license(assignment.license_id)
            await self.session.refresh(assignment)

            if assignment.status != AssignmentStatus.ASSIGNED.value:
                raise BusinessRuleViolation(
                    f"Cannot unassign an assignment in status {assignment.status}",
                    {"assignment_id": str(assignment_id)},
                )

            assignment = await self.assignment_repo.update(
                assignment, status=AssignmentStatus.UNASSIGNED.value
            )
            seats_used = await self._recalculate(license_orm)

            await self.audit_service.record_event(
                AuditEventType.ASSIGNMENT_UNASSIGNED,
                actor_id,
                assignment.id,
                EntityType.ASSIGNMENT,
                {
                    "license_id": assignment.license_id,
                    "user_id": assignment.user_id,
                    "seats_used": seats_used,
                },
            )

        return Assignment.model_validate(assignment)

    async def delete_assignment(self, assignment_id: UUID, actor_id: str | None = None) -> None:
        """Delete an assignment row and recompute the license's seats.

        Raises:
            AssignmentNotFoundError: If the assignment does not exist
        """
        assignment = await self._get_assignment(assignment_id)
        license_id = assignment.license_id
        async with _license_locks.hold(str(license_id)):
            license_orm = await self._lock_license(license_id)
            snapshot = {
                "license_id": license_id,
                "user_id": assignment.user_id,
                "status": assignment.status,
            }
            await self.assignment_repo.delete(assignment)
            seats_used = await self._recalculate(license_orm)

            await self.audit_service.record_event(
                AuditEventType.ASSIGNMENT_DELETED,
                actor_id,
                assignment_id,
                EntityType.ASSIGNMENT,
                {**snapshot, "seats_used": seats_used},
            )

    async def list_for_license(
        self, license_id: UUID, status: AssignmentStatus | None = None
    ) -> list[Assignment]:
        """List a license's assignments, oldest first."""
        if await self.license_repo.get(license_id) is None:
            raise LicenseNotFoundError(str(license_id))
        rows = await self.assignment_repo.get_by_license(
            license_id, status.value if status else None
        )
        return [Assignment.model_validate(row) for row in rows]

    async def list_for_user(self, user_id: str, include_revoked: bool = False) -> list[Assignment]:
        """List assignments held by a user."""
        rows = await self.assignment_repo.get_by_user(user_id, include_revoked)
        return [Assignment.model_validate(row) for row in rows]
