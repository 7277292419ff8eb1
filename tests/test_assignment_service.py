"""Assignment ledger tests."""

import asyncio
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from licence_admin.exceptions import (
    AssignmentNotFoundError,
    BusinessRuleViolation,
    LicenseNotFoundError,
)
from licence_admin.models.domain.assignment import Assignment, AssignmentStatus
from licence_admin.models.domain.audit import AuditEventType, EntityType
from licence_admin.services.assignment_service import AssignmentService
from licence_admin.services.audit_service import AuditService


class TestAssign:
    """Granting seats."""

    async def test_assign_updates_seats_used(self, session, license_factory) -> None:
        license_orm = await license_factory(seats_total=2)
        service = AssignmentService(session)

        assignment = await service.assign_license(license_orm.id, "user-1", "admin-1", "Laptop")

        assert assignment.status == AssignmentStatus.ASSIGNED
        assert assignment.assigned_by == "admin-1"
        assert assignment.notes == "Laptop"
        assert license_orm.seats_used == 1

        events = await AuditService(session).get_entity_history(
            EntityType.ASSIGNMENT, assignment.id
        )
        assert events[0].type == AuditEventType.ASSIGNMENT_CREATED
        assert events[0].metadata["seats_used"] == 1

    async def test_no_seats_left(self, session, license_factory) -> None:
        license_orm = await license_factory(seats_total=2)
        service = AssignmentService(session)
        await service.assign_license(license_orm.id, "user-1")
        await service.assign_license(license_orm.id, "user-2")

        with pytest.raises(BusinessRuleViolation) as exc_info:
            await service.assign_license(license_orm.id, "user-3")
        assert exc_info.value.message == "No seats available on this license"
        assert license_orm.seats_used == 2

    async def test_duplicate_assignment_rejected(self, session, license_factory) -> None:
        license_orm = await license_factory()
        service = AssignmentService(session)
        await service.assign_license(license_orm.id, "user-1")

        with pytest.raises(BusinessRuleViolation):
            await service.assign_license(license_orm.id, "user-1")

    async def test_unassigned_row_still_blocks_duplicate(self, session, license_factory) -> None:
        license_orm = await license_factory()
        service = AssignmentService(session)
        assignment = await service.assign_license(license_orm.id, "user-1")
        await service.unassign(assignment.id)

        with pytest.raises(BusinessRuleViolation):
            await service.assign_license(license_orm.id, "user-1")

    async def test_reassign_after_revoke(self, session, license_factory) -> None:
        license_orm = await license_factory()
        service = AssignmentService(session)
        first = await service.assign_license(license_orm.id, "user-1")
        await service.revoke_assignment(first.id)

        second = await service.assign_license(license_orm.id, "user-1")
        assert second.id != first.id
        assert license_orm.seats_used == 1

    @pytest.mark.parametrize("status", ["pending", "draft", "cancel", "expired", "revoked"])
    async def test_inactive_license_rejected(self, session, license_factory, status: str) -> None:
        license_orm = await license_factory(status=status)
        with pytest.raises(BusinessRuleViolation):
            await AssignmentService(session).assign_license(license_orm.id, "user-1")

    async def test_expired_active_license_rejected(self, session, license_factory) -> None:
        license_orm = await license_factory(expires_at=datetime.now(UTC) - timedelta(hours=1))
        with pytest.raises(BusinessRuleViolation):
            await AssignmentService(session).assign_license(license_orm.id, "user-1")

    async def test_unknown_license(self, session) -> None:
        with pytest.raises(LicenseNotFoundError):
            await AssignmentService(session).assign_license(uuid4(), "user-1")

    async def test_concurrent_assignments_respect_seats(self, session, license_factory) -> None:
        """Concurrent requests for the last seats never oversubscribe the license."""
        license_orm = await license_factory(seats_total=2)
        service = AssignmentService(session)

        results = await asyncio.gather(
            *(service.assign_license(license_orm.id, f"user-{i}") for i in range(4)),
            return_exceptions=True,
        )

        granted = [r for r in results if isinstance(r, Assignment)]
        rejected = [r for r in results if isinstance(r, BusinessRuleViolation)]
        assert len(granted) == 2
        assert len(rejected) == 2
        assert license_orm.seats_used == 2


class TestRelease:
    """Revoking, unassigning and deleting."""

    async def test_revoke_frees_seat(self, session, license_factory) -> None:
        license_orm = await license_factory(seats_total=1)
        service = AssignmentService(session)
        assignment = await service.assign_license(license_orm.id, "user-1")

        revoked = await service.revoke_assignment(assignment.id, "admin-1", "Left company")

        assert revoked.status == AssignmentStatus.REVOKED
        assert revoked.revoked_by == "admin-1"
        assert revoked.revoked_at > revoked.assigned_at
        assert license_orm.seats_used == 0

        events = await AuditService(session).get_entity_history(
            EntityType.ASSIGNMENT, assignment.id
        )
        assert events[0].type == AuditEventType.ASSIGNMENT_REVOKED
        assert events[0].metadata["reason"] == "Left company"

    async def test_revoke_twice_rejected(self, session, license_factory) -> None:
        license_orm = await license_factory()
        service = AssignmentService(session)
        assignment = await service.assign_license(license_orm.id, "user-1")
        await service.revoke_assignment(assignment.id)

        with pytest.raises(BusinessRuleViolation):
            await service.revoke_assignment(assignment.id)

    async def test_unassign_frees_seat(self, session, license_factory) -> None:
        license_orm = await license_factory()
        service = AssignmentService(session)
        assignment = await service.assign_license(license_orm.id, "user-1")

        result = await service.unassign(assignment.id)

        assert result.status == AssignmentStatus.UNASSIGNED
        assert license_orm.seats_used == 0
        with pytest.raises(BusinessRuleViolation):
            await service.unassign(assignment.id)

    async def test_revoke_unassigned(self, session, license_factory) -> None:
        license_orm = await license_factory()
        service = AssignmentService(session)
        assignment = await service.assign_license(license_orm.id, "user-1")
        await service.unassign(assignment.id)

        revoked = await service.revoke_assignment(assignment.id)
        assert revoked.status == AssignmentStatus.REVOKED
        assert license_orm.seats_used == 0

    async def test_delete_recomputes_seats(self, session, license_factory) -> None:
        license_orm = await license_factory()
        service = AssignmentService(session)
        assignment = await service.assign_license(license_orm.id, "user-1")

        await service.delete_assignment(assignment.id, "admin-1")

        assert license_orm.seats_used == 0
        assert await service.list_for_license(license_orm.id) == []
        with pytest.raises(AssignmentNotFoundError):
            await service.delete_assignment(assignment.id)

    async def test_list_for_license_and_user(self, session, license_factory) -> None:
        first = await license_factory()
        second = await license_factory()
        service = AssignmentService(session)
        kept = await service.assign_license(first.id, "user-1")
        dropped = await service.assign_license(second.id, "user-1")
        await service.revoke_assignment(dropped.id)

        assert [a.id for a in await service.list_for_user("user-1")] == [kept.id]
        assert len(await service.list_for_user("user-1", include_revoked=True)) == 2
        revoked = await service.list_for_license(second.id, AssignmentStatus.REVOKED)
        assert [a.id for a in revoked] == [dropped.id]


class TestAssignmentModel:
    """Assignment domain invariants."""

    def test_revoked_requires_revoked_at(self) -> None:
        with pytest.raises(ValueError):
            Assignment(
                license_id=uuid4(),
                user_id="user-1",
                status=AssignmentStatus.REVOKED,
                assigned_at=datetime.now(UTC),
            )

    def test_revoked_at_after_assigned_at(self) -> None:
        now = datetime.now(UTC)
        with pytest.raises(ValueError):
            Assignment(
                license_id=uuid4(),
                user_id="user-1",
                status=AssignmentStatus.REVOKED,
                assigned_at=now,
                revoked_at=now,
            )

    def test_seat_holding(self) -> None:
        now = datetime.now(UTC)
        assigned = Assignment(license_id=uuid4(), user_id="user-1", assigned_at=now)
        revoked = assigned.model_copy(
            update={"status": AssignmentStatus.REVOKED, "revoked_at": now + timedelta(hours=1)}
        )
        assert assigned.holds_seat is True
        assert assigned.is_revoked is False
        assert revoked.holds_seat is False
        assert revoked.is_revoked is True
