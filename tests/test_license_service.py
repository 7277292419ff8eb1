"""License service tests."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from licence_admin.exceptions import BusinessRuleViolation, LicenseNotFoundError, ValidationError
from licence_admin.models.domain.audit import AuditEventType, EntityType
from licence_admin.models.domain.license import LicenseStatus, ReminderWindow
from licence_admin.models.domain.state_machine import TransitionContext
from licence_admin.repositories.license_repository import LicenseFilters
from licence_admin.services.assignment_service import AssignmentService
from licence_admin.services.audit_service import AuditService
from licence_admin.services.license_service import LicenseService


def _payload(**overrides):
    now = datetime.now(UTC)
    data = {
        "key": "LIC-500",
        "product": "Business Suite",
        "plan": "Pro",
        "dba": "Corner Cafe",
        "seats_total": 3,
        "starts_at": now - timedelta(days=10),
        "expires_at": now + timedelta(days=355),
    }
    data.update(overrides)
    return data


class TestCreateLicense:
    """Manual license creation."""

    async def test_create_records_audit_event(self, session) -> None:
        service = LicenseService(session)
        license = await service.create_license(_payload(), actor_id="admin-1")

        assert license.id is not None
        assert license.status == LicenseStatus.PENDING
        assert license.seats_used == 0
        assert license.created_by == "admin-1"
        assert license.grace_period_end == license.expires_at + timedelta(days=30)

        events = await AuditService(session).get_entity_history(EntityType.LICENSE, license.id)
        assert [e.type for e in events] == [AuditEventType.LICENSE_CREATED]
        assert events[0].actor_id == "admin-1"

    async def test_seats_used_ignored_on_create(self, session) -> None:
        license = await LicenseService(session).create_license(_payload(seats_used=2))
        assert license.seats_used == 0

    async def test_duplicate_key_rejected(self, session) -> None:
        service = LicenseService(session)
        await service.create_license(_payload())
        with pytest.raises(BusinessRuleViolation):
            await service.create_license(_payload())

    async def test_invalid_payload_rejected(self, session) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await LicenseService(session).create_license({"key": "LIC-1"})
        assert "product is required" in exc_info.value.errors

    async def test_active_license_needs_expiry(self, session) -> None:
        with pytest.raises(ValidationError):
            await LicenseService(session).create_license(
                _payload(status=LicenseStatus.ACTIVE, expires_at=None)
            )


class TestUpdateLicense:
    """Partial updates."""

    async def test_update_changes_fields_and_audits(self, session, license_factory) -> None:
        license_orm = await license_factory(dba="Old Name")
        service = LicenseService(session)

        updated = await service.update_license(license_orm.id, {"dba": "New Name"}, "admin-2")

        assert updated.dba == "New Name"
        assert updated.updated_by == "admin-2"
        events = await AuditService(session).get_entity_history(EntityType.LICENSE, license_orm.id)
        assert events[0].type == AuditEventType.LICENSE_UPDATED
        assert events[0].metadata["changes"]["dba"] == {"old": "Old Name", "new": "New Name"}

    async def test_unchanged_update_writes_nothing(self, session, license_factory) -> None:
        license_orm = await license_factory(dba="Same")
        await LicenseService(session).update_license(license_orm.id, {"dba": "Same"})

        _, total = await AuditService(session).list_events(entity_id=license_orm.id)
        assert total == 0

    @pytest.mark.parametrize("field", ["status", "seats_used", "renewal_history"])
    async def test_protected_fields_rejected(self, session, license_factory, field: str) -> None:
        license_orm = await license_factory()
        with pytest.raises(ValidationError):
            await LicenseService(session).update_license(license_orm.id, {field: "x"})

    async def test_seats_total_cannot_drop_below_used(self, session, license_factory) -> None:
        license_orm = await license_factory(seats_total=3)
        assignments = AssignmentService(session)
        await assignments.assign_license(license_orm.id, "user-1")
        await assignments.assign_license(license_orm.id, "user-2")

        with pytest.raises(BusinessRuleViolation):
            await LicenseService(session).update_license(license_orm.id, {"seats_total": 1})

    async def test_new_expiry_rederives_grace_end(self, session, license_factory) -> None:
        license_orm = await license_factory(grace_period_days=10)
        new_expiry = datetime.now(UTC) + timedelta(days=100)

        updated = await LicenseService(session).update_license(
            license_orm.id, {"expires_at": new_expiry}
        )
        assert updated.grace_period_end == new_expiry + timedelta(days=10)
        assert updated.renewal_due_date == new_expiry

    async def test_missing_license(self, session) -> None:
        from uuid import uuid4

        with pytest.raises(LicenseNotFoundError):
            await LicenseService(session).update_license(uuid4(), {"dba": "x"})


class TestTransitions:
    """Status transitions, renewal and deletion."""

    async def test_transition_returns_warnings(self, session, license_factory) -> None:
        license_orm = await license_factory()
        outcome = await LicenseService(session).transition_status(
            license_orm.id, LicenseStatus.CANCEL, TransitionContext(changed_by="admin-1")
        )
        assert outcome.to_status == LicenseStatus.CANCEL
        assert outcome.license.cancel_date is not None
        assert "Consider providing a reason for license cancellation" in outcome.warnings

    async def test_illegal_transition_rejected(self, session, license_factory) -> None:
        license_orm = await license_factory(status="revoked")
        with pytest.raises(BusinessRuleViolation):
            await LicenseService(session).transition_status(license_orm.id, LicenseStatus.ACTIVE)

    async def test_renew_expired_license(self, session, license_factory) -> None:
        license_orm = await license_factory(
            status="expired",
            expires_at=datetime.now(UTC) - timedelta(days=40),
            renewal_reminders_sent=["30days", "7days"],
            suspended_at=datetime.now(UTC) - timedelta(days=5),
            suspension_reason="Auto-suspended",
        )

        outcome = await LicenseService(session).renew_license(license_orm.id, "admin-1")

        license = outcome.license
        assert license.status == LicenseStatus.ACTIVE
        assert license.expires_at > datetime.now(UTC) + timedelta(days=29)
        assert license.renewal_reminders_sent == []
        assert license.suspended_at is None
        assert license.reactivated_at is not None
        assert license.renewal_history[0]["action"] == "license_renewed"

    async def test_renew_extends_from_current_expiry(self, session, license_factory) -> None:
        expires_at = datetime.now(UTC) + timedelta(days=10)
        license_orm = await license_factory(expires_at=expires_at, term="yearly")

        outcome = await LicenseService(session).renew_license(license_orm.id)

        assert outcome.license.expires_at == expires_at + timedelta(days=365)
        assert outcome.license.status == LicenseStatus.ACTIVE

    async def test_renew_rejects_past_date(self, session, license_factory) -> None:
        license_orm = await license_factory()
        with pytest.raises(ValidationError):
            await LicenseService(session).renew_license(
                license_orm.id, new_expires_at=datetime.now(UTC) - timedelta(days=1)
            )

    async def test_reminder_windows_reset_on_renewal(self, session, license_factory) -> None:
        license_orm = await license_factory(
            renewal_reminders_sent=[ReminderWindow.THIRTY_DAYS.value]
        )
        outcome = await LicenseService(session).renew_license(license_orm.id)
        assert outcome.license.renewal_reminders_sent == []

    async def test_delete_revokes(self, session, license_factory) -> None:
        license_orm = await license_factory()
        outcome = await LicenseService(session).delete_license(license_orm.id, "admin-1")

        assert outcome.to_status == LicenseStatus.REVOKED
        events = await AuditService(session).get_entity_history(EntityType.LICENSE, license_orm.id)
        assert events[0].type == AuditEventType.LICENSE_DELETED

    async def test_delete_blocked_by_active_assignment(self, session, license_factory) -> None:
        license_orm = await license_factory()
        await AssignmentService(session).assign_license(license_orm.id, "user-1")

        with pytest.raises(BusinessRuleViolation):
            await LicenseService(session).delete_license(license_orm.id)

    async def test_revoked_to_revoked_rejected(self, session, license_factory) -> None:
        license_orm = await license_factory(status="revoked")

        with pytest.raises(BusinessRuleViolation):
            await LicenseService(session).transition_status(
                license_orm.id, LicenseStatus.REVOKED, TransitionContext(reason="Again")
            )

    async def test_same_status_request_rejected(self, session, license_factory) -> None:
        license_orm = await license_factory()

        with pytest.raises(BusinessRuleViolation):
            await LicenseService(session).transition_status(license_orm.id, LicenseStatus.ACTIVE)

    async def test_renew_active_keeps_status(self, session, license_factory) -> None:
        license_orm = await license_factory()

        outcome = await LicenseService(session).renew_license(license_orm.id, "admin-1")

        assert outcome.from_status == LicenseStatus.ACTIVE
        assert outcome.to_status == LicenseStatus.ACTIVE
        assert outcome.license.renewal_history[-1]["action"] == "license_renewed"

    async def test_delete_already_revoked_is_noop(self, session, license_factory) -> None:
        license_orm = await license_factory(status="revoked")

        outcome = await LicenseService(session).delete_license(license_orm.id)

        assert outcome.changed is False
        _, total = await AuditService(session).list_events(entity_id=license_orm.id)
        assert total == 0


class TestBulkOperations:
    """Bulk operations report per-item results."""

    async def test_bulk_create_partial_failure(self, session) -> None:
        result = await LicenseService(session).bulk_create(
            [_payload(key="LIC-A"), {"key": "LIC-B"}, _payload(key="LIC-C")], "admin-1"
        )

        assert result.total == 3
        assert result.successful == 2
        assert result.failed == 1
        assert result.results[1].success is False
        assert result.results[1].error == "validation_error"

        licenses, total = await LicenseService(session).list_licenses()
        assert total == 2
        assert {lic.key for lic in licenses} == {"LIC-A", "LIC-C"}

    async def test_bulk_update(self, session, license_factory) -> None:
        first = await license_factory()
        second = await license_factory()
        from uuid import uuid4

        result = await LicenseService(session).bulk_update(
            [(first.id, {"plan": "Max"}), (uuid4(), {"plan": "Max"}), (second.id, {"plan": "Max"})]
        )
        assert result.successful == 2
        assert result.results[1].error == "not_found"

    async def test_bulk_delete(self, session, license_factory) -> None:
        free = await license_factory()
        busy = await license_factory()
        await AssignmentService(session).assign_license(busy.id, "user-1")

        result = await LicenseService(session).bulk_delete([free.id, busy.id], reason="Cleanup")
        assert result.successful == 1
        assert result.results[1].error == "business_rule_violation"

    async def test_bulk_renew(self, session, license_factory) -> None:
        lapsed = await license_factory(
            status="expired", expires_at=datetime.now(UTC) - timedelta(days=10)
        )
        revoked = await license_factory(status="revoked")
        service = LicenseService(session)

        result = await service.bulk_renew([lapsed.id, revoked.id], "admin-1")

        assert result.total == 2
        assert result.successful == 1
        assert result.results[1].error == "business_rule_violation"
        renewed = await service.get_license(lapsed.id)
        assert renewed.status == LicenseStatus.ACTIVE
        assert renewed.renewal_history[-1]["reason"] == "Bulk renewal"

    async def test_bulk_expire(self, session, license_factory) -> None:
        active = await license_factory()
        already_expired = await license_factory(
            status="expired", expires_at=datetime.now(UTC) - timedelta(days=3)
        )
        no_expiry = await license_factory(status="pending", expires_at=None)
        service = LicenseService(session)

        result = await service.bulk_expire(
            [active.id, already_expired.id, no_expiry.id], "admin-1", "Contract ended"
        )

        assert result.successful == 1
        assert [r.success for r in result.results] == [True, False, False]
        assert (await service.get_license(active.id)).status == LicenseStatus.EXPIRED
        events = await AuditService(session).get_entity_history(EntityType.LICENSE, active.id)
        assert events[0].type == AuditEventType.LICENSE_STATUS_CHANGED


class TestLifecycleStatus:
    """Per-license lifecycle view."""

    async def test_active_license(self, session, license_factory) -> None:
        now = datetime.now(UTC)
        license_orm = await license_factory(
            expires_at=now + timedelta(days=10), renewal_reminders_sent=["30days"]
        )

        view = await LicenseService(session).get_lifecycle_status(license_orm.id, now)

        assert view.status == LicenseStatus.ACTIVE
        assert view.allowed_targets == sorted(
            [LicenseStatus.EXPIRING, LicenseStatus.EXPIRED, LicenseStatus.REVOKED, LicenseStatus.CANCEL]
        )
        assert view.is_terminal is False
        assert view.days_until_expiry == 10
        assert view.is_expiring_soon is True
        assert view.is_in_grace_period is False
        assert view.should_be_suspended is False
        assert view.renewal_reminders_sent == [ReminderWindow.THIRTY_DAYS]

    @pytest.mark.parametrize(
        ("days_expired", "in_grace", "suspend"),
        [(5, True, False), (45, False, True)],
    )
    async def test_expired_license(
        self, session, license_factory, days_expired: int, in_grace: bool, suspend: bool
    ) -> None:
        """Grace period and suspension flags follow the days since expiry."""
        now = datetime.now(UTC)
        license_orm = await license_factory(
            status="expired", expires_at=now - timedelta(days=days_expired)
        )

        view = await LicenseService(session).get_lifecycle_status(license_orm.id, now)

        assert view.is_expired is True
        assert view.is_in_grace_period is in_grace
        assert view.should_be_suspended is suspend
        assert view.allowed_targets == sorted([LicenseStatus.ACTIVE, LicenseStatus.REVOKED])
        assert view.grace_period_end == license_orm.expires_at + timedelta(days=30)

    async def test_revoked_license_is_terminal(self, session, license_factory) -> None:
        license_orm = await license_factory(status="revoked")
        view = await LicenseService(session).get_lifecycle_status(license_orm.id)
        assert view.allowed_targets == []
        assert view.is_terminal is True

    async def test_missing_license(self, session) -> None:
        from uuid import uuid4

        with pytest.raises(LicenseNotFoundError):
            await LicenseService(session).get_lifecycle_status(uuid4())


class TestQueries:
    """Listing, statistics and attention list."""

    async def test_list_filters_and_sorting(self, session, license_factory) -> None:
        await license_factory(key="ALPHA", dba="Corner Cafe", status="active")
        await license_factory(key="BETA", dba="Harbor Books", status="expired")
        await license_factory(key="GAMMA", dba="Corner Bakery", status="active")
        service = LicenseService(session)

        licenses, total = await service.list_licenses(
            LicenseFilters(search="corner"), sort_by="key", sort_dir="asc"
        )
        assert total == 2
        assert [lic.key for lic in licenses] == ["ALPHA", "GAMMA"]

        licenses, total = await service.list_licenses(LicenseFilters(statuses=["expired"]))
        assert [lic.key for lic in licenses] == ["BETA"]

    async def test_search_treats_wildcards_literally(self, session, license_factory) -> None:
        await license_factory(key="A%B")
        await license_factory(key="AXB")
        licenses, total = await LicenseService(session).list_licenses(LicenseFilters(search="A%B"))
        assert total == 1
        assert licenses[0].key == "A%B"

    async def test_pagination(self, session, license_factory) -> None:
        for _ in range(5):
            await license_factory()
        licenses, total = await LicenseService(session).list_licenses(
            sort_by="key", sort_dir="asc", page=2, page_size=2
        )
        assert total == 5
        assert [lic.key for lic in licenses] == ["LIC-0003", "LIC-0004"]

    async def test_utilization_and_seat_filters(self, session, license_factory) -> None:
        await license_factory(key="FULL", seats_total=2, seats_used=2)
        await license_factory(key="HALF", seats_total=4, seats_used=2)
        await license_factory(key="EMPTY", seats_total=4, seats_used=0)
        service = LicenseService(session)

        licenses, _ = await service.list_licenses(LicenseFilters(utilization_min=50))
        assert {lic.key for lic in licenses} == {"FULL", "HALF"}

        licenses, _ = await service.list_licenses(LicenseFilters(has_available_seats=False))
        assert [lic.key for lic in licenses] == ["FULL"]

    async def test_utilization_column_stored_by_database(
        self, session, license_factory
    ) -> None:
        """The stored column tracks seat counts and drives range filters and sorting."""
        third = await license_factory(key="THIRD", seats_total=3, seats_used=1)
        await license_factory(key="FULL", seats_total=2, seats_used=2)
        await license_factory(key="EMPTY", seats_total=4, seats_used=0)
        service = LicenseService(session)

        await session.refresh(third)
        assert third.utilization_percent == Decimal("33.33")

        licenses, _ = await service.list_licenses(
            LicenseFilters(utilization_min=30, utilization_max=40)
        )
        assert [lic.key for lic in licenses] == ["THIRD"]

        licenses, _ = await service.list_licenses(sort_by="utilization", sort_dir="desc")
        assert [lic.key for lic in licenses] == ["FULL", "THIRD", "EMPTY"]

        third.seats_used = 3
        await session.commit()
        await session.refresh(third)
        assert third.utilization_percent == Decimal("100.00")

    async def test_stats(self, session, license_factory) -> None:
        await license_factory(seats_total=4, seats_used=1, status="active")
        await license_factory(seats_total=2, seats_used=2, status="expired")

        stats = await LicenseService(session).get_stats()

        assert stats["total"] == 2
        assert stats["by_status"]["active"] == 1
        assert stats["by_status"]["expired"] == 1
        assert stats["by_status"]["revoked"] == 0
        assert stats["seats_total"] == 6
        assert stats["seats_used"] == 3
        assert stats["average_utilization"] == 62.5

    async def test_requiring_attention(self, session, license_factory) -> None:
        now = datetime.now(UTC)
        await license_factory(key="SOON", expires_at=now + timedelta(days=5))
        await license_factory(key="GRACE", status="expired", expires_at=now - timedelta(days=5))
        await license_factory(
            key="LAPSED", status="expired", expires_at=now - timedelta(days=45)
        )
        await license_factory(key="LATER", expires_at=now + timedelta(days=200))

        items = await LicenseService(session).get_licenses_requiring_attention(30, now)

        reasons = {item.license.key: item.reasons for item in items}
        assert reasons == {
            "LAPSED": ["suspension_due"],
            "GRACE": ["in_grace_period"],
            "SOON": ["expiring_soon"],
        }
