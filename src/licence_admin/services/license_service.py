"""License service for business logic."""

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from licence_admin.config import get_settings
from licence_admin.exceptions import (
    BusinessRuleViolation,
    LicenceAdminError,
    LicenseNotFoundError,
    ValidationError,
)
from licence_admin.models.domain.audit import AuditEventType, EntityType
from licence_admin.models.domain.license import (
    TERM_LENGTH_DAYS,
    License,
    LicenseStatus,
    ReminderWindow,
)
from licence_admin.models.domain.state_machine import (
    TransitionContext,
    TransitionResult,
    allowed_targets,
    plan_transition,
)
from licence_admin.models.domain.validation import coerce_datetime, validate_license_data
from licence_admin.models.orm.license import LicenseORM
from licence_admin.repositories.assignment_repository import AssignmentRepository
from licence_admin.repositories.license_repository import LicenseFilters, LicenseRepository
from licence_admin.services.audit_service import AuditService

logger = logging.getLogger(__name__)

# Fields callers may never write directly
PROTECTED_FIELDS = frozenset({
    "id",
    "seats_used",
    "status",
    "grace_period_end",
    "renewal_due_date",
    "renewal_history",
    "renewal_reminders_sent",
    "created_at",
    "updated_at",
    "created_by",
    "updated_by",
})

HISTORY_LICENSE_RENEWED = "license_renewed"


class TransitionOutcome(BaseModel):
    """A license after a status transition, with any warnings raised."""

    license: License
    from_status: LicenseStatus
    to_status: LicenseStatus
    changed: bool
    warnings: list[str] = Field(default_factory=list)


class BulkItemResult(BaseModel):
    """Outcome of one item of a bulk operation."""

    index: int
    success: bool
    license_id: UUID | None = None
    error: str | None = None
    message: str | None = None


class BulkResult(BaseModel):
    """Outcome of a bulk operation."""

    total: int
    successful: int
    failed: int
    results: list[BulkItemResult]


class AttentionItem(BaseModel):
    """A license that needs an administrator's attention."""

    license: License
    reasons: list[str]
    days_until_expiry: int | None = None


class LifecycleStatus(BaseModel):
    """Where a license stands in its lifecycle at a given instant."""

    license_id: UUID
    license_key: str
    status: LicenseStatus
    allowed_targets: list[LicenseStatus]
    is_terminal: bool
    is_expired: bool
    is_expiring_soon: bool
    is_in_grace_period: bool
    should_be_suspended: bool
    days_until_expiry: int | None = None
    expires_at: datetime | None = None
    grace_period_end: datetime | None = None
    auto_suspend_enabled: bool
    grace_period_days: int
    renewal_reminders_sent: list[ReminderWindow] = Field(default_factory=list)
    last_renewal_reminder: datetime | None = None
    renewal_due_date: datetime | None = None
    suspended_at: datetime | None = None
    recent_renewal_history: list[dict[str, Any]] = Field(default_factory=list)


def _diff(license_orm: LicenseORM, changes: dict[str, Any]) -> dict[str, Any]:
    """Keep only changes that differ from the stored values."""
    return {key: value for key, value in changes.items() if getattr(license_orm, key) != value}


class LicenseService:
    """Service for license operations."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize service with database session."""
        self.session = session
        self.license_repo = LicenseRepository(session)
        self.assignment_repo = AssignmentRepository(session)
        self.audit_service = AuditService(session)

    async def _get_orm(self, license_id: UUID, for_update: bool = False) -> LicenseORM:
        if for_update:
            license_orm = await self.license_repo.get_for_update(license_id)
        else:
            license_orm = await self.license_repo.get(license_id)
        if license_orm is None:
            raise LicenseNotFoundError(str(license_id))
        return license_orm

    async def get_license(self, license_id: UUID) -> License:
        """Get a license by ID.

        Raises:
            LicenseNotFoundError: If the license does not exist
        """
        return License.model_validate(await self._get_orm(license_id))

    async def get_lifecycle_status(
        self, license_id: UUID, now: datetime | None = None
    ) -> LifecycleStatus:
        """Describe a license's lifecycle position and the statuses it can move to.

        Args:
            license_id: License UUID
            now: Evaluation instant (defaults to current UTC time)

        Raises:
            LicenseNotFoundError: If the license does not exist
        """
        now = now or datetime.now(UTC)
        license = await self.get_license(license_id)
        targets = allowed_targets(license.status)
        return LifecycleStatus(
            license_id=license_id,
            license_key=license.key,
            status=license.status,
            allowed_targets=targets,
            is_terminal=not targets,
            is_expired=license.is_expired(now),
            is_expiring_soon=license.is_expiring_soon(now=now),
            is_in_grace_period=license.is_in_grace_period(now),
            should_be_suspended=license.should_be_suspended(now),
            days_until_expiry=license.days_until_expiry(now),
            expires_at=license.expires_at,
            grace_period_end=license.grace_period_end or license.derived_grace_period_end,
            auto_suspend_enabled=license.auto_suspend_enabled,
            grace_period_days=license.grace_period_days,
            renewal_reminders_sent=license.renewal_reminders_sent,
            last_renewal_reminder=license.last_renewal_reminder,
            renewal_due_date=license.renewal_due_date,
            suspended_at=license.suspended_at,
            recent_renewal_history=license.renewal_history[-5:],
        )

    async def list_licenses(
        self,
        filters: LicenseFilters | None = None,
        sort_by: str = "created_at",
        sort_dir: str = "desc",
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[License], int]:
        """List licenses with filters and pagination.

        Returns:
            Tuple of (licenses, total count)
        """
        rows, total = await self.license_repo.get_with_filters(
            filters=filters,
            sort_by=sort_by,
            sort_dir=sort_dir,
            offset=(page - 1) * page_size,
            limit=page_size,
        )
        return [License.model_validate(row) for row in rows], total

    async def get_stats(self, filters: LicenseFilters | None = None) -> dict[str, Any]:
        """Get license statistics honouring the listing filters."""
        return await self.license_repo.get_stats(filters)

    async def create_license(self, data: dict[str, Any], actor_id: str | None = None) -> License:
        """Create a license from manual input.

        ``seats_used`` is ignored; it starts at zero and is owned by the
        assignment ledger.

        Args:
            data: License attributes
            actor_id: Acting user

        Returns:
            The created license

        Raises:
            ValidationError: If the input is malformed
            BusinessRuleViolation: If the key is already taken
        """
        payload = {k: v for k, v in data.items() if k not in PROTECTED_FIELDS or k == "status"}
        payload["seats_used"] = 0
        if payload.get("grace_period_days") is None:
            payload["grace_period_days"] = get_settings().default_grace_period_days

        result = validate_license_data(payload)
        if not result.is_valid:
            raise ValidationError(result.errors)
        license = result.license

        if license.status == LicenseStatus.ACTIVE and license.expires_at is None:
            raise ValidationError(["Active license must have an expiration date"])

        if await self.license_repo.key_exists(license.key):
            raise BusinessRuleViolation("License key already exists", {"key": license.key})

        row = license.model_dump(
            exclude={"id", "created_at", "updated_at"},
            mode="python",
        )
        row["created_by"] = actor_id
        row["updated_by"] = actor_id
        license_orm = await self.license_repo.create(**_storable(row))

        await self.audit_service.record_event(
            AuditEventType.LICENSE_CREATED,
            actor_id,
            license_orm.id,
            EntityType.LICENSE,
            {
                "key": license_orm.key,
                "product": license_orm.product,
                "status": license_orm.status,
                "corrections": result.corrections,
            },
        )
        logger.info(f"Created license {license_orm.key}")
        return License.model_validate(license_orm)

    async def update_license(
        self,
        license_id: UUID,
        changes: dict[str, Any],
        actor_id: str | None = None,
    ) -> License:
        """Apply a partial update.

        Status changes go through ``transition_status``; ``seats_used`` is not
        writable. Unchanged values produce no write and no audit event.

        Raises:
            LicenseNotFoundError: If the license does not exist
            ValidationError: If a field is protected or the result is invalid
            BusinessRuleViolation: If seats_total drops below seats_used
        """
        protected = sorted(set(changes) & PROTECTED_FIELDS)
        if protected:
            raise ValidationError([f"{name} cannot be updated directly" for name in protected])

        license_orm = await self._get_orm(license_id, for_update=True)
        current = License.model_validate(license_orm).model_dump()

        seats_total = changes.get("seats_total")
        if isinstance(seats_total, int) and seats_total < license_orm.seats_used:
            raise BusinessRuleViolation(
                "seats_total cannot be lower than seats in use",
                {"seats_total": seats_total, "seats_used": license_orm.seats_used},
            )

        result = validate_license_data({**current, **changes})
        if not result.is_valid:
            raise ValidationError(result.errors)

        validated = result.license.model_dump()
        new_values = {key: validated[key] for key in changes if key in validated}
        # A date swap touches both fields even when only one was supplied
        for key in ("starts_at", "expires_at"):
            if key in validated:
                new_values[key] = validated[key]

        effective = _diff(license_orm, _storable(new_values))
        if not effective:
            return License.model_validate(license_orm)

        before = {key: getattr(license_orm, key) for key in effective}
        await self.license_repo.apply_changes(license_orm, {**effective, "updated_by": actor_id})

        await self.audit_service.record_event(
            AuditEventType.LICENSE_UPDATED,
            actor_id,
            license_orm.id,
            EntityType.LICENSE,
            {
                "changes": {
                    key: {"old": before[key], "new": value} for key, value in effective.items()
                },
                "corrections": result.corrections,
            },
        )
        return License.model_validate(license_orm)

    async def _apply_transition(
        self,
        license_orm: LicenseORM,
        to_status: LicenseStatus | None,
        context: TransitionContext,
        event_type: str,
        now: datetime,
        extra_changes: dict[str, Any] | None = None,
        extra_metadata: dict[str, Any] | None = None,
    ) -> TransitionResult:
        license = License.model_validate(license_orm)
        if extra_changes:
            license = license.model_copy(update=extra_changes)
        if to_status is None:
            # Status stays as is; only the extra changes are written
            result = TransitionResult(
                from_status=license.status, to_status=license.status, changed=False
            )
        else:
            result = plan_transition(license, to_status, context, now)

        changes = {**(extra_changes or {}), **result.changes}
        if not changes:
            return result

        changes["updated_by"] = context.changed_by
        await self.license_repo.apply_changes(license_orm, changes)
        await self.audit_service.record_event(
            event_type,
            context.changed_by,
            license_orm.id,
            EntityType.LICENSE,
            {
                "from_status": result.from_status,
                "to_status": result.to_status,
                "reason": context.reason,
                "force": context.force,
                "warnings": result.warnings,
                **(extra_metadata or {}),
            },
        )
        return result

    async def transition_status(
        self,
        license_id: UUID,
        to_status: LicenseStatus,
        context: TransitionContext | None = None,
    ) -> TransitionOutcome:
        """Move a license to a new status.

        Args:
            license_id: License UUID
            to_status: Requested status
            context: Actor, reason and override flags

        Returns:
            TransitionOutcome with the updated license and any warnings

        Raises:
            LicenseNotFoundError: If the license does not exist
            BusinessRuleViolation: If the transition is not allowed
        """
        context = context or TransitionContext()
        license_orm = await self._get_orm(license_id, for_update=True)
        result = await self._apply_transition(
            license_orm,
            to_status,
            context,
            AuditEventType.LICENSE_STATUS_CHANGED,
            datetime.now(UTC),
        )
        return TransitionOutcome(
            license=License.model_validate(license_orm),
            from_status=result.from_status,
            to_status=result.to_status,
            changed=result.changed,
            warnings=result.warnings,
        )

    async def renew_license(
        self,
        license_id: UUID,
        actor_id: str | None = None,
        new_expires_at: datetime | None = None,
        reason: str | None = None,
    ) -> TransitionOutcome:
        """Renew a license.

        Without an explicit date the expiry is extended by one term from the
        later of the current expiry and now. Reminders and suspension are
        cleared; expired, expiring and cancelled licenses become active.

        Raises:
            LicenseNotFoundError: If the license does not exist
            ValidationError: If the new expiry is not in the future
            BusinessRuleViolation: If the license is revoked
        """
        now = datetime.now(UTC)
        license_orm = await self._get_orm(license_id, for_update=True)
        license = License.model_validate(license_orm)

        if license.status == LicenseStatus.REVOKED:
            raise BusinessRuleViolation(
                "Cannot renew a revoked license", {"license_id": str(license_id)}
            )

        if new_expires_at is None:
            base = max(license.expires_at or now, now)
            new_expires_at = base + timedelta(days=TERM_LENGTH_DAYS[license.term])
        else:
            new_expires_at = coerce_datetime(new_expires_at)
            if new_expires_at <= now:
                raise ValidationError(["New expiration date must be in the future"])
            if license.starts_at and new_expires_at <= license.starts_at:
                raise ValidationError(["New expiration date must be after the start date"])

        renewal_entry = {
            "action": HISTORY_LICENSE_RENEWED,
            "previous_expires_at": license.expires_at.isoformat() if license.expires_at else None,
            "new_expires_at": new_expires_at.isoformat(),
            "renewed_by": actor_id,
            "reason": reason,
            "timestamp": now.isoformat(),
        }
        extra_changes: dict[str, Any] = {
            "expires_at": new_expires_at,
            "renewal_reminders_sent": [],
            "suspension_reason": None,
            "suspended_at": None,
            "renewal_history": [*license.renewal_history, renewal_entry],
        }

        target: LicenseStatus | None = None
        if license.status in (LicenseStatus.EXPIRED, LicenseStatus.EXPIRING, LicenseStatus.CANCEL):
            target = LicenseStatus.ACTIVE

        context = TransitionContext(changed_by=actor_id, reason=reason, renewal=True)
        result = await self._apply_transition(
            license_orm,
            target,
            context,
            AuditEventType.LICENSE_RENEWED,
            now,
            extra_changes=extra_changes,
            extra_metadata={
                "previous_expires_at": license.expires_at,
                "new_expires_at": new_expires_at,
            },
        )
        logger.info(f"Renewed license {license.key} until {new_expires_at.isoformat()}")
        return TransitionOutcome(
            license=License.model_validate(license_orm),
            from_status=result.from_status,
            to_status=result.to_status,
            changed=True,
            warnings=result.warnings,
        )

    async def delete_license(
        self,
        license_id: UUID,
        actor_id: str | None = None,
        reason: str | None = None,
    ) -> TransitionOutcome:
        """Soft-delete a license by revoking it.

        Raises:
            LicenseNotFoundError: If the license does not exist
            BusinessRuleViolation: If seats are still assigned
        """
        license_orm = await self._get_orm(license_id, for_update=True)
        if license_orm.status == LicenseStatus.REVOKED:
            # Already deleted
            return TransitionOutcome(
                license=License.model_validate(license_orm),
                from_status=LicenseStatus.REVOKED,
                to_status=LicenseStatus.REVOKED,
                changed=False,
            )
        if await self.assignment_repo.has_active_assignments(license_id):
            raise BusinessRuleViolation(
                "Cannot delete license with active assignments",
                {"license_id": str(license_id)},
            )

        context = TransitionContext(changed_by=actor_id, reason=reason or "License deleted")
        result = await self._apply_transition(
            license_orm,
            LicenseStatus.REVOKED,
            context,
            AuditEventType.LICENSE_DELETED,
            datetime.now(UTC),
        )
        return TransitionOutcome(
            license=License.model_validate(license_orm),
            from_status=result.from_status,
            to_status=result.to_status,
            changed=result.changed,
            warnings=result.warnings,
        )

    async def _run_bulk(
        self,
        items: list[Any],
        operation: Callable[[Any], Awaitable[License | TransitionOutcome]],
    ) -> BulkResult:
        results: list[BulkItemResult] = []
        for index, item in enumerate(items):
            try:
                async with self.session.begin_nested():
                    outcome = await operation(item)
                license = outcome.license if isinstance(outcome, TransitionOutcome) else outcome
                results.append(BulkItemResult(index=index, success=True, license_id=license.id))
            except LicenceAdminError as e:
                results.append(
                    BulkItemResult(index=index, success=False, error=e.code, message=e.message)
                )

        successful = sum(1 for r in results if r.success)
        return BulkResult(
            total=len(items),
            successful=successful,
            failed=len(items) - successful,
            results=results,
        )

    async def bulk_create(
        self, items: list[dict[str, Any]], actor_id: str | None = None
    ) -> BulkResult:
        """Create several licenses; each item succeeds or fails on its own."""
        return await self._run_bulk(items, lambda data: self.create_license(data, actor_id))

    async def bulk_update(
        self, items: list[tuple[UUID, dict[str, Any]]], actor_id: str | None = None
    ) -> BulkResult:
        """Update several licenses given as ``(license_id, changes)`` pairs."""
        return await self._run_bulk(
            items, lambda item: self.update_license(item[0], item[1], actor_id)
        )

    async def bulk_delete(
        self, license_ids: list[UUID], actor_id: str | None = None, reason: str | None = None
    ) -> BulkResult:
        """Soft-delete several licenses."""
        return await self._run_bulk(
            license_ids, lambda license_id: self.delete_license(license_id, actor_id, reason)
        )

    async def bulk_renew(
        self, license_ids: list[UUID], actor_id: str | None = None, reason: str | None = None
    ) -> BulkResult:
        """Renew several licenses by one term each."""
        reason = reason or "Bulk renewal"
        return await self._run_bulk(
            license_ids,
            lambda license_id: self.renew_license(license_id, actor_id, None, reason),
        )

    async def bulk_expire(
        self, license_ids: list[UUID], actor_id: str | None = None, reason: str | None = None
    ) -> BulkResult:
        """Mark several licenses as expired."""
        context = TransitionContext(changed_by=actor_id, reason=reason or "Bulk expiration")
        return await self._run_bulk(
            license_ids,
            lambda license_id: self.transition_status(
                license_id, LicenseStatus.EXPIRED, context
            ),
        )

    async def get_licenses_requiring_attention(
        self, days: int = 30, now: datetime | None = None
    ) -> list[AttentionItem]:
        """Licenses expiring soon, in their grace period, or due for suspension."""
        now = now or datetime.now(UTC)
        rows = await self.license_repo.get_expiring_before(now + timedelta(days=days))

        items = []
        for row in rows:
            license = License.model_validate(row)
            reasons = []
            if license.is_expiring_soon(days, now):
                reasons.append("expiring_soon")
            if license.is_in_grace_period(now):
                reasons.append("in_grace_period")
            if license.should_be_suspended(now) and license.suspended_at is None:
                reasons.append("suspension_due")
            if reasons:
                items.append(
                    AttentionItem(
                        license=license,
                        reasons=reasons,
                        days_until_expiry=license.days_until_expiry(now),
                    )
                )
        return items


def _storable(values: dict[str, Any]) -> dict[str, Any]:
    """Convert enum members to their stored string values."""
    stored = {}
    for key, value in values.items():
        if isinstance(value, StrEnum):
            value = value.value
        elif isinstance(value, list):
            value = [item.value if isinstance(item, StrEnum) else item for item in value]
        stored[key] = value
    return stored
