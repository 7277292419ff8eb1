"""Lifecycle policy: renewal reminders, expiring marks and auto-suspension.

``evaluate_license`` decides what should happen to one license and has no
side effects. ``LifecyclePolicyEngine`` applies those decisions license by
license, each in its own transaction, and hands reminder requests to the
notifier only after the corresponding write is committed.
"""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from licence_admin.config import Settings, get_settings
from licence_admin.exceptions import LicenceAdminError
from licence_admin.models.domain.audit import AuditEventType, EntityType
from licence_admin.models.domain.license import (
    EXPIRING_SOON_DAYS,
    License,
    LicenseStatus,
    ReminderWindow,
)
from licence_admin.models.domain.state_machine import (
    TransitionContext,
    check_transition,
    plan_transition,
)
from licence_admin.models.orm.license import LicenseORM
from licence_admin.repositories.license_repository import LicenseRepository
from licence_admin.services.audit_service import AuditService
from licence_admin.services.notification_service import ReminderNotifier, get_reminder_notifier
from licence_admin.utils.secure_logging import log_error, log_warning

logger = logging.getLogger(__name__)

LIFECYCLE_ACTOR = "system:lifecycle"
SUSPENSION_REASON = "Auto-suspended due to expiration and grace period end"
HISTORY_AUTO_SUSPENDED = "auto_suspended"
NOTIFIER_TIMEOUT_SECONDS = 60.0

# (window, lower bound exclusive, upper bound inclusive) in days until expiry
REMINDER_BANDS: tuple[tuple[ReminderWindow, int, int], ...] = (
    (ReminderWindow.THIRTY_DAYS, 7, 30),
    (ReminderWindow.SEVEN_DAYS, 1, 7),
    (ReminderWindow.ONE_DAY, 0, 1),
)

# Statuses that receive renewal reminders
REMINDER_STATUSES = frozenset({LicenseStatus.ACTIVE, LicenseStatus.EXPIRING})

# Statuses never auto-suspended: not yet in use
UNSUSPENDABLE_STATUSES = frozenset({LicenseStatus.DRAFT, LicenseStatus.PENDING})


def reminder_window_for(days_until_expiry: int | None) -> ReminderWindow | None:
    """Reminder window whose band contains ``days_until_expiry``."""
    if days_until_expiry is None:
        return None
    for window, lower, upper in REMINDER_BANDS:
        if lower < days_until_expiry <= upper:
            return window
    return None


class PolicyDecision(BaseModel):
    """What the policy wants done to one license."""

    license_id: UUID | None = None
    days_until_expiry: int | None = None
    reminder: ReminderWindow | None = None
    mark_expiring: bool = False
    suspend: bool = False

    @property
    def has_actions(self) -> bool:
        return self.reminder is not None or self.mark_expiring or self.suspend


class ReminderRequest(BaseModel):
    """A reminder to hand to the notifier once its write is committed."""

    license_id: UUID
    license_key: str
    window: ReminderWindow
    expires_at: datetime | None = None


class PolicyPassSummary(BaseModel):
    """Totals of one policy pass."""

    started_at: datetime
    finished_at: datetime | None = None
    evaluated: int = 0
    reminders_scheduled: int = 0
    reminders_delivered: int = 0
    marked_expiring: int = 0
    suspended: int = 0
    failed: int = 0
    requests: list[ReminderRequest] = Field(default_factory=list)


def evaluate_license(
    license: License,
    now: datetime | None = None,
    mark_expiring: bool = True,
) -> PolicyDecision:
    """Decide reminders, expiring mark and suspension for one license.

    Args:
        license: License to evaluate
        now: Evaluation time (defaults to the current time)
        mark_expiring: Whether active licenses close to expiry should move to
            ``expiring``

    Returns:
        PolicyDecision; empty for revoked licenses
    """
    now = now or datetime.now(UTC)
    days = license.days_until_expiry(now)
    decision = PolicyDecision(license_id=license.id, days_until_expiry=days)

    if license.status == LicenseStatus.REVOKED:
        return decision

    if license.status in REMINDER_STATUSES:
        window = reminder_window_for(days)
        if window is not None and not license.has_reminder_been_sent(window):
            decision.reminder = window

    if (
        mark_expiring
        and license.status == LicenseStatus.ACTIVE
        and license.is_expiring_soon(EXPIRING_SOON_DAYS, now)
    ):
        decision.mark_expiring = True

    if (
        license.suspended_at is None
        and license.status not in UNSUSPENDABLE_STATUSES
        and license.should_be_suspended(now)
    ):
        decision.suspend = True

    return decision


class LifecyclePolicyEngine:
    """Applies lifecycle decisions to stored licenses."""

    def __init__(
        self,
        session: AsyncSession,
        notifier: ReminderNotifier | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize engine with database session and reminder notifier."""
        self.session = session
        self.settings = settings or get_settings()
        self.notifier = notifier or get_reminder_notifier(self.settings)
        self.license_repo = LicenseRepository(session)
        self.audit_service = AuditService(session)

    async def run_policy_pass(self, now: datetime | None = None) -> PolicyPassSummary:
        """Evaluate every non-revoked license and apply what is due.

        Licenses are read page by page. Each license is locked, updated and
        committed on its own; a failure rolls back only that license. Reminder
        requests go to the notifier after all writes are committed.

        Args:
            now: Evaluation time (defaults to the current time)

        Returns:
            PolicyPassSummary with counts and the dispatched reminder requests
        """
        now = now or datetime.now(UTC)
        summary = PolicyPassSummary(started_at=datetime.now(UTC))
        after_id: UUID | None = None

        while True:
            page = await self.license_repo.get_non_terminal_page(
                after_id, self.settings.lifecycle_batch_size
            )
            if not page:
                break
            license_ids = [row.id for row in page]
            # End the read transaction before per-license work
            await self.session.commit()

            for license_id in license_ids:
                summary.evaluated += 1
                try:
                    requests = await self._apply_policy(license_id, now, summary)
                    await self.session.commit()
                except (LicenceAdminError, SQLAlchemyError) as e:
                    await self.session.rollback()
                    summary.failed += 1
                    log_error(logger, f"Lifecycle policy failed for license {license_id}", e)
                    continue
                summary.requests.extend(requests)

            after_id = license_ids[-1]

        summary.reminders_delivered = await self.dispatch_reminders(summary.requests)
        summary.finished_at = datetime.now(UTC)
        logger.info(
            f"Lifecycle pass evaluated {summary.evaluated} licenses: "
            f"{summary.reminders_scheduled} reminders, {summary.marked_expiring} expiring, "
            f"{summary.suspended} suspended, {summary.failed} failed"
        )
        return summary

    async def _apply_policy(
        self,
        license_id: UUID,
        now: datetime,
        summary: PolicyPassSummary,
    ) -> list[ReminderRequest]:
        license_orm = await self.license_repo.get_for_update(license_id)
        if license_orm is None:
            return []

        license = License.model_validate(license_orm)
        decision = evaluate_license(license, now, self.settings.lifecycle_mark_expiring)
        if not decision.has_actions:
            return []

        requests: list[ReminderRequest] = []
        if decision.reminder is not None:
            requests.append(await self._schedule_reminder(license_orm, decision, now))
            summary.reminders_scheduled += 1
        if decision.mark_expiring and await self._mark_expiring(license_orm, now):
            summary.marked_expiring += 1
        if decision.suspend:
            await self._suspend(license_orm, now)
            summary.suspended += 1
        return requests

    async def _schedule_reminder(
        self,
        license_orm: LicenseORM,
        decision: PolicyDecision,
        now: datetime,
    ) -> ReminderRequest:
        window = decision.reminder
        license = License.model_validate(license_orm)
        entry = {
            "action": f"reminder_sent_{window.value}",
            "changed_by": LIFECYCLE_ACTOR,
            "reason": f"{decision.days_until_expiry} days until expiry",
            "timestamp": now.isoformat(),
        }
        await self.license_repo.apply_changes(
            license_orm,
            {
                "renewal_reminders_sent": [*license.renewal_reminders_sent, window],
                "last_renewal_reminder": now,
                "renewal_history": [*license.renewal_history, entry],
            },
        )
        await self.audit_service.record_event(
            AuditEventType.LICENSE_REMINDER_SCHEDULED,
            LIFECYCLE_ACTOR,
            license_orm.id,
            EntityType.LICENSE,
            {
                "window": window,
                "days_until_expiry": decision.days_until_expiry,
                "expires_at": license.expires_at,
            },
        )
        return ReminderRequest(
            license_id=license_orm.id,
            license_key=license_orm.key,
            window=window,
            expires_at=license.expires_at,
        )

    async def _mark_expiring(self, license_orm: LicenseORM, now: datetime) -> bool:
        license = License.model_validate(license_orm)
        context = TransitionContext(changed_by=LIFECYCLE_ACTOR, reason="Expiring soon")
        if not check_transition(license, LicenseStatus.EXPIRING, context, now).valid:
            return False

        result = plan_transition(license, LicenseStatus.EXPIRING, context, now)
        await self.license_repo.apply_changes(license_orm, result.changes)
        await self.audit_service.record_event(
            AuditEventType.LICENSE_STATUS_CHANGED,
            LIFECYCLE_ACTOR,
            license_orm.id,
            EntityType.LICENSE,
            {
                "from_status": result.from_status,
                "to_status": result.to_status,
                "reason": context.reason,
                "force": False,
                "warnings": result.warnings,
            },
        )
        return True

    async def _suspend(self, license_orm: LicenseORM, now: datetime) -> None:
        license = License.model_validate(license_orm)
        context = TransitionContext(changed_by=LIFECYCLE_ACTOR, reason=SUSPENSION_REASON)
        from_status = license.status

        changes: dict[str, Any] = {}
        history = list(license.renewal_history)
        if license.status != LicenseStatus.EXPIRED:
            if check_transition(license, LicenseStatus.EXPIRED, context, now).valid:
                result = plan_transition(license, LicenseStatus.EXPIRED, context, now)
                changes.update(result.changes)
                history = list(result.changes["renewal_history"])
            else:
                log_warning(
                    logger,
                    f"License {license.key} suspended without status change from {license.status}",
                )

        history.append(
            {
                "action": HISTORY_AUTO_SUSPENDED,
                "changed_by": LIFECYCLE_ACTOR,
                "reason": SUSPENSION_REASON,
                "timestamp": now.isoformat(),
            }
        )
        changes.update(
            suspension_reason=SUSPENSION_REASON,
            suspended_at=now,
            renewal_history=history,
        )
        await self.license_repo.apply_changes(license_orm, changes)
        await self.audit_service.record_event(
            AuditEventType.LICENSE_SUSPENDED,
            LIFECYCLE_ACTOR,
            license_orm.id,
            EntityType.LICENSE,
            {
                "from_status": from_status,
                "to_status": license_orm.status,
                "reason": SUSPENSION_REASON,
                "expires_at": license.expires_at,
                "grace_period_end": license.derived_grace_period_end,
            },
        )
        logger.info(f"Auto-suspended license {license.key}")

    async def dispatch_reminders(self, requests: list[ReminderRequest]) -> int:
        """Hand committed reminder requests to the notifier.

        Delivery failures are logged and counted out; they never undo the
        recorded reminder.

        Returns:
            Number of reminders the notifier accepted
        """
        delivered = 0
        for request in requests:
            try:
                sent = await asyncio.wait_for(
                    self.notifier.send_reminder(request.license_id, request.window),
                    timeout=NOTIFIER_TIMEOUT_SECONDS,
                )
            except TimeoutError:
                log_warning(logger, f"Reminder for license {request.license_key} timed out")
                continue
            except Exception as e:
                log_warning(logger, f"Reminder for license {request.license_key} failed", e)
                continue
            if sent:
                delivered += 1
            else:
                log_warning(logger, f"Reminder for license {request.license_key} not delivered")
        return delivered
