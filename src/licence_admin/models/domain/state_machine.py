"""License status state machine.

The functions here are pure: they inspect a ``License`` and describe what a
transition would do, without touching storage. Services apply the returned
field changes and record the audit event.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from licence_admin.exceptions import BusinessRuleViolation
from licence_admin.models.domain.license import License, LicenseStatus

logger = logging.getLogger(__name__)

VALID_TRANSITIONS: dict[LicenseStatus, frozenset[LicenseStatus]] = {
    LicenseStatus.DRAFT: frozenset({LicenseStatus.ACTIVE, LicenseStatus.CANCEL}),
    LicenseStatus.ACTIVE: frozenset(
        {
            LicenseStatus.EXPIRING,
            LicenseStatus.EXPIRED,
            LicenseStatus.REVOKED,
            LicenseStatus.CANCEL,
        }
    ),
    LicenseStatus.EXPIRING: frozenset(
        {
            LicenseStatus.ACTIVE,
            LicenseStatus.EXPIRED,
            LicenseStatus.REVOKED,
            LicenseStatus.CANCEL,
        }
    ),
    LicenseStatus.EXPIRED: frozenset({LicenseStatus.ACTIVE, LicenseStatus.REVOKED}),
    LicenseStatus.REVOKED: frozenset(),
    LicenseStatus.CANCEL: frozenset({LicenseStatus.ACTIVE}),
    LicenseStatus.PENDING: frozenset(
        {LicenseStatus.ACTIVE, LicenseStatus.DRAFT, LicenseStatus.CANCEL}
    ),
}

HISTORY_STATUS_CHANGED = "status_changed"


class TransitionContext(BaseModel):
    """Who is asking for a transition, and with which overrides."""

    changed_by: str | None = None
    reason: str | None = None
    force: bool = False
    renewal: bool = False


class TransitionCheck(BaseModel):
    """Outcome of validating a transition without applying it."""

    valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class TransitionResult(BaseModel):
    """A validated transition, ready to be applied."""

    from_status: LicenseStatus
    to_status: LicenseStatus
    changed: bool
    warnings: list[str] = Field(default_factory=list)
    changes: dict[str, Any] = Field(default_factory=dict)
    history_entry: dict[str, Any] | None = None


def is_transition_allowed(from_status: LicenseStatus, to_status: LicenseStatus) -> bool:
    """Check the transition table only."""
    return to_status in VALID_TRANSITIONS.get(from_status, frozenset())


def allowed_targets(from_status: LicenseStatus) -> list[LicenseStatus]:
    """Statuses reachable from ``from_status``, in a stable order."""
    return sorted(VALID_TRANSITIONS.get(from_status, frozenset()))


def check_transition(
    license: License,
    to_status: LicenseStatus,
    context: TransitionContext | None = None,
    now: datetime | None = None,
) -> TransitionCheck:
    """Validate a transition against the table and the per-target rules.

    Args:
        license: License in its current state
        to_status: Requested status
        context: Actor, reason and override flags
        now: Evaluation instant (defaults to current UTC time)

    Returns:
        TransitionCheck with errors (blocking) and warnings (non-blocking)
    """
    context = context or TransitionContext()
    now = now or datetime.now(UTC)
    from_status = license.status

    if not is_transition_allowed(from_status, to_status):
        return TransitionCheck(
            valid=False,
            errors=[f"Invalid status transition from {from_status} to {to_status}"],
        )

    errors: list[str] = []
    warnings: list[str] = []

    if to_status == LicenseStatus.ACTIVE:
        if license.expires_at is None:
            errors.append("Active license must have an expiration date")
        currently_expired = from_status == LicenseStatus.EXPIRED or license.is_expired(now)
        if currently_expired and not (context.renewal or context.force):
            errors.append("Cannot reactivate expired license without renewal")

    elif to_status == LicenseStatus.EXPIRED:
        if license.expires_at is None:
            errors.append("Cannot mark license as expired without an expiration date")

    elif to_status == LicenseStatus.REVOKED:
        if from_status == LicenseStatus.ACTIVE:
            warnings.append("Revoking active license will immediately disable access")
        if not context.reason:
            warnings.append("Consider providing a reason for license revocation")

    elif to_status == LicenseStatus.CANCEL:
        if from_status == LicenseStatus.ACTIVE:
            warnings.append("Cancelling active license will disable future access")
        if not context.reason:
            warnings.append("Consider providing a reason for license cancellation")

    return TransitionCheck(valid=not errors, errors=errors, warnings=warnings)


def plan_transition(
    license: License,
    to_status: LicenseStatus,
    context: TransitionContext | None = None,
    now: datetime | None = None,
) -> TransitionResult:
    """Validate a transition and compute the field changes it implies.

    Raises:
        BusinessRuleViolation: If the transition is not allowed
    """
    context = context or TransitionContext()
    now = now or datetime.now(UTC)
    from_status = license.status

    check = check_transition(license, to_status, context, now)
    if not check.valid:
        raise BusinessRuleViolation(
            "; ".join(check.errors),
            {
                "from_status": str(from_status),
                "to_status": str(to_status),
                "errors": check.errors,
            },
        )

    for warning in check.warnings:
        logger.warning(f"License {license.key}: {warning}")

    history_entry = {
        "action": HISTORY_STATUS_CHANGED,
        "from_status": str(from_status),
        "to_status": str(to_status),
        "changed_by": context.changed_by,
        "reason": context.reason,
        "force": context.force,
        "timestamp": now.isoformat(),
    }

    changes: dict[str, Any] = {
        "status": to_status,
        "renewal_history": [*license.renewal_history, history_entry],
    }
    if to_status == LicenseStatus.ACTIVE and from_status in (
        LicenseStatus.EXPIRED,
        LicenseStatus.CANCEL,
        LicenseStatus.EXPIRING,
    ):
        changes["reactivated_at"] = now
        changes["suspension_reason"] = None
        changes["suspended_at"] = None
    if to_status == LicenseStatus.CANCEL and license.cancel_date is None:
        changes["cancel_date"] = now

    return TransitionResult(
        from_status=from_status,
        to_status=to_status,
        changed=True,
        warnings=check.warnings,
        changes=changes,
        history_entry=history_entry,
    )
