"""License domain model."""

import math
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from enum import StrEnum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_GRACE_PERIOD_DAYS = 30
EXPIRING_SOON_DAYS = 30


class LicenseStatus(StrEnum):
    """License status enum."""

    DRAFT = "draft"
    ACTIVE = "active"
    EXPIRING = "expiring"
    EXPIRED = "expired"
    REVOKED = "revoked"
    CANCEL = "cancel"
    PENDING = "pending"


class LicenseTerm(StrEnum):
    """Billing term."""

    MONTHLY = "monthly"
    YEARLY = "yearly"


class ReminderWindow(StrEnum):
    """Renewal reminder windows, each fired at most once per license."""

    THIRTY_DAYS = "30days"
    SEVEN_DAYS = "7days"
    ONE_DAY = "1day"


class ExternalSyncStatus(StrEnum):
    """Per-record reconciliation outcome."""

    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


# Statuses the lifecycle policy pass never evaluates
TERMINAL_STATUSES = frozenset({LicenseStatus.REVOKED})

TERM_LENGTH_DAYS = {
    LicenseTerm.MONTHLY: 30,
    LicenseTerm.YEARLY: 365,
}


def derive_grace_period_end(
    expires_at: datetime | None, grace_period_days: int | None
) -> datetime | None:
    """Grace period end is always expiry plus the configured number of days."""
    if expires_at is None:
        return None
    days = DEFAULT_GRACE_PERIOD_DAYS if grace_period_days is None else grace_period_days
    return expires_at + timedelta(days=days)


class License(BaseModel):
    """License domain model.

    Carries the computed facts used by the state machine, the assignment
    ledger and the lifecycle policy. All time-dependent predicates accept an
    explicit ``now`` so callers can evaluate against a fixed instant.
    """

    model_config = ConfigDict(from_attributes=True)

    id: UUID | None = None
    key: str
    product: str
    plan: str
    term: LicenseTerm = LicenseTerm.MONTHLY
    seats_total: int = 1
    seats_used: int = 0

    starts_at: datetime | None = None
    expires_at: datetime | None = None
    cancel_date: datetime | None = None
    last_active: datetime | None = None

    status: LicenseStatus = LicenseStatus.PENDING
    renewal_reminders_sent: list[ReminderWindow] = Field(default_factory=list)
    last_renewal_reminder: datetime | None = None
    renewal_due_date: datetime | None = None
    auto_suspend_enabled: bool = True
    grace_period_days: int = DEFAULT_GRACE_PERIOD_DAYS
    grace_period_end: datetime | None = None
    suspension_reason: str | None = None
    suspended_at: datetime | None = None
    reactivated_at: datetime | None = None
    renewal_history: list[dict[str, Any]] = Field(default_factory=list)

    dba: str | None = None
    zip: str | None = None
    email: str | None = None
    notes: str | None = None
    last_payment: Decimal | None = None
    sms_balance: Decimal = Decimal("0")
    sms_purchased: int = 0
    sms_sent: int = 0

    appid: str | None = None
    countid: str | None = None
    mid: str | None = None
    license_type: str | None = None
    package_data: dict[str, Any] | None = None
    sendbat_workspace: str | None = None
    coming_expired: str | None = None
    external_sync_status: ExternalSyncStatus | None = None
    last_external_sync: datetime | None = None
    external_sync_error: str | None = None

    created_by: str | None = None
    updated_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @staticmethod
    def _now(now: datetime | None) -> datetime:
        return now or datetime.now(UTC)

    @property
    def available_seats(self) -> int:
        return max(0, self.seats_total - self.seats_used)

    @property
    def has_available_seats(self) -> bool:
        return self.seats_used < self.seats_total

    @property
    def utilization_percent(self) -> int:
        """Seat utilization rounded half-up to a whole percent."""
        if self.seats_total <= 0:
            return 0
        return math.floor(self.seats_used * 100 / self.seats_total + 0.5)

    @property
    def sms_credits_remaining(self) -> int:
        """Credits computed from purchases; distinct from the stored balance."""
        return max(0, self.sms_purchased - self.sms_sent)

    @property
    def is_active(self) -> bool:
        return self.status == LicenseStatus.ACTIVE

    @property
    def derived_grace_period_end(self) -> datetime | None:
        return derive_grace_period_end(self.expires_at, self.grace_period_days)

    def is_expired(self, now: datetime | None = None) -> bool:
        """Expiry date is set and in the past."""
        return self.expires_at is not None and self.expires_at < self._now(now)

    def days_until_expiry(self, now: datetime | None = None) -> int | None:
        """Whole days until expiry, rounded up. Negative once expired."""
        if self.expires_at is None:
            return None
        delta = self.expires_at - self._now(now)
        return math.ceil(delta.total_seconds() / 86400)

    def is_expiring_soon(self, days: int = EXPIRING_SOON_DAYS, now: datetime | None = None) -> bool:
        """Expiry falls strictly within the next ``days`` days."""
        remaining = self.days_until_expiry(now)
        return remaining is not None and 0 < remaining <= days

    def is_in_grace_period(self, now: datetime | None = None) -> bool:
        """Expired, but still on or before the grace period end."""
        now = self._now(now)
        if not self.is_expired(now):
            return False
        grace_end = self.derived_grace_period_end
        return grace_end is not None and now <= grace_end

    def should_be_suspended(self, now: datetime | None = None) -> bool:
        now = self._now(now)
        return (
            self.auto_suspend_enabled
            and self.is_expired(now)
            and not self.is_in_grace_period(now)
            and self.status not in (LicenseStatus.REVOKED, LicenseStatus.CANCEL)
        )

    def can_assign(self, now: datetime | None = None) -> bool:
        return self.is_active and self.has_available_seats and not self.is_expired(now)

    def has_reminder_been_sent(self, window: ReminderWindow) -> bool:
        return window in self.renewal_reminders_sent
