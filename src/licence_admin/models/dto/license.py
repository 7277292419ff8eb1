"""License DTOs."""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from licence_admin.models.domain.license import License, LicenseStatus, LicenseTerm


class LicenseCreate(BaseModel):
    """Request to create a license."""

    key: str = Field(min_length=1, max_length=100)
    product: str = Field(min_length=1, max_length=255)
    plan: str = Field(min_length=1, max_length=255)
    dba: str = Field(min_length=1, max_length=255)
    term: LicenseTerm = LicenseTerm.MONTHLY
    seats_total: int = Field(default=1, ge=1)
    status: LicenseStatus = LicenseStatus.PENDING
    starts_at: datetime
    expires_at: datetime | None = None
    auto_suspend_enabled: bool = True
    grace_period_days: int | None = Field(default=None, ge=0)
    zip: str | None = Field(default=None, max_length=20)
    email: str | None = Field(default=None, max_length=255)
    notes: str | None = Field(default=None, max_length=2000)
    last_payment: Decimal | None = None
    sms_balance: Decimal | None = None
    sms_purchased: int | None = Field(default=None, ge=0)
    sms_sent: int | None = Field(default=None, ge=0)
    appid: str | None = Field(default=None, max_length=255)
    countid: str | None = Field(default=None, max_length=255)
    mid: str | None = Field(default=None, max_length=255)
    license_type: str | None = Field(default=None, max_length=100)


class LicenseUpdate(BaseModel):
    """Partial license update. Only fields that are sent are applied."""

    key: str | None = Field(default=None, min_length=1, max_length=100)
    product: str | None = Field(default=None, min_length=1, max_length=255)
    plan: str | None = Field(default=None, min_length=1, max_length=255)
    dba: str | None = Field(default=None, min_length=1, max_length=255)
    term: LicenseTerm | None = None
    seats_total: int | None = Field(default=None, ge=1)
    starts_at: datetime | None = None
    expires_at: datetime | None = None
    auto_suspend_enabled: bool | None = None
    grace_period_days: int | None = Field(default=None, ge=0)
    zip: str | None = Field(default=None, max_length=20)
    email: str | None = Field(default=None, max_length=255)
    notes: str | None = Field(default=None, max_length=2000)
    last_payment: Decimal | None = None
    sms_balance: Decimal | None = None
    sms_purchased: int | None = Field(default=None, ge=0)
    sms_sent: int | None = Field(default=None, ge=0)
    appid: str | None = Field(default=None, max_length=255)
    countid: str | None = Field(default=None, max_length=255)
    mid: str | None = Field(default=None, max_length=255)
    license_type: str | None = Field(default=None, max_length=100)

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class LicenseResponse(License):
    """License with its derived facts."""

    available_seats: int = 0
    utilization_percent: int = 0
    sms_credits_remaining: int = 0
    days_until_expiry: int | None = None
    is_expired: bool = False
    is_in_grace_period: bool = False

    @classmethod
    def from_domain(cls, license: License, now: datetime | None = None) -> "LicenseResponse":
        return cls(
            **license.model_dump(),
            available_seats=license.available_seats,
            utilization_percent=license.utilization_percent,
            sms_credits_remaining=license.sms_credits_remaining,
            days_until_expiry=license.days_until_expiry(now),
            is_expired=license.is_expired(now),
            is_in_grace_period=license.is_in_grace_period(now),
        )


class LicenseListResponse(BaseModel):
    """Paginated license list response."""

    items: list[LicenseResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class LicenseStatsResponse(BaseModel):
    """License counts and seat totals."""

    total: int
    by_status: dict[str, int]
    seats_total: int
    seats_used: int
    average_utilization: float


class TransitionRequest(BaseModel):
    """Request to change a license's status."""

    status: LicenseStatus
    reason: str | None = Field(default=None, max_length=500)
    force: bool = False


class RenewRequest(BaseModel):
    """Request to renew a license. Without a date the term length is added."""

    new_expires_at: datetime | None = None
    reason: str | None = Field(default=None, max_length=500)


class TransitionResponse(BaseModel):
    """A license after a status change, with warnings."""

    license: LicenseResponse
    from_status: LicenseStatus
    to_status: LicenseStatus
    changed: bool
    warnings: list[str] = Field(default_factory=list)


class BulkCreateRequest(BaseModel):
    """Request to create several licenses."""

    items: list[LicenseCreate] = Field(min_length=1, max_length=500)


class BulkUpdateItem(BaseModel):
    """One license update within a bulk request."""

    id: UUID
    changes: LicenseUpdate


class BulkUpdateRequest(BaseModel):
    """Request to update several licenses."""

    items: list[BulkUpdateItem] = Field(min_length=1, max_length=500)


class BulkDeleteRequest(BaseModel):
    """Request to delete several licenses."""

    license_ids: list[UUID] = Field(min_length=1, max_length=500)
    reason: str | None = Field(default=None, max_length=500)


class AttentionItemResponse(BaseModel):
    """A license needing attention and why."""

    license: LicenseResponse
    reasons: list[str]
    days_until_expiry: int | None = None


class BulkLifecycleRequest(BaseModel):
    """Request to renew or expire several licenses."""

    license_ids: list[UUID] = Field(min_length=1, max_length=500)
    reason: str | None = Field(default=None, max_length=500)
