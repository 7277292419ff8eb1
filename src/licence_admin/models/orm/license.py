"""License ORM model."""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, Computed, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from licence_admin.models.orm.base import Base, JSONType, TimestampMixin, UUIDMixin

UTILIZATION_SQL = (
    "CASE WHEN seats_total > 0 "
    "THEN ROUND(seats_used * 100.0 / seats_total, 2) ELSE 0 END"
)


class LicenseORM(Base, UUIDMixin, TimestampMixin):
    """License database model."""

    __tablename__ = "licenses"

    key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    product: Mapped[str] = mapped_column(String(255), nullable=False)
    plan: Mapped[str] = mapped_column(String(255), nullable=False)
    term: Mapped[str] = mapped_column(String(20), default="monthly", nullable=False)
    seats_total: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    # Maintained by the assignment ledger only
    seats_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    # Stored by the database for filtering and sorting
    utilization_percent: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        Computed(UTILIZATION_SQL, persisted=True),
    )

    starts_at: Mapped[datetime | None] = mapped_column(nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancel_date: Mapped[datetime | None] = mapped_column(nullable=True)
    last_active: Mapped[datetime | None] = mapped_column(nullable=True)

    # Lifecycle bookkeeping
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    renewal_reminders_sent: Mapped[list[Any]] = mapped_column(
        JSONType, default=list, nullable=False
    )
    last_renewal_reminder: Mapped[datetime | None] = mapped_column(nullable=True)
    renewal_due_date: Mapped[datetime | None] = mapped_column(nullable=True)
    auto_suspend_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    grace_period_days: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    grace_period_end: Mapped[datetime | None] = mapped_column(nullable=True)
    suspension_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    suspended_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reactivated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    renewal_history: Mapped[list[Any]] = mapped_column(JSONType, default=list, nullable=False)

    # Business details
    dba: Mapped[str | None] = mapped_column(String(255), nullable=True)
    zip: Mapped[str | None] = mapped_column(String(20), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_payment: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    # SMS credits: sms_balance is the stored, reconciled value
    sms_balance: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    sms_purchased: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sms_sent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # External linkage
    appid: Mapped[str | None] = mapped_column(String(255), nullable=True)
    countid: Mapped[str | None] = mapped_column(String(255), nullable=True)
    mid: Mapped[str | None] = mapped_column(String(255), nullable=True)
    license_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    package_data: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    sendbat_workspace: Mapped[str | None] = mapped_column(String(255), nullable=True)
    coming_expired: Mapped[str | None] = mapped_column(String(255), nullable=True)
    external_sync_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    last_external_sync: Mapped[datetime | None] = mapped_column(nullable=True)
    external_sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    updated_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "seats_used >= 0 AND seats_used <= seats_total", name="ck_licenses_seats_used"
        ),
        Index("idx_licenses_status", "status"),
        Index("idx_licenses_expires_at", "expires_at"),
        Index("idx_licenses_appid", "appid"),
        Index("idx_licenses_countid", "countid"),
        Index("idx_licenses_email", "email"),
        Index("idx_licenses_utilization", "utilization_percent"),
    )
