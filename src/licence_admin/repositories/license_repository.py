"""License repository."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any
from uuid import UUID

from sqlalchemy import and_, func, or_, select
from sqlalchemy.sql.elements import ColumnElement

from licence_admin.models.domain.assignment import AssignmentStatus
from licence_admin.models.domain.license import LicenseStatus, derive_grace_period_end
from licence_admin.models.orm.assignment import LicenseAssignmentORM
from licence_admin.models.orm.license import LicenseORM
from licence_admin.repositories.base import BaseRepository
from licence_admin.utils.validation import escape_like_wildcards

SORT_COLUMNS: dict[str, Any] = {
    "key": LicenseORM.key,
    "product": LicenseORM.product,
    "plan": LicenseORM.plan,
    "dba": LicenseORM.dba,
    "status": LicenseORM.status,
    "term": LicenseORM.term,
    "starts_at": LicenseORM.starts_at,
    "expires_at": LicenseORM.expires_at,
    "created_at": LicenseORM.created_at,
    "updated_at": LicenseORM.updated_at,
    "seats_total": LicenseORM.seats_total,
    "seats_used": LicenseORM.seats_used,
    "utilization": LicenseORM.utilization_percent,
}


@dataclass
class LicenseFilters:
    """Filters accepted by license listing and statistics."""

    search: str | None = None
    statuses: list[str] | None = None
    product: str | None = None
    plan: str | None = None
    term: str | None = None
    dba: str | None = None
    zip: str | None = None
    starts_from: datetime | None = None
    starts_to: datetime | None = None
    expires_from: datetime | None = None
    expires_to: datetime | None = None
    updated_from: datetime | None = None
    updated_to: datetime | None = None
    utilization_min: float | None = None
    utilization_max: float | None = None
    seats_min: int | None = None
    seats_max: int | None = None
    has_available_seats: bool | None = None

    def conditions(self) -> list[ColumnElement[bool]]:
        """Build SQL conditions for the set filters."""
        conditions: list[ColumnElement[bool]] = []

        if self.search:
            pattern = f"%{escape_like_wildcards(self.search)}%"
            conditions.append(
                or_(
                    LicenseORM.key.ilike(pattern, escape="\\"),
                    LicenseORM.dba.ilike(pattern, escape="\\"),
                    LicenseORM.product.ilike(pattern, escape="\\"),
                    LicenseORM.plan.ilike(pattern, escape="\\"),
                )
            )
        if self.statuses:
            conditions.append(LicenseORM.status.in_(self.statuses))
        if self.product:
            conditions.append(LicenseORM.product == self.product)
        if self.plan:
            conditions.append(LicenseORM.plan == self.plan)
        if self.term:
            conditions.append(LicenseORM.term == self.term)
        if self.dba:
            pattern = f"%{escape_like_wildcards(self.dba)}%"
            conditions.append(LicenseORM.dba.ilike(pattern, escape="\\"))
        if self.zip:
            conditions.append(LicenseORM.zip == self.zip)

        for column, lower, upper in (
            (LicenseORM.starts_at, self.starts_from, self.starts_to),
            (LicenseORM.expires_at, self.expires_from, self.expires_to),
            (LicenseORM.updated_at, self.updated_from, self.updated_to),
        ):
            if lower is not None:
                conditions.append(column >= lower)
            if upper is not None:
                conditions.append(column <= upper)

        if self.utilization_min is not None:
            conditions.append(LicenseORM.utilization_percent >= self.utilization_min)
        if self.utilization_max is not None:
            conditions.append(LicenseORM.utilization_percent <= self.utilization_max)
        if self.seats_min is not None:
            conditions.append(LicenseORM.seats_total >= self.seats_min)
        if self.seats_max is not None:
            conditions.append(LicenseORM.seats_total <= self.seats_max)
        if self.has_available_seats is True:
            conditions.append(LicenseORM.seats_used < LicenseORM.seats_total)
        elif self.has_available_seats is False:
            conditions.append(LicenseORM.seats_used >= LicenseORM.seats_total)

        return conditions


class LicenseRepository(BaseRepository[LicenseORM]):
    """Repository for license operations."""

    model = LicenseORM

    async def key_exists(self, key: str) -> bool:
        """Check whether a license key is taken."""
        result = await self.session.execute(
            select(func.count()).select_from(LicenseORM).where(LicenseORM.key == key)
        )
        return result.scalar_one() > 0

    async def find_by_appid(self, appid: str) -> LicenseORM | None:
        """Get the oldest license linked to a provider app ID."""
        return await self._first_where(LicenseORM.appid == appid)

    async def find_by_countid(self, countid: str) -> LicenseORM | None:
        """Get the oldest license linked to a provider account ID."""
        return await self._first_where(LicenseORM.countid == countid)

    async def find_by_email(self, email: str) -> LicenseORM | None:
        """Get the oldest license with the given contact email (case-insensitive)."""
        return await self._first_where(func.lower(LicenseORM.email) == email.lower())

    async def _first_where(self, condition: ColumnElement[bool]) -> LicenseORM | None:
        result = await self.session.execute(
            select(LicenseORM).where(condition).order_by(LicenseORM.created_at, LicenseORM.id).limit(1)
        )
        return result.scalar_one_or_none()

    async def get_with_filters(
        self,
        filters: LicenseFilters | None = None,
        sort_by: str = "created_at",
        sort_dir: str = "desc",
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[LicenseORM], int]:
        """Get licenses with filters, sorting and pagination.

        Args:
            filters: Filter set (None for all)
            sort_by: Sort column name; unknown names fall back to created_at
            sort_dir: ``asc`` or ``desc``
            offset: Pagination offset
            limit: Page size

        Returns:
            Tuple of (licenses, total count)
        """
        conditions = filters.conditions() if filters else []

        query = select(LicenseORM)
        count_query = select(func.count()).select_from(LicenseORM)
        if conditions:
            query = query.where(and_(*conditions))
            count_query = count_query.where(and_(*conditions))

        total = (await self.session.execute(count_query)).scalar_one()

        sort_column = SORT_COLUMNS.get(sort_by, LicenseORM.created_at)
        order = sort_column.asc() if sort_dir == "asc" else sort_column.desc()
        query = query.order_by(order, LicenseORM.id).offset(offset).limit(limit)

        result = await self.session.execute(query)
        return list(result.scalars().all()), total

    async def get_stats(self, filters: LicenseFilters | None = None) -> dict[str, Any]:
        """Get license counts per status plus seat totals.

        Args:
            filters: Same filters as listing

        Returns:
            Dict with per-status counts, seat sums and average utilization
        """
        conditions = filters.conditions() if filters else []

        status_query = select(LicenseORM.status, func.count()).group_by(LicenseORM.status)
        totals_query = select(
            func.count(),
            func.coalesce(func.sum(LicenseORM.seats_total), 0),
            func.coalesce(func.sum(LicenseORM.seats_used), 0),
            func.avg(LicenseORM.utilization_percent),
        ).select_from(LicenseORM)
        if conditions:
            status_query = status_query.where(and_(*conditions))
            totals_query = totals_query.where(and_(*conditions))

        by_status = {status.value: 0 for status in LicenseStatus}
        for status, count in (await self.session.execute(status_query)).all():
            by_status[status] = count

        total, seats_total, seats_used, avg_utilization = (
            await self.session.execute(totals_query)
        ).one()

        return {
            "total": total,
            "by_status": by_status,
            "seats_total": int(seats_total),
            "seats_used": int(seats_used),
            "average_utilization": round(float(avg_utilization or 0), 1),
        }

    async def get_non_terminal_page(
        self,
        after_id: UUID | None = None,
        limit: int = 100,
    ) -> list[LicenseORM]:
        """Get a page of licenses the lifecycle policy evaluates, keyed by ID."""
        query = select(LicenseORM).where(LicenseORM.status != LicenseStatus.REVOKED.value)
        if after_id is not None:
            query = query.where(LicenseORM.id > after_id)
        result = await self.session.execute(query.order_by(LicenseORM.id).limit(limit))
        return list(result.scalars().all())

    async def get_expiring_before(self, cutoff: datetime) -> list[LicenseORM]:
        """Get non-revoked, non-cancelled licenses expiring before ``cutoff``."""
        result = await self.session.execute(
            select(LicenseORM)
            .where(
                and_(
                    LicenseORM.expires_at.is_not(None),
                    LicenseORM.expires_at <= cutoff,
                    LicenseORM.status.not_in(
                        [LicenseStatus.REVOKED.value, LicenseStatus.CANCEL.value]
                    ),
                )
            )
            .order_by(LicenseORM.expires_at)
        )
        return list(result.scalars().all())

    async def count_assigned_seats(self, license_id: UUID) -> int:
        """Count assignments currently holding a seat on a license."""
        result = await self.session.execute(
            select(func.count())
            .select_from(LicenseAssignmentORM)
            .where(
                and_(
                    LicenseAssignmentORM.license_id == license_id,
                    LicenseAssignmentORM.status == AssignmentStatus.ASSIGNED.value,
                )
            )
        )
        return result.scalar_one()

    async def recalculate_seats_used(self, license_orm: LicenseORM) -> int:
        """Recompute ``seats_used`` from assignments and write it back.

        Must run in the same transaction as the assignment write.

        Returns:
            The new seats_used value
        """
        seats_used = await self.count_assigned_seats(license_orm.id)
        if license_orm.seats_used != seats_used:
            license_orm.seats_used = seats_used
            await self.flush()
        return seats_used

    async def apply_changes(self, license_orm: LicenseORM, changes: dict[str, Any]) -> LicenseORM:
        """Write field changes, re-deriving the grace period end and renewal due date.

        Args:
            license_orm: License to update
            changes: Field values (enum members are stored by value)

        Returns:
            The updated license
        """
        for key, value in changes.items():
            if isinstance(value, StrEnum):
                value = value.value
            elif isinstance(value, list):
                value = [item.value if isinstance(item, StrEnum) else item for item in value]
            setattr(license_orm, key, value)

        if "expires_at" in changes or "grace_period_days" in changes:
            license_orm.grace_period_end = derive_grace_period_end(
                license_orm.expires_at, license_orm.grace_period_days
            )
            license_orm.renewal_due_date = license_orm.expires_at

        await self.flush()
        return license_orm
