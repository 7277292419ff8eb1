"""Shared test fixtures.

Tests run against an in-memory SQLite database (aiosqlite). The environment
is set before any application module is imported so settings and the
module-level engine pick it up.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("REMINDER_WEBHOOK_URL", "")

from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from licence_admin.database import configure_sqlite_engine
from licence_admin.models.domain.license import License, LicenseStatus
from licence_admin.models.orm import Base, LicenseORM

NOW = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)


@pytest.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory database per test."""
    test_engine = configure_sqlite_engine(
        create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(
    session_maker: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as db_session:
        yield db_session


def make_license(**overrides: Any) -> License:
    """Build an in-memory license with sensible defaults."""
    values: dict[str, Any] = {
        "key": "LIC-001",
        "product": "Business Suite",
        "plan": "Pro",
        "dba": "Corner Cafe",
        "seats_total": 5,
        "status": LicenseStatus.ACTIVE,
        "starts_at": NOW - timedelta(days=300),
        "expires_at": NOW + timedelta(days=60),
    }
    values.update(overrides)
    return License(**values)


@pytest.fixture
def license_factory(session: AsyncSession):
    """Insert licenses directly, bypassing service validation."""
    counter = 0

    async def create(**overrides: Any) -> LicenseORM:
        nonlocal counter
        counter += 1
        values: dict[str, Any] = {
            "key": f"LIC-{counter:04d}",
            "product": "Business Suite",
            "plan": "Pro",
            "dba": "Corner Cafe",
            "term": "monthly",
            "seats_total": 5,
            "seats_used": 0,
            "status": LicenseStatus.ACTIVE.value,
            "starts_at": datetime.now(UTC) - timedelta(days=300),
            "expires_at": datetime.now(UTC) + timedelta(days=60),
            "grace_period_days": 30,
            "sms_balance": Decimal("0"),
            "renewal_reminders_sent": [],
            "renewal_history": [],
        }
        values.update(overrides)
        license_orm = LicenseORM(**values)
        session.add(license_orm)
        await session.commit()
        return license_orm

    return create
