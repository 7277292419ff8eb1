"""External license snapshot ORM model."""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from licence_admin.models.orm.base import Base, JSONType, TimestampMixin, UUIDMixin


class ExternalLicenseSnapshotORM(Base, UUIDMixin, TimestampMixin):
    """Raw provider record staged for reconciliation."""

    __tablename__ = "external_license_snapshots"

    external_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    appid: Mapped[str | None] = mapped_column(String(255), nullable=True)
    countid: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    sync_status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    sync_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_synced_at: Mapped[datetime | None] = mapped_column(nullable=True)
    license_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("licenses.id", ondelete="SET NULL"), nullable=True
    )

    __table_args__ = (
        Index("idx_external_snapshots_status", "sync_status"),
        Index("idx_external_snapshots_appid", "appid"),
        Index("idx_external_snapshots_countid", "countid"),
    )
