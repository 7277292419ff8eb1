"""License assignment ORM model."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from licence_admin.models.orm.base import Base, TimestampMixin, UUIDMixin

NON_REVOKED_CLAUSE = text("status <> 'revoked'")


class LicenseAssignmentORM(Base, UUIDMixin, TimestampMixin):
    """License assignment database model."""

    __tablename__ = "license_assignments"

    license_id: Mapped[UUID] = mapped_column(
        ForeignKey("licenses.id", ondelete="RESTRICT"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="assigned", nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(nullable=True)
    assigned_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    revoked_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("idx_license_assignments_license", "license_id"),
        Index("idx_license_assignments_user", "user_id"),
        # At most one non-revoked assignment per (license, user)
        Index(
            "uq_license_assignments_active_user",
            "license_id",
            "user_id",
            unique=True,
            postgresql_where=NON_REVOKED_CLAUSE,
            sqlite_where=NON_REVOKED_CLAUSE,
        ),
    )
