"""Audit event ORM model."""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from licence_admin.models.orm.base import Base, JSONType, UTCDateTime, UUIDMixin, utcnow


class AuditEventORM(Base, UUIDMixin):
    """Append-only audit event database model."""

    __tablename__ = "audit_events"

    type: Mapped[str] = mapped_column(String(100), nullable=False)
    actor_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    entity_id: Mapped[UUID | None] = mapped_column(nullable=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    event_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONType, default=dict, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_audit_events_created", "created_at"),
        Index("idx_audit_events_entity", "entity_type", "entity_id"),
        Index("idx_audit_events_type", "type"),
    )
