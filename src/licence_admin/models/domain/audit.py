"""Audit event domain model and event vocabulary."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class AuditEventType:
    """Namespaced ``category.action`` event types."""

    LICENSE_CREATED = "license.created"
    LICENSE_UPDATED = "license.updated"
    LICENSE_STATUS_CHANGED = "license.status_changed"
    LICENSE_RENEWED = "license.renewed"
    LICENSE_DELETED = "license.deleted"
    LICENSE_SEATS_RECALCULATED = "license.seats_recalculated"
    LICENSE_REMINDER_SCHEDULED = "license.reminder_scheduled"
    LICENSE_SUSPENDED = "license.suspended"
    LICENSE_SYNC_CREATED = "license.sync_created"
    LICENSE_SYNC_UPDATED = "license.sync_updated"
    LICENSE_SYNC_FAILED = "license.sync_failed"

    ASSIGNMENT_CREATED = "assignment.created"
    ASSIGNMENT_UNASSIGNED = "assignment.unassigned"
    ASSIGNMENT_REVOKED = "assignment.revoked"
    ASSIGNMENT_DELETED = "assignment.deleted"


class EntityType:
    """Audited entity kinds."""

    LICENSE = "license"
    ASSIGNMENT = "assignment"
    EXTERNAL_SNAPSHOT = "external_snapshot"


class AuditEvent(BaseModel):
    """Immutable audit event."""

    model_config = ConfigDict(from_attributes=True, frozen=True, populate_by_name=True)

    id: UUID
    type: str
    actor_id: str | None = None
    entity_id: UUID | None = None
    entity_type: str
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="event_metadata")
    created_at: datetime

    @property
    def category(self) -> str:
        return self.type.split(".", 1)[0]

    @property
    def action(self) -> str:
        return self.type.split(".", 1)[-1]
