"""License assignment domain model."""

from datetime import datetime
from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, model_validator


class AssignmentStatus(StrEnum):
    """Assignment status enum."""

    ASSIGNED = "assigned"
    UNASSIGNED = "unassigned"
    REVOKED = "revoked"


class Assignment(BaseModel):
    """One seat grant of a license to a user."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID | None = None
    license_id: UUID
    user_id: str
    status: AssignmentStatus = AssignmentStatus.ASSIGNED
    assigned_at: datetime
    revoked_at: datetime | None = None
    assigned_by: str | None = None
    revoked_by: str | None = None
    notes: str | None = None

    @model_validator(mode="after")
    def check_revocation(self) -> "Assignment":
        """A revoked assignment must carry a revocation time after assignment."""
        if self.status == AssignmentStatus.REVOKED:
            if self.revoked_at is None:
                raise ValueError("revoked_at is required when status is revoked")
            if self.revoked_at <= self.assigned_at:
                raise ValueError("revoked_at must be after assigned_at")
        return self

    @property
    def holds_seat(self) -> bool:
        return self.status == AssignmentStatus.ASSIGNED

    @property
    def is_revoked(self) -> bool:
        return self.status == AssignmentStatus.REVOKED
