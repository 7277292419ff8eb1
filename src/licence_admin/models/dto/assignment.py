"""Assignment DTOs."""

from pydantic import BaseModel, Field

from licence_admin.models.domain.assignment import Assignment


class AssignRequest(BaseModel):
    """Request to assign a license seat to a user."""

    user_id: str = Field(min_length=1, max_length=255)
    notes: str | None = Field(default=None, max_length=1000)


class RevokeRequest(BaseModel):
    """Request to revoke an assignment."""

    reason: str | None = Field(default=None, max_length=500)


class AssignmentListResponse(BaseModel):
    """Assignment list response."""

    items: list[Assignment]
    total: int
