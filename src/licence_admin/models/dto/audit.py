"""Audit log DTOs."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel


class AuditEventResponse(BaseModel):
    """Audit event response."""

    id: UUID
    type: str
    actor_id: str | None
    entity_id: UUID | None
    entity_type: str
    metadata: dict[str, Any]
    created_at: datetime


class AuditEventListResponse(BaseModel):
    """Paginated audit event list response."""

    items: list[AuditEventResponse]
    total: int
    page: int
    page_size: int
    total_pages: int
