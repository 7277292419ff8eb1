"""Audit log router."""

import math
from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from licence_admin.dependencies import get_audit_service
from licence_admin.models.dto.audit import AuditEventListResponse, AuditEventResponse
from licence_admin.services.audit_service import AuditService

router = APIRouter()


@router.get("", response_model=AuditEventListResponse)
async def list_audit_events(
    audit_service: Annotated[AuditService, Depends(get_audit_service)],
    entity_type: str | None = Query(default=None, max_length=50),
    entity_id: UUID | None = None,
    type_prefix: str | None = Query(default=None, max_length=100),
    actor_id: str | None = Query(default=None, max_length=255),
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    page: int = Query(default=1, ge=1, le=10000),
    page_size: int = Query(default=50, ge=1, le=200),
) -> AuditEventListResponse:
    """List audit events, newest first."""
    events, total = await audit_service.list_events(
        entity_type=entity_type,
        entity_id=entity_id,
        type_prefix=type_prefix,
        actor_id=actor_id,
        date_from=date_from,
        date_to=date_to,
        page=page,
        page_size=page_size,
    )
    return AuditEventListResponse(
        items=[AuditEventResponse.model_validate(e.model_dump()) for e in events],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size) if total else 0,
    )
