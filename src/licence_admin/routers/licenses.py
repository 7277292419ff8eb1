"""Licenses router."""

import math
from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from licence_admin.dependencies import get_actor_id, get_assignment_service, get_license_service
from licence_admin.models.domain.assignment import Assignment, AssignmentStatus
from licence_admin.models.domain.license import LicenseStatus, LicenseTerm
from licence_admin.models.domain.state_machine import TransitionContext
from licence_admin.models.dto.assignment import AssignmentListResponse, AssignRequest
from licence_admin.models.dto.license import (
    AttentionItemResponse,
    BulkCreateRequest,
    BulkDeleteRequest,
    BulkLifecycleRequest,
    BulkUpdateRequest,
    LicenseCreate,
    LicenseListResponse,
    LicenseResponse,
    LicenseStatsResponse,
    LicenseUpdate,
    RenewRequest,
    TransitionRequest,
    TransitionResponse,
)
from licence_admin.repositories.license_repository import SORT_COLUMNS, LicenseFilters
from licence_admin.services.assignment_service import AssignmentService
from licence_admin.services.license_service import (
    BulkResult,
    LicenseService,
    LifecycleStatus,
    TransitionOutcome,
)
from licence_admin.utils.validation import sanitize_search, sanitize_status_list, validate_sort_by

router = APIRouter()

ALLOWED_LICENSE_STATUSES = {s.value for s in LicenseStatus}


def get_license_filters(
    search: str | None = Query(default=None, max_length=200),
    status: str | None = Query(default=None, max_length=200, description="Comma-separated"),
    product: str | None = Query(default=None, max_length=255),
    plan: str | None = Query(default=None, max_length=255),
    term: LicenseTerm | None = None,
    dba: str | None = Query(default=None, max_length=255),
    zip: str | None = Query(default=None, max_length=20),
    starts_from: datetime | None = None,
    starts_to: datetime | None = None,
    expires_from: datetime | None = None,
    expires_to: datetime | None = None,
    updated_from: datetime | None = None,
    updated_to: datetime | None = None,
    utilization_min: float | None = Query(default=None, ge=0, le=100),
    utilization_max: float | None = Query(default=None, ge=0, le=100),
    seats_min: int | None = Query(default=None, ge=0),
    seats_max: int | None = Query(default=None, ge=0),
    has_available_seats: bool | None = None,
) -> LicenseFilters:
    """Build license filters from query parameters."""
    return LicenseFilters(
        search=sanitize_search(search),
        statuses=sanitize_status_list(status, ALLOWED_LICENSE_STATUSES),
        product=product,
        plan=plan,
        term=term.value if term else None,
        dba=sanitize_search(dba),
        zip=zip,
        starts_from=starts_from,
        starts_to=starts_to,
        expires_from=expires_from,
        expires_to=expires_to,
        updated_from=updated_from,
        updated_to=updated_to,
        utilization_min=utilization_min,
        utilization_max=utilization_max,
        seats_min=seats_min,
        seats_max=seats_max,
        has_available_seats=has_available_seats,
    )


def _transition_response(outcome: TransitionOutcome) -> TransitionResponse:
    return TransitionResponse(
        license=LicenseResponse.from_domain(outcome.license),
        from_status=outcome.from_status,
        to_status=outcome.to_status,
        changed=outcome.changed,
        warnings=outcome.warnings,
    )


@router.get("", response_model=LicenseListResponse)
async def list_licenses(
    license_service: Annotated[LicenseService, Depends(get_license_service)],
    filters: Annotated[LicenseFilters, Depends(get_license_filters)],
    sort_by: str = Query(default="created_at", max_length=50),
    sort_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    page: int = Query(default=1, ge=1, le=10000),
    page_size: int = Query(default=50, ge=1, le=200),
) -> LicenseListResponse:
    """List licenses with filters, sorting and pagination."""
    validated_sort_by = validate_sort_by(sort_by, set(SORT_COLUMNS), "created_at")
    licenses, total = await license_service.list_licenses(
        filters=filters,
        sort_by=validated_sort_by,
        sort_dir=sort_dir,
        page=page,
        page_size=page_size,
    )
    return LicenseListResponse(
        items=[LicenseResponse.from_domain(lic) for lic in licenses],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size) if total else 0,
    )


@router.get("/stats", response_model=LicenseStatsResponse)
async def get_license_stats(
    license_service: Annotated[LicenseService, Depends(get_license_service)],
    filters: Annotated[LicenseFilters, Depends(get_license_filters)],
) -> LicenseStatsResponse:
    """Counts per status and seat totals for the filtered licenses."""
    return LicenseStatsResponse(**await license_service.get_stats(filters))


@router.get("/attention", response_model=list[AttentionItemResponse])
async def get_licenses_requiring_attention(
    license_service: Annotated[LicenseService, Depends(get_license_service)],
    days: int = Query(default=30, ge=1, le=365),
) -> list[AttentionItemResponse]:
    """Licenses expiring soon, in their grace period, or due for suspension."""
    items = await license_service.get_licenses_requiring_attention(days)
    return [
        AttentionItemResponse(
            license=LicenseResponse.from_domain(item.license),
            reasons=item.reasons,
            days_until_expiry=item.days_until_expiry,
        )
        for item in items
    ]


@router.post("", response_model=LicenseResponse, status_code=status.HTTP_201_CREATED)
async def create_license(
    body: LicenseCreate,
    license_service: Annotated[LicenseService, Depends(get_license_service)],
    actor_id: Annotated[str | None, Depends(get_actor_id)],
) -> LicenseResponse:
    """Create a license."""
    license = await license_service.create_license(body.model_dump(exclude_none=True), actor_id)
    return LicenseResponse.from_domain(license)


@router.post("/bulk/create", response_model=BulkResult)
async def bulk_create_licenses(
    body: BulkCreateRequest,
    license_service: Annotated[LicenseService, Depends(get_license_service)],
    actor_id: Annotated[str | None, Depends(get_actor_id)],
) -> BulkResult:
    """Create several licenses; each item succeeds or fails on its own."""
    return await license_service.bulk_create(
        [item.model_dump(exclude_none=True) for item in body.items], actor_id
    )


@router.post("/bulk/update", response_model=BulkResult)
async def bulk_update_licenses(
    body: BulkUpdateRequest,
    license_service: Annotated[LicenseService, Depends(get_license_service)],
    actor_id: Annotated[str | None, Depends(get_actor_id)],
) -> BulkResult:
    """Update several licenses."""
    return await license_service.bulk_update(
        [(item.id, item.changes.changes()) for item in body.items], actor_id
    )


@router.post("/bulk/delete", response_model=BulkResult)
async def bulk_delete_licenses(
    body: BulkDeleteRequest,
    license_service: Annotated[LicenseService, Depends(get_license_service)],
    actor_id: Annotated[str | None, Depends(get_actor_id)],
) -> BulkResult:
    """Delete (revoke) several licenses."""
    return await license_service.bulk_delete(body.license_ids, actor_id, body.reason)


@router.post("/bulk/renew", response_model=BulkResult)
async def bulk_renew_licenses(
    body: BulkLifecycleRequest,
    license_service: Annotated[LicenseService, Depends(get_license_service)],
    actor_id: Annotated[str | None, Depends(get_actor_id)],
) -> BulkResult:
    """Renew several licenses by one term each."""
    return await license_service.bulk_renew(body.license_ids, actor_id, body.reason)


@router.post("/bulk/expire", response_model=BulkResult)
async def bulk_expire_licenses(
    body: BulkLifecycleRequest,
    license_service: Annotated[LicenseService, Depends(get_license_service)],
    actor_id: Annotated[str | None, Depends(get_actor_id)],
) -> BulkResult:
    """Mark several licenses as expired."""
    return await license_service.bulk_expire(body.license_ids, actor_id, body.reason)


@router.get("/{license_id}", response_model=LicenseResponse)
async def get_license(
    license_id: UUID,
    license_service: Annotated[LicenseService, Depends(get_license_service)],
) -> LicenseResponse:
    """Get a single license by ID."""
    return LicenseResponse.from_domain(await license_service.get_license(license_id))


@router.get("/{license_id}/lifecycle", response_model=LifecycleStatus)
async def get_license_lifecycle(
    license_id: UUID,
    license_service: Annotated[LicenseService, Depends(get_license_service)],
) -> LifecycleStatus:
    """Lifecycle position, reachable statuses and reminders sent."""
    return await license_service.get_lifecycle_status(license_id)


@router.patch("/{license_id}", response_model=LicenseResponse)
async def update_license(
    license_id: UUID,
    body: LicenseUpdate,
    license_service: Annotated[LicenseService, Depends(get_license_service)],
    actor_id: Annotated[str | None, Depends(get_actor_id)],
) -> LicenseResponse:
    """Partially update a license. Status changes use the transition endpoint."""
    license = await license_service.update_license(license_id, body.changes(), actor_id)
    return LicenseResponse.from_domain(license)


@router.delete("/{license_id}", response_model=TransitionResponse)
async def delete_license(
    license_id: UUID,
    license_service: Annotated[LicenseService, Depends(get_license_service)],
    actor_id: Annotated[str | None, Depends(get_actor_id)],
    reason: str | None = Query(default=None, max_length=500),
) -> TransitionResponse:
    """Delete a license by revoking it. Fails while seats are assigned."""
    outcome = await license_service.delete_license(license_id, actor_id, reason)
    return _transition_response(outcome)


@router.post("/{license_id}/transition", response_model=TransitionResponse)
async def transition_license(
    license_id: UUID,
    body: TransitionRequest,
    license_service: Annotated[LicenseService, Depends(get_license_service)],
    actor_id: Annotated[str | None, Depends(get_actor_id)],
) -> TransitionResponse:
    """Move a license to another status."""
    context = TransitionContext(changed_by=actor_id, reason=body.reason, force=body.force)
    outcome = await license_service.transition_status(license_id, body.status, context)
    return _transition_response(outcome)


@router.post("/{license_id}/renew", response_model=TransitionResponse)
async def renew_license(
    license_id: UUID,
    body: RenewRequest,
    license_service: Annotated[LicenseService, Depends(get_license_service)],
    actor_id: Annotated[str | None, Depends(get_actor_id)],
) -> TransitionResponse:
    """Renew a license to a new expiry date or by one term."""
    outcome = await license_service.renew_license(
        license_id, actor_id, body.new_expires_at, body.reason
    )
    return _transition_response(outcome)


@router.get("/{license_id}/assignments", response_model=AssignmentListResponse)
async def list_license_assignments(
    license_id: UUID,
    assignment_service: Annotated[AssignmentService, Depends(get_assignment_service)],
    status: AssignmentStatus | None = None,
) -> AssignmentListResponse:
    """List a license's assignments."""
    items = await assignment_service.list_for_license(license_id, status)
    return AssignmentListResponse(items=items, total=len(items))


@router.post(
    "/{license_id}/assignments",
    response_model=Assignment,
    status_code=status.HTTP_201_CREATED,
)
async def assign_license(
    license_id: UUID,
    body: AssignRequest,
    assignment_service: Annotated[AssignmentService, Depends(get_assignment_service)],
    actor_id: Annotated[str | None, Depends(get_actor_id)],
) -> Assignment:
    """Assign a seat on the license to a user."""
    return await assignment_service.assign_license(license_id, body.user_id, actor_id, body.notes)
