"""Assignments router."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from licence_admin.dependencies import get_actor_id, get_assignment_service
from licence_admin.models.domain.assignment import Assignment
from licence_admin.models.dto.assignment import AssignmentListResponse, RevokeRequest
from licence_admin.services.assignment_service import AssignmentService

router = APIRouter()


@router.get("", response_model=AssignmentListResponse)
async def list_user_assignments(
    assignment_service: Annotated[AssignmentService, Depends(get_assignment_service)],
    user_id: str = Query(min_length=1, max_length=255),
    include_revoked: bool = False,
) -> AssignmentListResponse:
    """List the assignments held by a user."""
    items = await assignment_service.list_for_user(user_id, include_revoked)
    return AssignmentListResponse(items=items, total=len(items))


@router.post("/{assignment_id}/revoke", response_model=Assignment)
async def revoke_assignment(
    assignment_id: UUID,
    body: RevokeRequest,
    assignment_service: Annotated[AssignmentService, Depends(get_assignment_service)],
    actor_id: Annotated[str | None, Depends(get_actor_id)],
) -> Assignment:
    """Revoke an assignment and free its seat."""
    return await assignment_service.revoke_assignment(assignment_id, actor_id, body.reason)


@router.post("/{assignment_id}/unassign", response_model=Assignment)
async def unassign(
    assignment_id: UUID,
    assignment_service: Annotated[AssignmentService, Depends(get_assignment_service)],
    actor_id: Annotated[str | None, Depends(get_actor_id)],
) -> Assignment:
    """Release an assignment's seat without revoking it."""
    return await assignment_service.unassign(assignment_id, actor_id)


@router.delete("/{assignment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_assignment(
    assignment_id: UUID,
    assignment_service: Annotated[AssignmentService, Depends(get_assignment_service)],
    actor_id: Annotated[str | None, Depends(get_actor_id)],
) -> None:
    """Delete an assignment row."""
    await assignment_service.delete_assignment(assignment_id, actor_id)
