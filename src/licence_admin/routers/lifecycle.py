"""Lifecycle policy router."""

from typing import Annotated

from fastapi import APIRouter, Depends

from licence_admin.dependencies import get_lifecycle_engine
from licence_admin.models.dto.sync import LifecycleRunRequest
from licence_admin.services.lifecycle_service import LifecyclePolicyEngine, PolicyPassSummary

router = APIRouter()


@router.post("/run", response_model=PolicyPassSummary)
async def run_lifecycle_pass(
    body: LifecycleRunRequest,
    engine: Annotated[LifecyclePolicyEngine, Depends(get_lifecycle_engine)],
) -> PolicyPassSummary:
    """Run the reminder and suspension policy over all licenses now."""
    return await engine.run_policy_pass(body.now)
