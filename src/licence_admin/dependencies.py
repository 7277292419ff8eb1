"""Centralized dependency injection factories for FastAPI."""

from typing import Annotated

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from licence_admin.database import get_db
from licence_admin.services.assignment_service import AssignmentService
from licence_admin.services.audit_service import AuditService
from licence_admin.services.license_service import LicenseService
from licence_admin.services.lifecycle_service import LifecyclePolicyEngine
from licence_admin.services.reconciliation_service import ReconciliationService

MAX_ACTOR_ID_LENGTH = 255


def get_actor_id(
    x_actor_id: Annotated[str | None, Header(max_length=MAX_ACTOR_ID_LENGTH)] = None,
) -> str | None:
    """Acting user from the ``X-Actor-Id`` header."""
    if x_actor_id is None:
        return None
    return x_actor_id.strip() or None


def get_license_service(db: AsyncSession = Depends(get_db)) -> LicenseService:
    """Get LicenseService instance."""
    return LicenseService(db)


def get_assignment_service(db: AsyncSession = Depends(get_db)) -> AssignmentService:
    """Get AssignmentService instance."""
    return AssignmentService(db)


def get_audit_service(db: AsyncSession = Depends(get_db)) -> AuditService:
    """Get AuditService instance."""
    return AuditService(db)


def get_reconciliation_service(db: AsyncSession = Depends(get_db)) -> ReconciliationService:
    """Get ReconciliationService instance."""
    return ReconciliationService(db)


def get_lifecycle_engine(db: AsyncSession = Depends(get_db)) -> LifecyclePolicyEngine:
    """Get LifecyclePolicyEngine instance."""
    return LifecyclePolicyEngine(db)
