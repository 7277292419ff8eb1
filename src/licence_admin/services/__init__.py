"""Services package."""

from licence_admin.services.assignment_service import AssignmentService
from licence_admin.services.audit_service import AuditService
from licence_admin.services.license_service import LicenseService
from licence_admin.services.lifecycle_service import LifecyclePolicyEngine
from licence_admin.services.reconciliation_service import ReconciliationService

__all__ = [
    "AssignmentService",
    "AuditService",
    "LicenseService",
    "LifecyclePolicyEngine",
    "ReconciliationService",
]
