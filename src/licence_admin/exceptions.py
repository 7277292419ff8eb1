"""Domain-specific exceptions for the licence admin service.

These exceptions provide a clean separation between service-layer errors
and HTTP responses. Every error carries a stable machine-readable ``code``
that user-facing callers can rely on.
"""

from typing import Any


class LicenceAdminError(Exception):
    """Base exception for all licence admin errors."""

    code: str = "licence_admin_error"
    http_status: int = 500

    def __init__(self, message: str = "An error occurred", details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses and persisted sync errors."""
        return {"error": self.code, "message": self.message, "details": self.details}


# =============================================================================
# Validation Errors (422)
# =============================================================================


class ValidationError(LicenceAdminError):
    """Raised when a create or update payload is malformed."""

    code = "validation_error"
    http_status = 422

    def __init__(self, errors: list[str], message: str = "Validation failed") -> None:
        self.errors = list(errors)
        super().__init__(message, {"errors": self.errors})


# =============================================================================
# Business Rule Errors (409)
# =============================================================================


class BusinessRuleViolation(LicenceAdminError):
    """Raised for illegal transitions, duplicate assignments or seat exhaustion."""

    code = "business_rule_violation"
    http_status = 409


class ReconciliationInProgressError(BusinessRuleViolation):
    """Raised when a reconciliation run is already holding the run lock."""

    code = "reconciliation_in_progress"

    def __init__(self, scope: str) -> None:
        super().__init__("Reconciliation already running", {"scope": scope})


# =============================================================================
# Resource Not Found Errors (404)
# =============================================================================


class NotFoundError(LicenceAdminError):
    """Base class for resource not found errors."""

    code = "not_found"
    http_status = 404


class LicenseNotFoundError(NotFoundError):
    """Raised when a license cannot be found."""

    def __init__(self, license_id: str | None = None) -> None:
        details = {"license_id": str(license_id)} if license_id else {}
        super().__init__("License not found", details)


class AssignmentNotFoundError(NotFoundError):
    """Raised when an assignment cannot be found."""

    def __init__(self, assignment_id: str | None = None) -> None:
        details = {"assignment_id": str(assignment_id)} if assignment_id else {}
        super().__init__("Assignment not found", details)


# =============================================================================
# Storage and Infrastructure Errors
# =============================================================================


class DataIntegrityError(LicenceAdminError):
    """Raised when a write violates a storage constraint. Never retried."""

    code = "data_integrity_error"
    http_status = 409


class ExternalSyncError(LicenceAdminError):
    """Raised for a single provider record that could not be reconciled."""

    code = "external_sync_error"
    http_status = 502


class TransientInfrastructureError(LicenceAdminError):
    """Raised on timeouts or lost connections. Retried at batch level only."""

    code = "transient_infrastructure_error"
    http_status = 503
