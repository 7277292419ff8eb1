"""SQLAlchemy ORM models."""

from licence_admin.models.orm.assignment import LicenseAssignmentORM
from licence_admin.models.orm.audit_event import AuditEventORM
from licence_admin.models.orm.base import Base
from licence_admin.models.orm.external_license import ExternalLicenseSnapshotORM
from licence_admin.models.orm.license import LicenseORM

__all__ = [
    "AuditEventORM",
    "Base",
    "ExternalLicenseSnapshotORM",
    "LicenseAssignmentORM",
    "LicenseORM",
]
