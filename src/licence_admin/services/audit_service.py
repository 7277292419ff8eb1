"""Audit service for centralized audit logging."""

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic_core import to_jsonable_python
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from licence_admin.exceptions import LicenceAdminError
from licence_admin.models.domain.audit import AuditEvent
from licence_admin.repositories.audit_repository import AuditRepository
from licence_admin.utils.secure_logging import log_error

logger = logging.getLogger(__name__)


class AuditService:
    """Service for audit logging operations.

    Every mutation on a license or assignment goes through ``record_event``.
    Recording runs in a savepoint so a failed insert never rolls back the
    mutation that triggered it.
    """

    # Sensitive fields that should be masked in audit metadata
    SENSITIVE_FIELDS = frozenset({
        "api_key",
        "provider_api_key",
        "access_token",
        "secret",
        "password",
    })

    def __init__(self, session: AsyncSession) -> None:
        """Initialize audit service.

        Args:
            session: Database session
        """
        self.session = session
        self.audit_repo = AuditRepository(session)

    @classmethod
    def _mask_sensitive_data(cls, data: dict[str, Any] | None) -> dict[str, Any]:
        """Replace sensitive values with ``[REDACTED]``, recursively."""
        if not data:
            return {}

        masked: dict[str, Any] = {}
        for key, value in data.items():
            if key.lower() in cls.SENSITIVE_FIELDS:
                masked[key] = "[REDACTED]"
            elif isinstance(value, dict):
                masked[key] = cls._mask_sensitive_data(value)
            elif isinstance(value, list):
                masked[key] = [
                    cls._mask_sensitive_data(item) if isinstance(item, dict) else item
                    for item in value
                ]
            else:
                masked[key] = value
        return masked

    async def record_event(
        self,
        event_type: str,
        actor_id: str | None,
        entity_id: UUID | None,
        entity_type: str,
        metadata: dict[str, Any] | None = None,
    ) -> AuditEvent | None:
        """Append an audit event.

        Failures are logged and reported as ``None``; they never propagate to
        the caller.

        Args:
            event_type: Namespaced type (use AuditEventType constants)
            actor_id: Acting user, None for system events
            entity_id: ID of the affected entity
            entity_type: Entity kind (use EntityType constants)
            metadata: Event details; made JSON-safe and masked

        Returns:
            The recorded event, or None if recording failed
        """
        try:
            payload = to_jsonable_python(self._mask_sensitive_data(metadata))
            async with self.session.begin_nested():
                event = await self.audit_repo.append(
                    event_type=event_type,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    actor_id=actor_id,
                    metadata=payload,
                )
            return AuditEvent.model_validate(event)
        except (SQLAlchemyError, LicenceAdminError, ValueError, TypeError) as e:
            log_error(
                logger,
                f"Failed to record audit event {event_type}",
                e,
                entity_id=str(entity_id) if entity_id else None,
            )
            return None

    async def list_events(
        self,
        entity_type: str | None = None,
        entity_id: UUID | None = None,
        type_prefix: str | None = None,
        actor_id: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[AuditEvent], int]:
        """List audit events, newest first.

        Returns:
            Tuple of (events, total count)
        """
        events, total = await self.audit_repo.get_events(
            entity_type=entity_type,
            entity_id=entity_id,
            type_prefix=type_prefix,
            actor_id=actor_id,
            date_from=date_from,
            date_to=date_to,
            offset=(page - 1) * page_size,
            limit=page_size,
        )
        return [AuditEvent.model_validate(e) for e in events], total

    async def get_entity_history(self, entity_type: str, entity_id: UUID) -> list[AuditEvent]:
        """Get the audit trail of one entity, newest first."""
        events = await self.audit_repo.get_by_entity(entity_type, entity_id, limit=500)
        return [AuditEvent.model_validate(e) for e in events]
