"""Audit event repository."""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import and_, func, select

from licence_admin.models.orm.audit_event import AuditEventORM
from licence_admin.repositories.base import BaseRepository
from licence_admin.utils.validation import escape_like_wildcards


class AuditRepository(BaseRepository[AuditEventORM]):
    """Repository for the append-only audit event log.

    Exposes no update or delete path.
    """

    model = AuditEventORM

    async def append(
        self,
        event_type: str,
        entity_type: str,
        entity_id: UUID | None = None,
        actor_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditEventORM:
        """Append an audit event.

        Args:
            event_type: Namespaced ``category.action`` type
            entity_type: Type of entity affected
            entity_id: ID of affected entity
            actor_id: Acting user, None for system events
            metadata: JSON-serializable event details

        Returns:
            Created AuditEventORM
        """
        event = AuditEventORM(
            type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=actor_id,
            event_metadata=metadata or {},
        )
        self.session.add(event)
        await self.flush()
        return event

    async def get_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
        limit: int = 50,
    ) -> list[AuditEventORM]:
        """Get audit events for a specific entity, newest first."""
        result = await self.session.execute(
            select(AuditEventORM)
            .where(
                and_(
                    AuditEventORM.entity_type == entity_type,
                    AuditEventORM.entity_id == entity_id,
                )
            )
            .order_by(AuditEventORM.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_events(
        self,
        entity_type: str | None = None,
        entity_id: UUID | None = None,
        type_prefix: str | None = None,
        actor_id: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[AuditEventORM], int]:
        """Get audit events with filters.

        Args:
            entity_type: Filter by entity type
            entity_id: Filter by entity ID
            type_prefix: Filter by event type prefix (e.g. ``license.``)
            actor_id: Filter by acting user
            date_from: Filter events on or after this time
            date_to: Filter events on or before this time
            offset: Pagination offset
            limit: Page size

        Returns:
            Tuple of (events, total count)
        """
        conditions = []
        if entity_type:
            conditions.append(AuditEventORM.entity_type == entity_type)
        if entity_id:
            conditions.append(AuditEventORM.entity_id == entity_id)
        if type_prefix:
            escaped = escape_like_wildcards(type_prefix)
            conditions.append(AuditEventORM.type.like(f"{escaped}%", escape="\\"))
        if actor_id:
            conditions.append(AuditEventORM.actor_id == actor_id)
        if date_from:
            conditions.append(AuditEventORM.created_at >= date_from)
        if date_to:
            conditions.append(AuditEventORM.created_at <= date_to)

        query = select(AuditEventORM)
        count_query = select(func.count()).select_from(AuditEventORM)
        if conditions:
            query = query.where(and_(*conditions))
            count_query = count_query.where(and_(*conditions))

        total = (await self.session.execute(count_query)).scalar_one()

        query = query.order_by(AuditEventORM.created_at.desc()).offset(offset).limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all()), total
