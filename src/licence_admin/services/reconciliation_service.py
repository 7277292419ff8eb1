"""Reconciliation of provider license records into the internal store.

Each provider record is sanitized, matched to an internal license by appid,
then countid, then email, and merged under the field policy in
``models.domain.external``. Records are isolated from each other: a failing
record is marked ``failed`` with its error and the batch continues.
"""

import asyncio
import logging
import zlib
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, computed_field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncSession

from licence_admin.config import Settings, get_settings
from licence_admin.exceptions import (
    ExternalSyncError,
    LicenceAdminError,
    ReconciliationInProgressError,
    TransientInfrastructureError,
    ValidationError,
)
from licence_admin.models.domain.audit import AuditEventType, EntityType
from licence_admin.models.domain.external import (
    ExternalLicenseRecord,
    MatchedOn,
    build_merge_changes,
    build_new_license_data,
    generate_external_key,
    payload_hash,
    provider_target_status,
)
from licence_admin.models.domain.license import ExternalSyncStatus, License, LicenseStatus
from licence_admin.models.domain.state_machine import (
    TransitionContext,
    check_transition,
    plan_transition,
)
from licence_admin.models.domain.validation import LenientDefaults, validate_license_data
from licence_admin.models.orm.external_license import ExternalLicenseSnapshotORM
from licence_admin.models.orm.license import LicenseORM
from licence_admin.providers.base import BaseLicenseProvider, StaticLicenseProvider
from licence_admin.repositories.external_license_repository import ExternalLicenseRepository
from licence_admin.repositories.license_repository import LicenseRepository
from licence_admin.services.audit_service import AuditService
from licence_admin.utils.locks import KeyedLock
from licence_admin.utils.retry import retry_transient
from licence_admin.utils.secure_logging import describe_error, log_error, log_warning

logger = logging.getLogger(__name__)

DEFAULT_SCOPE = "default"
PROVIDER_STATUS_REASON = "Provider status changed"

# One reconciliation run per identifier space within this process
_run_locks = KeyedLock()


class RecordOutcome(BaseModel):
    """Result of reconciling one provider record."""

    external_id: str | None = None
    sync_status: ExternalSyncStatus
    action: str
    license_id: UUID | None = None
    matched_on: MatchedOn | None = None
    error: str | None = None
    warnings: list[str] = Field(default_factory=list)


class ReconciliationSummary(BaseModel):
    """Totals of a reconciliation run."""

    scope: str = DEFAULT_SCOPE
    started_at: datetime
    finished_at: datetime | None = None
    total: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    pages: int = 0
    outcomes: list[RecordOutcome] = Field(default_factory=list)

    @computed_field
    @property
    def synced(self) -> int:
        return self.created + self.updated + self.unchanged

    def add(self, outcome: RecordOutcome) -> None:
        self.total += 1
        self.outcomes.append(outcome)
        if outcome.action == "created":
            self.created += 1
        elif outcome.action == "updated":
            self.updated += 1
        elif outcome.action == "unchanged":
            self.unchanged += 1
        else:
            self.failed += 1


class ReconciliationService:
    """Service that merges provider snapshots into licenses."""

    def __init__(self, session: AsyncSession, settings: Settings | None = None) -> None:
        """Initialize service with database session."""
        self.session = session
        self.settings = settings or get_settings()
        self.license_repo = LicenseRepository(session)
        self.snapshot_repo = ExternalLicenseRepository(session)
        self.audit_service = AuditService(session)
        self.defaults = LenientDefaults(
            dba=self.settings.external_default_dba,
            product=self.settings.external_default_product,
            plan=self.settings.external_default_plan,
        )

    @asynccontextmanager
    async def _run_lock(self, scope: str) -> AsyncIterator[None]:
        """Hold the run lock for ``scope`` or fail immediately.

        On PostgreSQL an advisory lock on a dedicated connection also keeps
        other processes out.

        Raises:
            ReconciliationInProgressError: If another run holds the lock
        """
        async with _run_locks.try_hold(scope) as acquired:
            if not acquired:
                raise ReconciliationInProgressError(scope)

            bind = self.session.bind
            if bind is None or bind.dialect.name != "postgresql":
                yield
                return

            lock_id = zlib.crc32(f"reconciliation:{scope}".encode())
            connection: AsyncConnection = await bind.connect()
            try:
                got_lock = (
                    await connection.execute(
                        text("SELECT pg_try_advisory_lock(:id)"), {"id": lock_id}
                    )
                ).scalar_one()
                if not got_lock:
                    raise ReconciliationInProgressError(scope)
                try:
                    yield
                finally:
                    await connection.execute(
                        text("SELECT pg_advisory_unlock(:id)"), {"id": lock_id}
                    )
            finally:
                await connection.close()

    async def run(
        self,
        provider: BaseLicenseProvider,
        scope: str = DEFAULT_SCOPE,
    ) -> ReconciliationSummary:
        """Reconcile every page of a provider feed.

        Page fetches are retried with backoff on transient errors and bounded
        by a timeout. Records are processed in batches; each batch is
        committed before the next one starts.

        Args:
            provider: Feed to read from
            scope: Identifier space guarded by the run lock

        Returns:
            ReconciliationSummary for the run

        Raises:
            ReconciliationInProgressError: If a run for ``scope`` is active
            TransientInfrastructureError: If a page could not be fetched
                after all retries
        """
        summary = ReconciliationSummary(scope=scope, started_at=datetime.now(UTC))
        logger.info(f"Starting reconciliation run for scope {scope}")

        async with self._run_lock(scope):
            page_number = 1
            while True:
                page = await retry_transient(
                    lambda: provider.fetch_page(page_number),
                    attempts=self.settings.sync_retry_attempts,
                    base_delay=self.settings.sync_retry_delay_seconds,
                    multiplier=self.settings.sync_backoff_multiplier,
                    timeout=self.settings.provider_timeout_seconds,
                    description=f"Provider page {page_number}",
                )
                summary.pages += 1

                batch_size = max(1, self.settings.sync_batch_size)
                for start in range(0, len(page.records), batch_size):
                    await self.reconcile_batch(page.records[start : start + batch_size], summary)
                    await self.session.commit()

                if page.is_last:
                    break
                page_number += 1

        summary.finished_at = datetime.now(UTC)
        logger.info(
            f"Reconciliation run finished for scope {scope}: "
            f"{summary.created} created, {summary.updated} updated, "
            f"{summary.unchanged} unchanged, {summary.failed} failed"
        )
        return summary

    async def reconcile_records(
        self,
        records: list[Any],
        scope: str = DEFAULT_SCOPE,
    ) -> ReconciliationSummary:
        """Reconcile an in-memory list of provider records under the run lock."""
        provider = StaticLicenseProvider(records, page_size=max(1, len(records)))
        return await self.run(provider, scope)

    async def reconcile_batch(
        self,
        records: list[Any],
        summary: ReconciliationSummary | None = None,
    ) -> ReconciliationSummary:
        """Reconcile a bounded batch; one record's failure never stops the rest."""
        summary = summary or ReconciliationSummary(started_at=datetime.now(UTC))
        for raw in records:
            summary.add(await self.reconcile_record(raw))
        return summary

    async def reconcile_record(self, raw: Any) -> RecordOutcome:
        """Reconcile a single provider record.

        Never raises for record-level problems: the outcome is returned and
        persisted on the snapshot (and the license, when one was matched).
        """
        now = datetime.now(UTC)

        try:
            record = ExternalLicenseRecord.from_provider(raw)
        except ExternalSyncError as e:
            return await self._record_unparseable(raw, e, now)

        snapshot = await self.snapshot_repo.get_by_external_id(record.external_id)
        if (
            snapshot is not None
            and snapshot.payload_hash == record.payload_hash
            and snapshot.sync_status == ExternalSyncStatus.SYNCED.value
        ):
            return RecordOutcome(
                external_id=record.external_id,
                sync_status=ExternalSyncStatus.SYNCED,
                action="unchanged",
                license_id=snapshot.license_id,
            )

        matched_id: UUID | None = None
        matched_on: MatchedOn | None = None
        try:
            async with self.session.begin_nested():
                matched, matched_on = await self._identify(record)
                if matched is not None:
                    matched_id = matched.id
                license_orm, action = await asyncio.wait_for(
                    self._merge(record, matched, matched_on, now),
                    timeout=self.settings.sync_record_timeout_seconds,
                )
        except TimeoutError:
            timeout_error = TransientInfrastructureError("Record merge timed out")
            return await self._record_failure(
                record, snapshot, matched_id, matched_on, timeout_error, now
            )
        except (LicenceAdminError, SQLAlchemyError, ValueError) as e:
            return await self._record_failure(record, snapshot, matched_id, matched_on, e, now)

        await self._save_snapshot(
            snapshot, record, ExternalSyncStatus.SYNCED, None, license_orm.id, now
        )
        return RecordOutcome(
            external_id=record.external_id,
            sync_status=ExternalSyncStatus.SYNCED,
            action=action,
            license_id=license_orm.id,
            matched_on=matched_on,
            warnings=record.warnings,
        )

    async def _identify(
        self, record: ExternalLicenseRecord
    ) -> tuple[LicenseORM | None, MatchedOn | None]:
        """Find the internal license for a record: appid, then countid, then email."""
        if record.appid:
            license_orm = await self.license_repo.find_by_appid(record.appid)
            if license_orm is not None:
                return license_orm, MatchedOn.APPID
        if record.countid:
            license_orm = await self.license_repo.find_by_countid(record.countid)
            if license_orm is not None:
                return license_orm, MatchedOn.COUNTID
        if record.email:
            license_orm = await self.license_repo.find_by_email(record.email)
            if license_orm is not None:
                return license_orm, MatchedOn.EMAIL
        return None, None

    async def _merge(
        self,
        record: ExternalLicenseRecord,
        license_orm: LicenseORM | None,
        matched_on: MatchedOn | None,
        now: datetime,
    ) -> tuple[LicenseORM, str]:
        if license_orm is None:
            return await self._create_from_record(record, now), "created"

        license = License.model_validate(license_orm)
        changes = build_merge_changes(license, record, now.date(), self.defaults)

        warnings: list[str] = []
        target = provider_target_status(record)
        if target is not None and target != license.status:
            candidate = license.model_copy(update=changes)
            context = TransitionContext(reason=PROVIDER_STATUS_REASON)
            if check_transition(candidate, target, context, now).valid:
                transition = plan_transition(candidate, target, context, now)
                changes.update(transition.changes)
                warnings = transition.warnings
                if target == LicenseStatus.CANCEL and record.last_active is not None:
                    changes["cancel_date"] = record.last_active
            else:
                logger.debug(
                    f"Ignoring provider status for license {license.key}: "
                    f"{license.status} -> {target} not allowed"
                )

        if license.external_sync_status != ExternalSyncStatus.SYNCED or license.external_sync_error:
            changes["external_sync_status"] = ExternalSyncStatus.SYNCED
            changes["external_sync_error"] = None

        if not changes:
            return license_orm, "unchanged"

        changed_fields = sorted(changes)
        changes["last_external_sync"] = now
        await self.license_repo.apply_changes(license_orm, changes)
        await self.audit_service.record_event(
            AuditEventType.LICENSE_SYNC_UPDATED,
            None,
            license_orm.id,
            EntityType.LICENSE,
            {
                "external_id": record.external_id,
                "matched_on": matched_on,
                "fields": changed_fields,
                "warnings": warnings,
            },
        )
        return license_orm, "updated"

    async def _create_from_record(self, record: ExternalLicenseRecord, now: datetime) -> LicenseORM:
        key = generate_external_key(record, now)
        data = build_new_license_data(record, key, now, self.defaults)
        data["grace_period_days"] = self.settings.default_grace_period_days
        result = validate_license_data(data, lenient=True, defaults=self.defaults)
        if not result.is_valid:
            raise ValidationError(result.errors, "Provider record produced an invalid license")

        row = result.license.model_dump(exclude={"id", "created_at", "updated_at"})
        row.update(
            external_sync_status=ExternalSyncStatus.SYNCED.value,
            last_external_sync=now,
            status=result.license.status.value,
            term=result.license.term.value,
            renewal_reminders_sent=[],
        )
        license_orm = await self.license_repo.create(**row)

        await self.audit_service.record_event(
            AuditEventType.LICENSE_SYNC_CREATED,
            None,
            license_orm.id,
            EntityType.LICENSE,
            {
                "external_id": record.external_id,
                "key": key,
                "identifiers": record.identifiers,
                "corrections": result.corrections,
            },
        )
        logger.info(f"Created license {key} from provider record {record.external_id}")
        return license_orm

    async def _save_snapshot(
        self,
        snapshot: ExternalLicenseSnapshotORM | None,
        record: ExternalLicenseRecord,
        sync_status: ExternalSyncStatus,
        error: str | None,
        license_id: UUID | None,
        now: datetime,
    ) -> ExternalLicenseSnapshotORM:
        values = {
            "appid": record.appid,
            "countid": record.countid,
            "email": record.email,
            "payload": record.payload,
            "payload_hash": record.payload_hash,
            "sync_status": sync_status.value,
            "sync_error": error,
            "last_synced_at": now,
            "license_id": license_id,
        }
        if snapshot is None:
            return await self.snapshot_repo.create(
                external_id=record.external_id, sync_attempts=1, **values
            )
        values["sync_attempts"] = snapshot.sync_attempts + 1
        return await self.snapshot_repo.update(snapshot, **values)

    async def _record_failure(
        self,
        record: ExternalLicenseRecord,
        snapshot: ExternalLicenseSnapshotORM | None,
        license_id: UUID | None,
        matched_on: MatchedOn | None,
        error: Exception,
        now: datetime,
    ) -> RecordOutcome:
        message = describe_error(error)
        log_warning(logger, f"Failed to reconcile provider record {record.external_id}", error)

        try:
            # Reload: the savepoint rollback expired the matched instance
            license_orm = await self.license_repo.get(license_id) if license_id else None
            if license_orm is not None:
                await self.license_repo.apply_changes(
                    license_orm,
                    {
                        "external_sync_status": ExternalSyncStatus.FAILED,
                        "external_sync_error": message,
                        "last_external_sync": now,
                    },
                )
                await self.audit_service.record_event(
                    AuditEventType.LICENSE_SYNC_FAILED,
                    None,
                    license_orm.id,
                    EntityType.LICENSE,
                    {"external_id": record.external_id, "error": message},
                )
            await self._save_snapshot(
                snapshot, record, ExternalSyncStatus.FAILED, message, license_id, now
            )
        except (LicenceAdminError, SQLAlchemyError) as e:
            log_error(logger, f"Failed to persist sync failure for {record.external_id}", e)

        return RecordOutcome(
            external_id=record.external_id,
            sync_status=ExternalSyncStatus.FAILED,
            action="failed",
            license_id=license_id,
            matched_on=matched_on,
            error=message,
            warnings=record.warnings,
        )

    async def _record_unparseable(
        self, raw: Any, error: ExternalSyncError, now: datetime
    ) -> RecordOutcome:
        """Stage a record that could not be identified under a hash-derived key."""
        message = describe_error(error)
        payload = raw if isinstance(raw, dict) else {"raw": repr(raw)[:1000]}
        digest = payload_hash(payload)
        external_id = f"unidentified:{digest[:32]}"
        log_warning(logger, "Rejected provider record", error)

        try:
            snapshot = await self.snapshot_repo.get_by_external_id(external_id)
            if snapshot is None:
                await self.snapshot_repo.create(
                    external_id=external_id,
                    payload=payload,
                    payload_hash=digest,
                    sync_status=ExternalSyncStatus.FAILED.value,
                    sync_error=message,
                    sync_attempts=1,
                    last_synced_at=now,
                )
            elif snapshot.sync_error != message:
                await self.snapshot_repo.update(snapshot, sync_error=message, last_synced_at=now)
        except (LicenceAdminError, SQLAlchemyError, TypeError, ValueError) as e:
            log_error(logger, "Failed to stage rejected provider record", e)

        return RecordOutcome(
            external_id=external_id,
            sync_status=ExternalSyncStatus.FAILED,
            action="failed",
            error=message,
        )

    async def retry_failed(self, limit: int = 100) -> ReconciliationSummary:
        """Re-run reconciliation for snapshots currently marked failed."""
        snapshots = await self.snapshot_repo.get_by_status(ExternalSyncStatus.FAILED, limit)
        records = [s.payload for s in snapshots if not s.external_id.startswith("unidentified:")]
        summary = ReconciliationSummary(started_at=datetime.now(UTC))
        async with self._run_lock(DEFAULT_SCOPE):
            await self.reconcile_batch(records, summary)
        summary.finished_at = datetime.now(UTC)
        return summary

    async def sync_single(self, raw: Any) -> RecordOutcome:
        """Reconcile one record outside a full run."""
        async with self._run_lock(DEFAULT_SCOPE):
            return await self.reconcile_record(raw)

    async def get_sync_stats(self) -> dict[str, Any]:
        """Snapshot counts per sync status."""
        return await self.snapshot_repo.get_sync_stats()
