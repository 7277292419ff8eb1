"""Provider reconciliation router."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from licence_admin.dependencies import get_reconciliation_service
from licence_admin.models.dto.sync import SyncRecordRequest, SyncRecordsRequest, SyncStatsResponse
from licence_admin.providers.external_api import ExternalLicenseApiProvider
from licence_admin.services.reconciliation_service import (
    RecordOutcome,
    ReconciliationService,
    ReconciliationSummary,
)

router = APIRouter()


@router.post("/run", response_model=ReconciliationSummary)
async def run_reconciliation(
    reconciliation_service: Annotated[ReconciliationService, Depends(get_reconciliation_service)],
) -> ReconciliationSummary:
    """Reconcile the full provider feed now."""
    return await reconciliation_service.run(ExternalLicenseApiProvider())


@router.post("/records", response_model=ReconciliationSummary)
async def reconcile_records(
    body: SyncRecordsRequest,
    reconciliation_service: Annotated[ReconciliationService, Depends(get_reconciliation_service)],
) -> ReconciliationSummary:
    """Reconcile a supplied list of provider records."""
    return await reconciliation_service.reconcile_records(body.records)


@router.post("/record", response_model=RecordOutcome)
async def sync_single_record(
    body: SyncRecordRequest,
    reconciliation_service: Annotated[ReconciliationService, Depends(get_reconciliation_service)],
) -> RecordOutcome:
    """Reconcile one provider record."""
    return await reconciliation_service.sync_single(body.record)


@router.post("/retry-failed", response_model=ReconciliationSummary)
async def retry_failed(
    reconciliation_service: Annotated[ReconciliationService, Depends(get_reconciliation_service)],
    limit: int = Query(default=100, ge=1, le=1000),
) -> ReconciliationSummary:
    """Re-run reconciliation for failed snapshots."""
    return await reconciliation_service.retry_failed(limit)


@router.get("/stats", response_model=SyncStatsResponse)
async def get_sync_stats(
    reconciliation_service: Annotated[ReconciliationService, Depends(get_reconciliation_service)],
) -> SyncStatsResponse:
    """Snapshot counts per sync status."""
    return SyncStatsResponse(**await reconciliation_service.get_sync_stats())


@router.get("/provider/status")
async def get_provider_status() -> dict[str, bool]:
    """Check whether the provider feed is reachable with the configured key."""
    return {"reachable": await ExternalLicenseApiProvider().test_connection()}
