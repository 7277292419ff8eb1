"""Reconciliation and lifecycle DTOs."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class SyncRecordsRequest(BaseModel):
    """Provider records to reconcile directly."""

    records: list[Any] = Field(min_length=1, max_length=1000)


class SyncRecordRequest(BaseModel):
    """A single provider record to reconcile."""

    record: dict[str, Any]


class SyncStatsResponse(BaseModel):
    """Snapshot counts per sync status."""

    total: int
    by_status: dict[str, int]
    last_synced_at: datetime | None = None


class LifecycleRunRequest(BaseModel):
    """Optional evaluation time for a lifecycle pass."""

    now: datetime | None = None
