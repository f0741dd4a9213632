"""Response schemas for sync status."""

from __future__ import annotations

from datetime import datetime

from fitbit_exporter.models.base import ExporterBase
from fitbit_exporter.sync.backfill import DriverState


class SyncStatusRead(ExporterBase):
    """One account's driver status, read from ``DriverStatus``."""

    account_id: str
    state: DriverState
    running: bool
    last_outcome: DriverState | None = None
    last_run_started_at: datetime | None = None
    last_run_duration: float | None = None
    last_error: str | None = None
    days_fetched: int = 0
    rows_created: int = 0
    history_exhausted: bool = False


class SyncOverviewRead(ExporterBase):
    authenticated: bool
    accounts: list[SyncStatusRead]
