"""Sync status for every account being synced."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from fitbit_exporter.dependencies import SyncServiceDep, TokenManagerDep
from fitbit_exporter.models.sync import SyncOverviewRead, SyncStatusRead

router = APIRouter(prefix="/sync", tags=["sync"])


@router.get("/status", response_model=SyncOverviewRead)
async def sync_status(sync_service: SyncServiceDep, tokens: TokenManagerDep) -> Any:
    return SyncOverviewRead(
        authenticated=tokens.is_authenticated,
        accounts=[SyncStatusRead.model_validate(s) for s in sync_service.statuses()],
    )
