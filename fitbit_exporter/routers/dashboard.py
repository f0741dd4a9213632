"""Dashboard data for one account: today, recent zone shares, personal records."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, HTTPException

from fitbit_exporter.dependencies import SyncServiceDep, TokenManagerDep
from fitbit_exporter.models.dashboard import DashboardRead
from fitbit_exporter.models.sync import SyncStatusRead
from fitbit_exporter.services.dashboard import build_dashboard

router = APIRouter(prefix="/accounts", tags=["dashboard"])


@router.get("/{account_id}/dashboard", response_model=DashboardRead)
async def get_dashboard(
    account_id: str, tokens: TokenManagerDep, sync_service: SyncServiceDep
) -> Any:
    if account_id not in tokens.accounts():
        raise HTTPException(status_code=404, detail="Account not found; log in via /login")

    status = sync_service.status(account_id)
    return await build_dashboard(
        account_id,
        today=datetime.now(timezone.utc).date(),
        sync=SyncStatusRead.model_validate(status) if status else None,
    )
