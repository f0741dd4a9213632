"""Health endpoint: can this process sync right now?

Public and unauthenticated.  Reads the lifespan objects straight from
``app.state`` rather than through the 503-raising dependencies, so it
answers during startup too.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from fitbit_exporter.dependencies import AppSettings
from fitbit_exporter.services.database import get_pool

router = APIRouter(tags=["system"])
logger = logging.getLogger("fitbit_exporter.health")


async def _database_reachable() -> bool:
    try:
        pool = get_pool()
        async with pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
    except Exception as exc:
        logger.warning("Health check DB probe failed: %s", exc)
        return False
    return True


@router.get("/health")
async def health_check(request: Request, settings: AppSettings) -> dict:
    """Always 200 while the process is up; ``status`` carries the verdict.

    ``healthy`` needs a reachable database and a completed Fitbit login.
    Before any login the service is ``awaiting_login``; without the
    database it is ``degraded``.
    """
    db_ok = await _database_reachable()
    tokens = getattr(request.app.state, "token_manager", None)
    service = getattr(request.app.state, "sync_service", None)

    authenticated = bool(tokens is not None and tokens.is_authenticated)
    accounts = service.accounts() if service is not None else []
    syncing = [s.account_id for s in service.statuses() if s.running] if service is not None else []

    if not db_ok:
        status = "degraded"
    elif not authenticated:
        status = "awaiting_login"
    else:
        status = "healthy"

    return {
        "status": status,
        "version": settings.app_version,
        "environment": settings.environment,
        "database": "connected" if db_ok else "unreachable",
        "authenticated": authenticated,
        "schedulers": len(accounts),
        "syncing": syncing,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
