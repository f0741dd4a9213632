"""Fitbit heart-rate exporter: FastAPI application entry point.

Run locally:
    uvicorn fitbit_exporter.main:app --reload --port 3000
or via the console script:
    fitbit-exporter
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.gzip import GZipMiddleware

from fitbit_exporter.config import get_settings
from fitbit_exporter.fitbit.auth import FitbitOAuth, TokenManager, TokenStore
from fitbit_exporter.fitbit.client import FitbitClient
from fitbit_exporter.routers import auth, dashboard, health, sync
from fitbit_exporter.services.database import apply_schema, close_pool, init_pool
from fitbit_exporter.sync.config_loader import get_sync_config
from fitbit_exporter.sync.service import SyncService
from fitbit_exporter.sync.store import PostgresHeartRateStore

# ---------- Logging ----------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("fitbit_exporter")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())
    logger.info(
        "Starting %s v%s [%s]", settings.app_name, settings.app_version, settings.environment
    )

    await init_pool(settings)
    await apply_schema()

    oauth = FitbitOAuth(
        client_id=settings.fitbit_client_id,
        client_secret=settings.fitbit_client_secret,
        redirect_url=settings.fitbit_redirect_url,
        auth_url=settings.fitbit_auth_url,
        token_url=settings.fitbit_token_url,
    )
    token_store = TokenStore()
    token_manager = TokenManager(oauth, token_store)
    await token_manager.load()

    client = FitbitClient(
        token_manager,
        api_base=settings.fitbit_api_base,
        timeout=settings.fitbit_request_timeout,
    )
    sync_service = SyncService(
        client,
        PostgresHeartRateStore(),
        token_manager,
        config=get_sync_config(),
        backfill_start=settings.backfill_start,
    )

    app.state.oauth = oauth
    app.state.token_store = token_store
    app.state.token_manager = token_manager
    app.state.fitbit_client = client
    app.state.sync_service = sync_service

    await sync_service.start()
    yield
    await sync_service.stop()
    await client.aclose()
    await close_pool()
    logger.info("%s shut down", settings.app_name)


# ---------- App factory ----------

def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Mirrors Fitbit heart-rate data into PostgreSQL and serves a dashboard.",
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(GZipMiddleware, minimum_size=1000)

    # ---------- Outside the v1 prefix ----------
    app.include_router(health.router)
    app.include_router(auth.router)

    # ---------- API v1 routes ----------
    v1_prefix = "/api/v1"

    app.include_router(sync.router, prefix=v1_prefix)
    app.include_router(dashboard.router, prefix=v1_prefix)

    return app


app = create_app()


def run() -> None:
    """Console-script entry point."""
    settings = get_settings()
    uvicorn.run(
        "fitbit_exporter.main:app",
        host=settings.listen_host,
        port=settings.listen_port,
        log_level=settings.log_level.lower(),
    )
