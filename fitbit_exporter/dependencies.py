"""Shared FastAPI dependencies injected into route handlers.

The long-lived objects (token manager, Fitbit client, sync service) are
built in the app lifespan and parked on ``app.state``.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from fitbit_exporter.config import Settings, get_settings
from fitbit_exporter.fitbit.auth import FitbitOAuth, TokenManager, TokenStore
from fitbit_exporter.fitbit.client import FitbitClient
from fitbit_exporter.sync.service import SyncService


def _state(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return value


def get_oauth(request: Request) -> FitbitOAuth:
    return _state(request, "oauth")


def get_token_store(request: Request) -> TokenStore:
    return _state(request, "token_store")


def get_token_manager(request: Request) -> TokenManager:
    return _state(request, "token_manager")


def get_fitbit_client(request: Request) -> FitbitClient:
    return _state(request, "fitbit_client")


def get_sync_service(request: Request) -> SyncService:
    return _state(request, "sync_service")


# Annotated shortcuts for route signatures
AppSettings = Annotated[Settings, Depends(get_settings)]
OAuthDep = Annotated[FitbitOAuth, Depends(get_oauth)]
TokenStoreDep = Annotated[TokenStore, Depends(get_token_store)]
TokenManagerDep = Annotated[TokenManager, Depends(get_token_manager)]
FitbitClientDep = Annotated[FitbitClient, Depends(get_fitbit_client)]
SyncServiceDep = Annotated[SyncService, Depends(get_sync_service)]
