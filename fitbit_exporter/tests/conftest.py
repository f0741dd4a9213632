"""Shared fixtures for HTTP-surface tests.

Routes are exercised through ``TestClient`` without running the lifespan:
the objects the lifespan would build are replaced by mocks on ``app.state``.
"""

from __future__ import annotations

import os
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

# Settings are read when the app module is imported
os.environ.setdefault("FITBIT_CLIENT_ID", "test-client")
os.environ.setdefault("FITBIT_CLIENT_SECRET", "test-secret")

from fastapi import FastAPI  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from fitbit_exporter.fitbit.auth import FitbitOAuth  # noqa: E402
from fitbit_exporter.main import create_app  # noqa: E402

TEST_ACCOUNT = "ABC123"
TEST_DATE = date(2026, 2, 23)
TEST_NOW = datetime(2026, 2, 23, 15, 20, tzinfo=timezone.utc)


@pytest.fixture
def app() -> FastAPI:
    app = create_app()
    app.state.oauth = FitbitOAuth(
        client_id="test-client",
        client_secret="test-secret",
        redirect_url="http://testserver/callback",
    )
    app.state.token_store = MagicMock(save=AsyncMock())
    app.state.token_manager = MagicMock(is_authenticated=True)
    app.state.token_manager.accounts.return_value = [TEST_ACCOUNT]
    app.state.fitbit_client = MagicMock()
    app.state.sync_service = MagicMock()
    return app


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)
