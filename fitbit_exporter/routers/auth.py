"""Fitbit OAuth2 login and callback.

``/login`` redirects to Fitbit's consent page with a random ``state`` kept
in a short-lived cookie; ``/callback`` checks it, exchanges the code,
stores the tokens and starts syncing the account.
"""

from __future__ import annotations

import logging
import secrets

import httpx
from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import RedirectResponse

from fitbit_exporter.dependencies import (
    FitbitClientDep,
    OAuthDep,
    SyncServiceDep,
    TokenManagerDep,
    TokenStoreDep,
)

router = APIRouter(tags=["auth"])
logger = logging.getLogger("fitbit_exporter.auth")

STATE_COOKIE = "fitbit_oauth_state"
_STATE_MAX_AGE = 600


@router.get("/login")
async def login(oauth: OAuthDep) -> RedirectResponse:
    state = secrets.token_urlsafe(24)
    response = RedirectResponse(oauth.authorization_url(state), status_code=307)
    response.set_cookie(
        STATE_COOKIE, state, max_age=_STATE_MAX_AGE, httponly=True, samesite="lax"
    )
    return response


@router.get("/callback")
async def callback(
    request: Request,
    tokens: TokenManagerDep,
    token_store: TokenStoreDep,
    client: FitbitClientDep,
    sync_service: SyncServiceDep,
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
) -> dict:
    if error:
        raise HTTPException(status_code=400, detail=f"Authorization denied: {error}")
    if not code:
        raise HTTPException(status_code=400, detail="Missing authorization code")

    expected = request.cookies.get(STATE_COOKIE)
    if not expected or not state or not secrets.compare_digest(expected, state):
        raise HTTPException(status_code=400, detail="OAuth state mismatch")

    try:
        oauth_tokens = await tokens.complete_login(code)
    except httpx.HTTPError as exc:
        logger.error("Fitbit code exchange failed: %s", exc)
        raise HTTPException(status_code=502, detail="Fitbit token exchange failed") from exc

    account_id = oauth_tokens.account_id
    display_name: str | None = None
    try:
        profile = await client.get_profile(account_id)
        display_name = profile.display_name or profile.full_name or None
        await token_store.save(oauth_tokens, display_name=display_name)
    except httpx.HTTPError as exc:
        # Login still succeeded; the profile is cosmetic
        logger.warning("Could not fetch profile for %s: %s", account_id, exc)

    started = sync_service.add_account(account_id)
    return {
        "account_id": account_id,
        "display_name": display_name,
        "sync_started": started,
    }
