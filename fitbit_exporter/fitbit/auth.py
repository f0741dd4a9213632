"""Fitbit OAuth2 authorization-code flow and token bookkeeping.

Three pieces:

    FitbitOAuth:  builds the authorize URL, exchanges codes, refreshes tokens
    TokenStore:   persists tokens in the ``oauth_token`` table
    TokenManager: per-account token cache with proactive refresh; also the
                  "wait until someone has logged in" gate the sync service
                  blocks on at startup
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone

import httpx

from fitbit_exporter.fitbit.models import OAuthTokens
from fitbit_exporter.services.database import execute, fetch

logger = logging.getLogger("fitbit_exporter.fitbit.auth")

_FITBIT_AUTH_URL = "https://www.fitbit.com/oauth2/authorize"
_FITBIT_TOKEN_URL = "https://api.fitbit.com/oauth2/token"

REQUIRED_SCOPES: tuple[str, ...] = ("profile", "heartrate")


class NotAuthenticatedError(RuntimeError):
    """Raised when no token is stored for the requested account."""


# ---------------------------------------------------------------------------
# OAuth2 endpoints
# ---------------------------------------------------------------------------


class FitbitOAuth:
    """Fitbit OAuth2 authorization-code flow.

    Token requests authenticate the app with HTTP Basic (client id / secret),
    as Fitbit requires for server-side applications.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_url: str,
        auth_url: str = _FITBIT_AUTH_URL,
        token_url: str = _FITBIT_TOKEN_URL,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_url = redirect_url
        self._auth_url = auth_url
        self._token_url = token_url
        self._http_client = http_client

    def authorization_url(self, state: str | None = None) -> str:
        """Return the URL the user is redirected to for consent."""
        params = {
            "response_type": "code",
            "client_id": self._client_id,
            "redirect_uri": self._redirect_url,
            "scope": " ".join(REQUIRED_SCOPES),
        }
        if state:
            params["state"] = state
        return str(httpx.URL(self._auth_url, params=params))

    async def exchange_code(self, code: str) -> OAuthTokens:
        """Exchange an authorization code for access + refresh tokens.

        Raises:
            httpx.HTTPStatusError: If Fitbit rejects the code.
        """
        logger.info("Fitbit: exchanging authorization code")
        return await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "client_id": self._client_id,
                "redirect_uri": self._redirect_url,
            }
        )

    async def refresh_token(self, refresh_token: str) -> OAuthTokens:
        """Exchange a refresh token for a new token pair.

        Fitbit refresh tokens are single-use; the returned pair replaces the
        old one entirely.

        Raises:
            httpx.HTTPStatusError: If the refresh token is invalid or revoked.
        """
        return await self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token}
        )

    async def _token_request(self, data: dict[str, str]) -> OAuthTokens:
        auth = (self._client_id, self._client_secret)
        if self._http_client:
            response = await self._http_client.post(self._token_url, data=data, auth=auth)
        else:
            async with httpx.AsyncClient() as client:
                response = await client.post(self._token_url, data=data, auth=auth)

        response.raise_for_status()
        return tokens_from_response(response.json())


def tokens_from_response(data: dict) -> OAuthTokens:
    """Build OAuthTokens from a Fitbit token endpoint response."""
    expires_in = int(data.get("expires_in", 28800))
    return OAuthTokens(
        account_id=data["user_id"],
        access_token=data["access_token"],
        refresh_token=data.get("refresh_token"),
        expires_at=datetime.now(timezone.utc).replace(microsecond=0)
        + timedelta(seconds=expires_in),
        token_type=data.get("token_type", "Bearer"),
        scope=str(data.get("scope", "")).split(),
    )


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class TokenStore:
    """Reads and writes the ``oauth_token`` table (one row per account)."""

    async def load_all(self) -> list[OAuthTokens]:
        rows = await fetch(
            """
            SELECT account_id, access_token, refresh_token, token_type, scope, expires_at
            FROM oauth_token
            ORDER BY account_id
            """
        )
        return [
            OAuthTokens(
                account_id=r["account_id"],
                access_token=r["access_token"],
                refresh_token=r["refresh_token"],
                expires_at=r["expires_at"],
                token_type=r["token_type"],
                scope=list(r["scope"] or []),
            )
            for r in rows
        ]

    async def save(self, tokens: OAuthTokens, display_name: str | None = None) -> None:
        await execute(
            """
            INSERT INTO oauth_token
                (account_id, access_token, refresh_token, token_type, scope, expires_at, display_name)
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            ON CONFLICT (account_id) DO UPDATE SET
                access_token = EXCLUDED.access_token,
                refresh_token = EXCLUDED.refresh_token,
                token_type = EXCLUDED.token_type,
                scope = EXCLUDED.scope,
                expires_at = EXCLUDED.expires_at,
                display_name = COALESCE(EXCLUDED.display_name, oauth_token.display_name),
                updated_at = NOW()
            """,
            tokens.account_id,
            tokens.access_token,
            tokens.refresh_token,
            tokens.token_type,
            tokens.scope,
            tokens.expires_at,
            display_name,
        )


# ---------------------------------------------------------------------------
# Token manager
# ---------------------------------------------------------------------------


class TokenManager:
    """Cache of live tokens per account with refresh-before-expiry.

    Implements the ``TokenProvider`` protocol consumed by ``FitbitClient``.
    Refreshes are serialized per account because Fitbit invalidates a
    refresh token as soon as it is used.
    """

    def __init__(
        self,
        oauth: FitbitOAuth,
        store: TokenStore,
        refresh_buffer_seconds: int = 300,
    ) -> None:
        self._oauth = oauth
        self._store = store
        self._refresh_buffer = refresh_buffer_seconds
        self._tokens: dict[str, OAuthTokens] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._authenticated = asyncio.Event()

    @property
    def is_authenticated(self) -> bool:
        return self._authenticated.is_set()

    def accounts(self) -> list[str]:
        return sorted(self._tokens)

    async def load(self) -> list[str]:
        """Load previously stored tokens so a restart needs no new login."""
        for tokens in await self._store.load_all():
            self._tokens[tokens.account_id] = tokens
        if self._tokens:
            self._authenticated.set()
            logger.info("Loaded stored tokens for %d account(s)", len(self._tokens))
        return self.accounts()

    async def wait_for_auth(self) -> None:
        """Block until at least one account holds a token."""
        if not self.is_authenticated:
            logger.info("Waiting for authentication to complete (visit /login)")
        await self._authenticated.wait()

    async def complete_login(self, code: str) -> OAuthTokens:
        """Finish the OAuth callback: exchange the code and persist the tokens."""
        tokens = await self._oauth.exchange_code(code)
        await self._store.save(tokens)
        self._tokens[tokens.account_id] = tokens
        self._authenticated.set()
        logger.info("Fitbit account %s authenticated", tokens.account_id)
        return tokens

    async def access_token(self, account_id: str) -> str:
        tokens = self._get(account_id)
        if tokens.needs_refresh(self._refresh_buffer):
            return await self.refresh(account_id)
        return tokens.access_token

    async def refresh(self, account_id: str) -> str:
        """Force a refresh for ``account_id`` and return the new access token."""
        stale = self._get(account_id)
        async with self._locks.setdefault(account_id, asyncio.Lock()):
            current = self._tokens[account_id]
            # Another caller refreshed while we waited for the lock
            if current is not stale:
                return current.access_token
            if not current.refresh_token:
                raise NotAuthenticatedError(
                    f"Token for {account_id} expired and no refresh token is stored"
                )
            new_tokens = await self._oauth.refresh_token(current.refresh_token)
            await self._store.save(new_tokens)
            self._tokens[account_id] = new_tokens
            logger.info("Refreshed token for %s", account_id)
            return new_tokens.access_token

    def _get(self, account_id: str) -> OAuthTokens:
        try:
            return self._tokens[account_id]
        except KeyError:
            raise NotAuthenticatedError(f"No token stored for account {account_id}") from None
