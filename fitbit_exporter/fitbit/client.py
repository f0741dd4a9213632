"""Fitbit Web API client.

Only the two endpoints the exporter needs are wrapped:

    /1/user/{id}/activities/heart/date/{start}/{end}/{detail}.json  heart rate
    /1/user/-/profile.json                                          profile

Heart-rate calls return a tagged result (see ``fitbit_exporter.fitbit.models``)
instead of raising, so the sync engine can tell a rate-limit pause apart from
a hard failure without inspecting exception types.

Access tokens come from a ``TokenProvider``; on a 401 the client forces one
refresh and retries the call once.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Protocol

import httpx
from pydantic import ValidationError

from fitbit_exporter.fitbit.auth import NotAuthenticatedError
from fitbit_exporter.fitbit.models import (
    DayPayload,
    FitbitProfile,
    HeartRateFetched,
    HeartRateResult,
    MalformedResponse,
    RateLimited,
    RequestFailed,
)

logger = logging.getLogger("fitbit_exporter.fitbit.client")

_FITBIT_API_BASE = "https://api.fitbit.com/1"
_HEART_RATE_PATH = "/user/{account}/activities/heart/date/{start}/{end}"

DETAIL_LEVEL_1SEC = "1sec"
DETAIL_LEVEL_1MIN = "1min"


class TokenProvider(Protocol):
    """Source of bearer tokens for an account."""

    async def access_token(self, account_id: str) -> str: ...

    async def refresh(self, account_id: str) -> str: ...


def heart_rate_path(
    account_id: str, start: date, end: date | None = None, detail_level: str | None = None
) -> str:
    """Build the heart-rate endpoint path.

    ``end`` defaults to ``start`` so a single call covers exactly one day.
    """
    path = _HEART_RATE_PATH.format(
        account=account_id,
        start=start.isoformat(),
        end=(end or start).isoformat(),
    )
    if detail_level:
        path += f"/{detail_level}"
    return path + ".json"


def parse_retry_after(value: str | None) -> float | None:
    """Parse a ``Retry-After`` header given in seconds."""
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        logger.warning("Ignoring unparseable Retry-After header: %r", value)
        return None


def error_message(response: httpx.Response) -> str:
    """Join the messages of a Fitbit error body.

    Fitbit errors look like ``{"errors": [{"errorType": ..., "message": ...}]}``.
    Falls back to the raw text when the body is not in that shape.
    """
    try:
        body = response.json()
    except ValueError:
        return response.text.strip() or response.reason_phrase
    errors = body.get("errors") if isinstance(body, dict) else None
    if not errors:
        return response.text.strip() or response.reason_phrase
    messages = [str(e.get("message", "")) for e in errors if isinstance(e, dict)]
    return " ".join(m for m in messages if m).strip() or response.reason_phrase


class FitbitClient:
    """Async Fitbit API client bound to a token provider.

    Usage::

        client = FitbitClient(token_manager)
        result = await client.get_heart_data(account_id, day, detail_level="1min")
        if isinstance(result, HeartRateFetched):
            ...
        await client.aclose()
    """

    def __init__(
        self,
        tokens: TokenProvider,
        api_base: str = _FITBIT_API_BASE,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the client.

        Args:
            tokens:      Provider of access tokens per account.
            api_base:    API root, e.g. ``https://api.fitbit.com/1``.
            http_client: Optional pre-configured httpx client (for testing).
            timeout:     Per-request timeout in seconds.
        """
        self._tokens = tokens
        self._api_base = api_base.rstrip("/")
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=timeout,
            headers={"Accept": "application/json", "Accept-Language": "en_US"},
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    async def get_heart_data(
        self,
        account_id: str,
        start: date,
        end: date | None = None,
        detail_level: str | None = DETAIL_LEVEL_1MIN,
    ) -> HeartRateResult:
        """Fetch heart-rate overview and intraday samples.

        Args:
            account_id:   Fitbit encoded user id.
            start:        First date (inclusive).
            end:          Last date (inclusive); defaults to ``start``.
            detail_level: Intraday resolution, ``1sec`` or ``1min``; None omits
                          intraday data.

        Returns:
            HeartRateFetched, RateLimited, RequestFailed or MalformedResponse.
        """
        path = heart_rate_path(account_id, start, end, detail_level)
        try:
            response = await self._get(account_id, path)
        except NotAuthenticatedError as exc:
            return RequestFailed(status_code=httpx.codes.UNAUTHORIZED, message=str(exc))
        except httpx.HTTPError as exc:
            logger.warning("Fitbit request failed for %s %s: %s", account_id, path, exc)
            return RequestFailed(status_code=0, message=f"{type(exc).__name__}: {exc}")

        if response.status_code == httpx.codes.TOO_MANY_REQUESTS:
            return RateLimited(retry_after=parse_retry_after(response.headers.get("Retry-After")))

        if not response.is_success:
            return RequestFailed(
                status_code=response.status_code, message=error_message(response)
            )

        try:
            payload = DayPayload.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            return MalformedResponse(message=str(exc))
        return HeartRateFetched(payload=payload)

    async def get_profile(self, account_id: str) -> FitbitProfile:
        """Fetch the profile of the account the token belongs to.

        Raises:
            httpx.HTTPStatusError: On non-2xx responses.
        """
        response = await self._get(account_id, "/user/-/profile.json")
        response.raise_for_status()
        return FitbitProfile.model_validate(response.json().get("user", {}))

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _get(self, account_id: str, path: str) -> httpx.Response:
        """GET ``path`` with the account's bearer token, refreshing once on 401."""
        url = f"{self._api_base}{path}"
        token = await self._tokens.access_token(account_id)
        response = await self._http.get(url, headers=self._build_headers(token))

        if response.status_code == httpx.codes.UNAUTHORIZED:
            logger.info("Fitbit: 401 for %s, refreshing token and retrying", account_id)
            token = await self._tokens.refresh(account_id)
            response = await self._http.get(url, headers=self._build_headers(token))

        return response

    @staticmethod
    def _build_headers(access_token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}
