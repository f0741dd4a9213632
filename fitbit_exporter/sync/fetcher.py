"""Rate-limited heart-rate fetcher.

Turns the client's tagged results into either a parsed ``DayPayload`` or a
``SyncError``.  A ``RateLimited`` result never escapes: the fetcher sleeps
for the server's ``Retry-After`` plus a safety margin and asks for the same
date again, for as long as the per-date timeout allows.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Awaitable, Callable, Protocol

from fitbit_exporter.fitbit.models import (
    DayPayload,
    HeartRateFetched,
    HeartRateResult,
    MalformedResponse,
    RateLimited,
    RequestFailed,
)
from fitbit_exporter.sync.config_loader import BackfillConfig, RateLimitConfig
from fitbit_exporter.sync.errors import FetchTimeoutError, FitbitAPIError, MalformedPayloadError

logger = logging.getLogger("fitbit_exporter.sync.fetcher")


class HeartRateSource(Protocol):
    """The slice of ``FitbitClient`` the fetcher depends on."""

    async def get_heart_data(
        self,
        account_id: str,
        start: date,
        end: date | None = None,
        detail_level: str | None = ...,
    ) -> HeartRateResult: ...


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def seconds_until_next_hour(now: datetime) -> float:
    """Seconds from ``now`` to the top of the next hour (Fitbit's quota window)."""
    next_hour = now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
    return (next_hour - now).total_seconds()


class RateLimitedFetcher:
    """Fetch one date's heart-rate payload, waiting out rate limits.

    Args:
        client:     Anything with ``get_heart_data`` returning tagged results.
        rate_limit: Margin and per-date timeout settings.
        backfill:   Supplies the intraday detail level.
        sleep:      Awaitable sleep, injectable for tests.
        clock:      UTC clock, used when a 429 carries no Retry-After.
    """

    def __init__(
        self,
        client: HeartRateSource,
        rate_limit: RateLimitConfig | None = None,
        backfill: BackfillConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._client = client
        self._rate_limit = rate_limit or RateLimitConfig()
        self._detail_level = (backfill or BackfillConfig()).detail_level
        self._sleep = sleep
        self._clock = clock

    async def fetch(self, account_id: str, day: date, end: date | None = None) -> DayPayload:
        """Return the payload for ``day`` (through ``end`` if given).

        Raises:
            FitbitAPIError:        Non-2xx, non-429 response or transport failure.
            MalformedPayloadError: 2xx response that did not parse.
            FetchTimeoutError:     Rate limiting outlasted the per-date timeout.
        """
        timeout = self._rate_limit.fetch_timeout_seconds
        try:
            return await asyncio.wait_for(self._fetch_with_retry(account_id, day, end), timeout)
        except asyncio.TimeoutError:
            raise FetchTimeoutError(
                f"timeout waiting to get API data for {day} after {timeout:.0f}s",
                account_id=account_id,
                day=day,
            ) from None

    async def _fetch_with_retry(
        self, account_id: str, day: date, end: date | None
    ) -> DayPayload:
        attempts = 0
        while True:
            attempts += 1
            result = await self._client.get_heart_data(
                account_id, day, end, detail_level=self._detail_level
            )

            if isinstance(result, HeartRateFetched):
                if attempts > 1:
                    logger.info("%s %s: fetched after %d attempts", account_id, day, attempts)
                return result.payload

            if isinstance(result, RateLimited):
                await self._wait_out(account_id, day, result.retry_after)
                continue

            if isinstance(result, RequestFailed):
                raise FitbitAPIError(
                    result.message, result.status_code, account_id=account_id, day=day
                )

            if isinstance(result, MalformedResponse):
                raise MalformedPayloadError(
                    f"Malformed heart-rate payload: {result.message}",
                    account_id=account_id,
                    day=day,
                )

            raise TypeError(f"Unexpected client result {result!r}")

    async def _wait_out(self, account_id: str, day: date, retry_after: float | None) -> None:
        now = self._clock()
        base = retry_after if retry_after is not None else seconds_until_next_hour(now)
        wait = base + self._rate_limit.margin_seconds
        logger.warning(
            "Rate limited fetching %s for %s; waiting %.0fs (resume at %s)",
            day,
            account_id,
            wait,
            (now + timedelta(seconds=wait)).isoformat(timespec="seconds"),
        )
        await self._sleep(wait)
