"""Periodic runner for one account's backfill driver.

Runs the driver once as soon as authentication is available, then again
every ``interval_seconds``.  Runs are strictly sequential; a failed run is
logged and the scheduler simply waits for the next interval.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from fitbit_exporter.sync.backfill import BackfillDriver, RunResult

logger = logging.getLogger("fitbit_exporter.sync.scheduler")


class SyncScheduler:
    """Drive a ``BackfillDriver`` on a fixed interval until stopped.

    Usage::

        scheduler = SyncScheduler(driver, interval_seconds=3600,
                                  wait_for_auth=token_manager.wait_for_auth)
        task = asyncio.create_task(scheduler.run_forever())
        ...
        scheduler.stop()
        await task
    """

    def __init__(
        self,
        driver: BackfillDriver,
        interval_seconds: float = 3600.0,
        wait_for_auth: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self.driver = driver
        self._interval = interval_seconds
        self._wait_for_auth = wait_for_auth
        self._stop = asyncio.Event()
        self.runs = 0

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        """Ask the loop to exit at its next wait.  An in-flight run is not interrupted."""
        self._stop.set()

    async def run_forever(self) -> None:
        if self._wait_for_auth is not None:
            await self._wait_for_auth()

        logger.info(
            "Scheduler started for %s (interval %.0fs)", self.driver.account_id, self._interval
        )
        while not self.stopped:
            await self.run_once()
            if await self._wait_interval():
                break
        logger.info("Scheduler stopped for %s", self.driver.account_id)

    async def run_once(self) -> RunResult | None:
        """Run the driver once; failures are logged, never raised."""
        self.runs += 1
        try:
            result = await self.driver.run()
        except Exception:
            logger.exception("Unexpected error during sync run for %s", self.driver.account_id)
            return None

        if not result.succeeded:
            logger.warning(
                "Sync run for %s failed; next attempt in %.0fs",
                self.driver.account_id,
                self._interval,
            )
        return result

    async def _wait_interval(self) -> bool:
        """Sleep for one interval; return True if ``stop()`` was called meanwhile."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=self._interval)
        except asyncio.TimeoutError:
            return False
        return True
