"""Owns one scheduler per authenticated Fitbit account.

Started from the app lifespan; accounts that log in later are added by the
OAuth callback route.  At most one scheduler exists per account, so each
account's tables only ever have one writer.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from datetime import date, datetime
from typing import Awaitable, Callable

from fitbit_exporter.fitbit.auth import TokenManager
from fitbit_exporter.sync.backfill import BackfillDriver, DriverStatus
from fitbit_exporter.sync.config_loader import SyncConfig, get_sync_config
from fitbit_exporter.sync.fetcher import HeartRateSource, RateLimitedFetcher, utcnow
from fitbit_exporter.sync.scheduler import SyncScheduler
from fitbit_exporter.sync.store import HeartRateStore
from fitbit_exporter.sync.writer import HeartRateWriter

logger = logging.getLogger("fitbit_exporter.sync.service")


class SyncService:
    """Registry of running schedulers, keyed by account id."""

    def __init__(
        self,
        client: HeartRateSource,
        store: HeartRateStore,
        tokens: TokenManager,
        config: SyncConfig | None = None,
        backfill_start: date | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._client = client
        self._store = store
        self._tokens = tokens
        self._config = config or get_sync_config()
        self._backfill_start = backfill_start
        self._sleep = sleep
        self._clock = clock
        self._schedulers: dict[str, SyncScheduler] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def build_driver(self, account_id: str) -> BackfillDriver:
        fetcher = RateLimitedFetcher(
            self._client,
            rate_limit=self._config.rate_limit,
            backfill=self._config.backfill,
            sleep=self._sleep,
            clock=self._clock,
        )
        writer = HeartRateWriter(self._store, batch_size=self._config.writer.insert_batch_size)
        return BackfillDriver(
            account_id,
            fetcher,
            writer,
            self._store,
            backfill_start=self._backfill_start,
            empty_day_threshold=self._config.backfill.empty_day_threshold,
            clock=self._clock,
        )

    async def start(self) -> None:
        """Start schedulers for every account that already holds a token."""
        for account_id in self._tokens.accounts():
            self.add_account(account_id)
        if not self._schedulers:
            logger.info("No authenticated accounts yet; sync starts after /login")

    def add_account(self, account_id: str) -> bool:
        """Start a scheduler for ``account_id``; False if one is already running."""
        if account_id in self._schedulers:
            return False

        scheduler = SyncScheduler(
            self.build_driver(account_id),
            interval_seconds=self._config.scheduler.interval_seconds,
            wait_for_auth=self._tokens.wait_for_auth,
        )
        task = asyncio.create_task(scheduler.run_forever(), name=f"sync-{account_id}")
        task.add_done_callback(functools.partial(self._on_task_done, account_id))
        self._schedulers[account_id] = scheduler
        self._tasks[account_id] = task
        logger.info("Sync scheduled for account %s", account_id)
        return True

    def accounts(self) -> list[str]:
        return sorted(self._schedulers)

    def status(self, account_id: str) -> DriverStatus | None:
        scheduler = self._schedulers.get(account_id)
        return scheduler.driver.status() if scheduler else None

    def statuses(self) -> list[DriverStatus]:
        return [self._schedulers[a].driver.status() for a in self.accounts()]

    async def stop(self) -> None:
        """Stop every scheduler and wait for its task to finish."""
        for scheduler in self._schedulers.values():
            scheduler.stop()
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._schedulers.clear()
        self._tasks.clear()
        logger.info("Sync service stopped (%d scheduler(s))", len(tasks))

    def _on_task_done(self, account_id: str, task: asyncio.Task[None]) -> None:
        # A finished task frees the account so a later login can restart it
        if self._tasks.get(account_id) is task:
            del self._tasks[account_id]
            self._schedulers.pop(account_id, None)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Sync task %s died: %r", task.get_name(), exc)
