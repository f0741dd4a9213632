"""Backfill driver: walks dates for one account and keeps storage current.

A run has two legs:

    forward   from the day after the latest stored date up to today (UTC),
              one day at a time; yesterday and today are always included
              because Fitbit keeps filling them in
    backward  only when a backfill start date is configured: from the day
              before the earliest stored date down to that start date, until
              ``empty_day_threshold`` consecutive days come back empty

Both legs fetch then persist each date before moving the cursor.  The first
``SyncError`` ends the run as FAILED; whatever was written stays written and
the next run resumes from the stored MIN/MAX dates.

Usage::

    driver = BackfillDriver(account_id, fetcher, writer, store, backfill_start=date(2020, 1, 1))
    result = await driver.run()
    driver.status().running   # False again once run() returns
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Callable

from fitbit_exporter.sync.errors import SyncError
from fitbit_exporter.sync.fetcher import RateLimitedFetcher, utcnow
from fitbit_exporter.sync.store import HeartRateStore
from fitbit_exporter.sync.writer import HeartRateWriter, PersistResult

logger = logging.getLogger("fitbit_exporter.sync.backfill")

_ONE_DAY = timedelta(days=1)


class DriverState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class DriverStatus:
    """Snapshot of a driver's observable state.

    Attributes:
        account_id:          Account the driver syncs.
        state:               Current state; IDLE between runs.
        last_outcome:        COMPLETE or FAILED for the most recent run.
        last_run_started_at: UTC start of the most recent run.
        last_run_duration:   Wall-clock seconds of the most recent run.
        last_error:          Error message if the most recent run failed.
        days_fetched:        Dates fetched and persisted in the most recent run.
        rows_created:        Rows inserted in the most recent run.
        history_exhausted:   The backward walk reached its stop condition.
    """

    account_id: str
    state: DriverState = DriverState.IDLE
    last_outcome: DriverState | None = None
    last_run_started_at: datetime | None = None
    last_run_duration: float | None = None
    last_error: str | None = None
    days_fetched: int = 0
    rows_created: int = 0
    history_exhausted: bool = False

    @property
    def running(self) -> bool:
        return self.state is DriverState.RUNNING


@dataclass
class RunResult:
    """Outcome of one ``BackfillDriver.run`` call."""

    account_id: str
    started_at: datetime
    duration: float
    days_fetched: int
    persisted: PersistResult = field(default_factory=PersistResult)
    error: SyncError | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class BackfillDriver:
    """Sequential date walker for a single account.

    The driver is the only writer of its status; callers read copies via
    ``status()``.  It is not re-entrant: the scheduler owning it runs it
    strictly one run at a time.
    """

    def __init__(
        self,
        account_id: str,
        fetcher: RateLimitedFetcher,
        writer: HeartRateWriter,
        store: HeartRateStore,
        backfill_start: date | None = None,
        empty_day_threshold: int = 2,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if empty_day_threshold < 1:
            raise ValueError("empty_day_threshold must be >= 1")
        self.account_id = account_id
        self._fetcher = fetcher
        self._writer = writer
        self._store = store
        self._backfill_start = backfill_start
        self._threshold = empty_day_threshold
        self._clock = clock
        self._status = DriverStatus(account_id=account_id)
        self._persisted = PersistResult()

    def status(self) -> DriverStatus:
        return replace(self._status)

    async def run(self) -> RunResult:
        """Run the forward walk, then the backward walk if one is due.

        ``SyncError`` is caught and reported in the result; anything else
        (including cancellation) propagates after the status is reset, with
        ``last_error`` set for ordinary exceptions.
        """
        if self._status.running:
            raise RuntimeError(f"Driver for {self.account_id} is already running")

        started_at = self._clock()
        self._persisted = PersistResult()
        self._status.state = DriverState.RUNNING
        self._status.last_run_started_at = started_at
        self._status.last_error = None
        self._status.days_fetched = 0
        self._status.rows_created = 0
        logger.info("Sync run started for %s", self.account_id)

        error: SyncError | None = None
        outcome = DriverState.FAILED
        try:
            today = started_at.date()
            await self._walk_forward(today)
            if self._backfill_start is not None and not self._status.history_exhausted:
                await self._walk_backward(today)
            outcome = DriverState.COMPLETE
        except SyncError as exc:
            error = exc
            self._status.last_error = str(exc)
        except Exception as exc:
            self._status.last_error = f"{type(exc).__name__}: {exc}"
            raise
        finally:
            duration = (self._clock() - started_at).total_seconds()
            self._status.last_run_duration = duration
            self._status.last_outcome = outcome
            self._status.state = DriverState.IDLE

        if error is not None:
            logger.error(
                "Sync run failed for %s on %s after %.1fs: %s",
                self.account_id,
                error.day.isoformat() if error.day else "-",
                duration,
                error,
            )
        else:
            logger.info(
                "Sync run complete for %s: %d day(s), %d row(s) in %.1fs",
                self.account_id,
                self._status.days_fetched,
                self._status.rows_created,
                duration,
            )

        return RunResult(
            account_id=self.account_id,
            started_at=started_at,
            duration=duration,
            days_fetched=self._status.days_fetched,
            persisted=self._persisted,
            error=error,
        )

    # ------------------------------------------------------------------
    # Walks
    # ------------------------------------------------------------------

    async def _walk_forward(self, today: date) -> None:
        _, latest = await self._store.date_bounds(self.account_id)
        # Yesterday and today are re-fetched even when stored: Fitbit keeps
        # adding late samples and the resting rate after the UTC date changes
        if latest is None:
            anchor = today - _ONE_DAY
        else:
            anchor = min(latest, today - 2 * _ONE_DAY)
        cursor = anchor + _ONE_DAY
        if self._backfill_start is not None and cursor < self._backfill_start:
            cursor = self._backfill_start

        while cursor <= today:
            await self._sync_day(cursor)
            cursor += _ONE_DAY

    async def _walk_backward(self, today: date) -> None:
        earliest, _ = await self._store.date_bounds(self.account_id)
        cursor = (earliest or today) - _ONE_DAY
        empty_days = 0

        while cursor >= self._backfill_start:
            is_empty = await self._sync_day(cursor)
            if is_empty:
                empty_days += 1
                if empty_days >= self._threshold:
                    logger.info(
                        "%s: %d consecutive empty day(s) ending %s, history exhausted",
                        self.account_id,
                        empty_days,
                        cursor,
                    )
                    break
            else:
                empty_days = 0
            cursor -= _ONE_DAY

        self._status.history_exhausted = True

    async def _sync_day(self, day: date) -> bool:
        """Fetch and persist one date; return True if the API had no data for it."""
        payload = await self._fetcher.fetch(self.account_id, day)
        result = await self._writer.persist(self.account_id, day, payload)
        self._persisted.add(result)
        self._status.days_fetched += 1
        self._status.rows_created += result.total
        logger.debug("%s %s: %d row(s) created", self.account_id, day, result.total)
        return payload.is_empty
