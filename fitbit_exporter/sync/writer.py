"""Idempotent persistence of a fetched heart-rate day.

Each record class has its own dedup rule:

    heart_rest  (account, date):        first non-zero resting rate wins
    heart_zone  (account, date, zone):  inserted once, never updated
    heart_data  (account, recorded_at): append-only, zero values dropped

Writing the same payload twice leaves storage unchanged, which is what
lets the backfill driver re-fetch yesterday and today on every run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime

from fitbit_exporter.fitbit.models import DayPayload
from fitbit_exporter.sync.store import HeartRateStore

logger = logging.getLogger("fitbit_exporter.sync.writer")


@dataclass
class PersistResult:
    """Rows created by one ``persist`` call.

    Attributes:
        daily:   heart_rest rows inserted (0 or 1 per overview date).
        zones:   heart_zone rows inserted.
        samples: heart_data rows inserted.
        batches: Insert statements issued for intraday samples.
    """

    daily: int = 0
    zones: int = 0
    samples: int = 0
    batches: int = 0

    @property
    def total(self) -> int:
        return self.daily + self.zones + self.samples

    def add(self, other: PersistResult) -> None:
        self.daily += other.daily
        self.zones += other.zones
        self.samples += other.samples
        self.batches += other.batches


class HeartRateWriter:
    """Apply a ``DayPayload`` to a ``HeartRateStore`` without duplicating rows.

    Any store error propagates as ``StorageError`` and aborts the call;
    rows already written stay written and are skipped on the next attempt.
    """

    def __init__(self, store: HeartRateStore, batch_size: int = 200) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._store = store
        self._batch_size = batch_size

    async def persist(self, account_id: str, day: date, payload: DayPayload) -> PersistResult:
        """Write the overview and intraday parts of ``payload``.

        Args:
            account_id: Account the data belongs to.
            day:        Date the intraday samples belong to.
            payload:    Parsed API response.

        Returns:
            Counts of rows created.
        """
        result = PersistResult()

        for overview in payload.overview:
            if overview.value.resting_heart_rate and not await self._store.daily_exists(
                account_id, overview.date
            ):
                await self._store.insert_daily(
                    account_id, overview.date, overview.value.resting_heart_rate
                )
                result.daily += 1

            for zone in overview.value.zones:
                if not await self._store.zone_exists(account_id, overview.date, zone.name):
                    await self._store.insert_zone(account_id, overview.date, zone)
                    result.zones += 1

        if payload.samples:
            await self._persist_samples(account_id, day, payload, result)

        logger.debug(
            "%s %s: %d daily, %d zone, %d sample row(s) written",
            account_id,
            day,
            result.daily,
            result.zones,
            result.samples,
        )
        return result

    async def _persist_samples(
        self, account_id: str, day: date, payload: DayPayload, result: PersistResult
    ) -> None:
        stored = await self._store.sample_times(account_id, day)

        pending: list[tuple[datetime, int]] = []
        for sample in payload.samples:
            recorded_at = sample.timestamp(day)
            # The API occasionally repeats a timestamp within one dataset
            if sample.value and recorded_at not in stored:
                pending.append((recorded_at, sample.value))
                stored.add(recorded_at)

        for i in range(0, len(pending), self._batch_size):
            batch = pending[i : i + self._batch_size]
            await self._store.insert_samples(account_id, batch)
            result.samples += len(batch)
            result.batches += 1
