"""Storage primitives used by the writer and the backfill driver.

``HeartRateStore`` is the narrow surface the sync engine needs: existence
checks, plain inserts, and the MIN/MAX date bounds the driver derives its
cursor from.  ``PostgresHeartRateStore`` implements it over the shared
asyncpg pool; tests substitute an in-memory fake.

Every database failure leaves this module as ``StorageError``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, time, timedelta
from typing import AsyncGenerator, Protocol, Sequence

import asyncpg

from fitbit_exporter.fitbit.models import HeartRateZone
from fitbit_exporter.services.database import execute, fetch, fetchrow, fetchval
from fitbit_exporter.sync.errors import StorageError

logger = logging.getLogger("fitbit_exporter.sync.store")


class HeartRateStore(Protocol):
    """Row-level operations on the three heart-rate tables, scoped by account."""

    async def daily_exists(self, account_id: str, day: date) -> bool: ...

    async def insert_daily(self, account_id: str, day: date, resting_heart_rate: int) -> None: ...

    async def zone_exists(self, account_id: str, day: date, zone_name: str) -> bool: ...

    async def insert_zone(self, account_id: str, day: date, zone: HeartRateZone) -> None: ...

    async def sample_times(self, account_id: str, day: date) -> set[datetime]: ...

    async def insert_samples(
        self, account_id: str, samples: Sequence[tuple[datetime, int]]
    ) -> None: ...

    async def date_bounds(self, account_id: str) -> tuple[date | None, date | None]: ...


@asynccontextmanager
async def _storage_errors(action: str, account_id: str, day: date | None = None) -> AsyncGenerator[None, None]:
    try:
        yield
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
        raise StorageError(f"{action} failed: {exc}", account_id=account_id, day=day) from exc


class PostgresHeartRateStore:
    """``HeartRateStore`` over the ``heart_rest`` / ``heart_zone`` / ``heart_data`` tables."""

    async def daily_exists(self, account_id: str, day: date) -> bool:
        async with _storage_errors("daily summary lookup", account_id, day):
            return bool(
                await fetchval(
                    "SELECT EXISTS (SELECT 1 FROM heart_rest WHERE account_id = $1 AND date = $2)",
                    account_id,
                    day,
                )
            )

    async def insert_daily(self, account_id: str, day: date, resting_heart_rate: int) -> None:
        async with _storage_errors("daily summary insert", account_id, day):
            await execute(
                "INSERT INTO heart_rest (account_id, date, value) VALUES ($1, $2, $3)",
                account_id,
                day,
                resting_heart_rate,
            )

    async def zone_exists(self, account_id: str, day: date, zone_name: str) -> bool:
        async with _storage_errors("zone lookup", account_id, day):
            return bool(
                await fetchval(
                    """
                    SELECT EXISTS (
                        SELECT 1 FROM heart_zone
                        WHERE account_id = $1 AND date = $2 AND zone = $3
                    )
                    """,
                    account_id,
                    day,
                    zone_name,
                )
            )

    async def insert_zone(self, account_id: str, day: date, zone: HeartRateZone) -> None:
        async with _storage_errors("zone insert", account_id, day):
            await execute(
                """
                INSERT INTO heart_zone (account_id, date, zone, minutes, calories)
                VALUES ($1, $2, $3, $4, $5)
                """,
                account_id,
                day,
                zone.name,
                zone.minutes,
                zone.calories_out,
            )

    async def sample_times(self, account_id: str, day: date) -> set[datetime]:
        start = datetime.combine(day, time.min)
        async with _storage_errors("intraday lookup", account_id, day):
            rows = await fetch(
                """
                SELECT recorded_at FROM heart_data
                WHERE account_id = $1 AND recorded_at >= $2 AND recorded_at < $3
                """,
                account_id,
                start,
                start + timedelta(days=1),
            )
        return {r["recorded_at"] for r in rows}

    async def insert_samples(
        self, account_id: str, samples: Sequence[tuple[datetime, int]]
    ) -> None:
        """Insert ``samples`` with a single multi-row statement."""
        if not samples:
            return
        values: list[str] = []
        args: list[object] = [account_id]
        for recorded_at, value in samples:
            n = len(args)
            values.append(f"($1, ${n + 1}, ${n + 2})")
            args.extend((recorded_at, value))
        query = "INSERT INTO heart_data (account_id, recorded_at, value) VALUES " + ", ".join(values)
        async with _storage_errors("intraday insert", account_id, samples[0][0].date()):
            await execute(query, *args)

    async def date_bounds(self, account_id: str) -> tuple[date | None, date | None]:
        """Earliest and latest date holding a daily summary or intraday sample."""
        async with _storage_errors("cursor bounds lookup", account_id):
            row = await fetchrow(
                """
                SELECT MIN(d) AS earliest, MAX(d) AS latest FROM (
                    SELECT MIN(date) AS d FROM heart_rest WHERE account_id = $1
                    UNION ALL SELECT MAX(date) FROM heart_rest WHERE account_id = $1
                    UNION ALL SELECT MIN(recorded_at)::date FROM heart_data WHERE account_id = $1
                    UNION ALL SELECT MAX(recorded_at)::date FROM heart_data WHERE account_id = $1
                ) bounds
                """,
                account_id,
            )
        if row is None:
            return None, None
        return row["earliest"], row["latest"]
