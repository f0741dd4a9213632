"""Read-side queries behind the dashboard endpoint.

All queries are scoped by ``account_id`` and read the same three tables the
sync engine writes.
"""

from __future__ import annotations

import logging
import math
from datetime import date, datetime, time, timedelta
from typing import Iterable

from fitbit_exporter.fitbit.models import HeartRateZone
from fitbit_exporter.models.dashboard import (
    CurrentDay,
    DailyReading,
    DashboardRead,
    PersonalRecords,
    SampleReading,
    ZoneBreakdown,
    ZoneShare,
)
from fitbit_exporter.models.sync import SyncStatusRead
from fitbit_exporter.services.database import fetch, fetchrow, fetchval

logger = logging.getLogger("fitbit_exporter.dashboard")

RECORD_LIMIT = 10

# Lower-cased zone name -> ZoneBreakdown field
_ZONE_FIELDS: dict[str, str] = {
    "out of range": "out_of_range",
    "fat burn": "fat_burn",
    "cardio": "cardio",
    "peak": "peak",
}


def zones_to_percentages(zones: Iterable[HeartRateZone]) -> ZoneBreakdown:
    """Sum minutes and calories per zone and express each as a share of all minutes.

    Zone names match case-insensitively; unknown names still count toward the
    total.  Percentages are rounded half-up to whole numbers.
    """
    totals: dict[str, ZoneShare] = {f: ZoneShare() for f in _ZONE_FIELDS.values()}
    total_minutes = 0
    for zone in zones:
        total_minutes += zone.minutes
        field = _ZONE_FIELDS.get(zone.name.strip().lower())
        if field is None:
            continue
        totals[field].minutes += zone.minutes
        totals[field].calories += zone.calories_out

    if total_minutes:
        for share in totals.values():
            share.percent = float(math.floor(share.minutes / total_minutes * 100 + 0.5))
    return ZoneBreakdown(**totals)


def _zone_from_row(row) -> HeartRateZone:
    return HeartRateZone(name=row["zone"], minutes=row["minutes"], calories_out=row["calories"])


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def daily_extremes(account_id: str, top: bool, limit: int = RECORD_LIMIT) -> list[DailyReading]:
    """Days with the highest daily maximum (``top``) or lowest daily minimum sample."""
    agg, order = ("MAX", "DESC") if top else ("MIN", "ASC")
    rows = await fetch(
        f"""
        SELECT recorded_at::date AS date, {agg}(value) AS value
        FROM heart_data
        WHERE account_id = $1
        GROUP BY recorded_at::date
        ORDER BY {agg}(value) {order}, date
        LIMIT $2
        """,
        account_id,
        limit,
    )
    return [DailyReading(date=r["date"], value=r["value"]) for r in rows]


async def resting_extreme(account_id: str, top: bool) -> DailyReading | None:
    order = "DESC" if top else "ASC"
    row = await fetchrow(
        f"SELECT date, value FROM heart_rest WHERE account_id = $1 ORDER BY value {order}, date LIMIT 1",
        account_id,
    )
    return DailyReading(date=row["date"], value=row["value"]) if row else None


async def zones_between(account_id: str, start: date, end: date) -> list[HeartRateZone]:
    rows = await fetch(
        """
        SELECT zone, minutes, calories FROM heart_zone
        WHERE account_id = $1 AND date BETWEEN $2 AND $3
        ORDER BY date, zone
        """,
        account_id,
        start,
        end,
    )
    return [_zone_from_row(r) for r in rows]


async def best_zone_days(account_id: str) -> dict[str, ZoneShare]:
    """Day with the most minutes per zone, keyed by ZoneBreakdown field name."""
    rows = await fetch(
        """
        SELECT DISTINCT ON (zone) zone, date, minutes, calories
        FROM heart_zone
        WHERE account_id = $1
        ORDER BY zone, minutes DESC, date DESC
        """,
        account_id,
    )
    best: dict[str, ZoneShare] = {}
    for r in rows:
        field = _ZONE_FIELDS.get(r["zone"].lower())
        if field:
            best[field] = ZoneShare(date=r["date"], minutes=r["minutes"], calories=r["calories"])
    return best


async def current_day(account_id: str, day: date) -> CurrentDay:
    start = datetime.combine(day, time.min)
    resting = await fetchval(
        "SELECT value FROM heart_rest WHERE account_id = $1 AND date = $2", account_id, day
    )
    rows = await fetch(
        """
        SELECT recorded_at, value FROM heart_data
        WHERE account_id = $1 AND recorded_at >= $2 AND recorded_at < $3
        ORDER BY recorded_at
        """,
        account_id,
        start,
        start + timedelta(days=1),
    )
    samples = [SampleReading(recorded_at=r["recorded_at"], value=r["value"]) for r in rows]
    return CurrentDay(
        date=day,
        resting=resting,
        high=max(samples, key=lambda s: s.value) if samples else None,
        low=min(samples, key=lambda s: s.value) if samples else None,
        zones=zones_to_percentages(await zones_between(account_id, day, day)),
        samples=samples,
    )


async def build_dashboard(
    account_id: str, today: date, sync: SyncStatusRead | None = None
) -> DashboardRead:
    """Assemble every dashboard section for ``account_id`` as of ``today``."""
    best = await best_zone_days(account_id)
    records = PersonalRecords(
        top_daily_max=await daily_extremes(account_id, top=True),
        bottom_daily_min=await daily_extremes(account_id, top=False),
        max_resting=await resting_extreme(account_id, top=True),
        min_resting=await resting_extreme(account_id, top=False),
        most_out_of_range=best.get("out_of_range"),
        most_fat_burn=best.get("fat_burn"),
        most_cardio=best.get("cardio"),
        most_peak=best.get("peak"),
    )
    return DashboardRead(
        account_id=account_id,
        sync=sync,
        current_day=await current_day(account_id, today),
        last_7_days=zones_to_percentages(
            await zones_between(account_id, today - timedelta(days=7), today)
        ),
        last_30_days=zones_to_percentages(
            await zones_between(account_id, today - timedelta(days=30), today)
        ),
        personal_records=records,
    )
