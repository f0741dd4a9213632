"""Shared fixtures and fakes for sync engine tests."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Sequence

import pytest

from fitbit_exporter.fitbit.models import (
    DayPayload,
    HeartRateFetched,
    HeartRateResult,
    HeartRateZone,
)
from fitbit_exporter.sync.config_loader import SyncConfig, load_sync_config
from fitbit_exporter.sync.errors import StorageError

TEST_ACCOUNT = "ABC123"
TEST_DATE = date(2026, 2, 23)
# Mid-afternoon on TEST_DATE, UTC
TEST_NOW = datetime(2026, 2, 23, 15, 20, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Payload builders
# ---------------------------------------------------------------------------


def zone_dict(name: str, minutes: int, calories: float = 10.0) -> dict:
    return {"name": name, "minutes": minutes, "caloriesOut": calories, "min": 30, "max": 220}


def day_json(
    day: date,
    resting: int | None = 60,
    zones: list[dict] | None = None,
    samples: Sequence[tuple[str, int]] = (),
) -> dict:
    """Build a raw API response body for ``day``."""
    value: dict = {
        "heartRateZones": zones
        if zones is not None
        else [
            zone_dict("Out of Range", 1200),
            zone_dict("Fat Burn", 180),
            zone_dict("Cardio", 40),
            zone_dict("Peak", 20),
        ]
    }
    if resting is not None:
        value["restingHeartRate"] = resting
    return {
        "activities-heart": [{"dateTime": day.isoformat(), "value": value}],
        "activities-heart-intraday": {
            "dataset": [{"time": t, "value": v} for t, v in samples],
            "datasetInterval": 1,
            "datasetType": "minute",
        },
    }


def day_payload(day: date, **kwargs) -> DayPayload:
    return DayPayload.model_validate(day_json(day, **kwargs))


def empty_payload() -> DayPayload:
    return DayPayload.model_validate({"activities-heart": []})


def minute_samples(count: int, value: int = 70) -> list[tuple[str, int]]:
    """``count`` distinct HH:MM:SS timestamps from midnight, one minute apart."""
    return [
        ((datetime.combine(TEST_DATE, time.min) + timedelta(minutes=i)).strftime("%H:%M:%S"), value)
        for i in range(count)
    ]


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class InMemoryHeartRateStore:
    """``HeartRateStore`` backed by dicts; counts calls for assertions."""

    def __init__(self) -> None:
        self.daily: dict[tuple[str, date], int] = {}
        self.zones: dict[tuple[str, date, str], HeartRateZone] = {}
        self.samples: dict[tuple[str, datetime], int] = {}
        self.sample_time_queries = 0
        self.insert_batches: list[int] = []
        self.fail_on: str | None = None

    def _maybe_fail(self, op: str) -> None:
        if self.fail_on == op:
            raise StorageError(f"{op} failed")

    async def daily_exists(self, account_id: str, day: date) -> bool:
        return (account_id, day) in self.daily

    async def insert_daily(self, account_id: str, day: date, resting_heart_rate: int) -> None:
        self._maybe_fail("insert_daily")
        assert (account_id, day) not in self.daily, "duplicate daily insert"
        self.daily[(account_id, day)] = resting_heart_rate

    async def zone_exists(self, account_id: str, day: date, zone_name: str) -> bool:
        return (account_id, day, zone_name) in self.zones

    async def insert_zone(self, account_id: str, day: date, zone: HeartRateZone) -> None:
        self._maybe_fail("insert_zone")
        assert (account_id, day, zone.name) not in self.zones, "duplicate zone insert"
        self.zones[(account_id, day, zone.name)] = zone

    async def sample_times(self, account_id: str, day: date) -> set[datetime]:
        self.sample_time_queries += 1
        return {ts for (acct, ts) in self.samples if acct == account_id and ts.date() == day}

    async def insert_samples(self, account_id: str, samples: Sequence[tuple[datetime, int]]) -> None:
        self._maybe_fail("insert_samples")
        self.insert_batches.append(len(samples))
        for recorded_at, value in samples:
            assert (account_id, recorded_at) not in self.samples, "duplicate sample insert"
            self.samples[(account_id, recorded_at)] = value

    async def date_bounds(self, account_id: str) -> tuple[date | None, date | None]:
        dates = {d for (acct, d) in self.daily if acct == account_id}
        dates |= {ts.date() for (acct, ts) in self.samples if acct == account_id}
        if not dates:
            return None, None
        return min(dates), max(dates)

    def snapshot(self) -> tuple[dict, dict, dict]:
        return dict(self.daily), dict(self.zones), dict(self.samples)


class ScriptedClient:
    """Fake ``FitbitClient.get_heart_data``.

    ``responder(day)`` returns the result for each call; every call is
    recorded in ``calls`` as the requested start date.
    """

    def __init__(self, responder: Callable[[date], HeartRateResult]) -> None:
        self._responder = responder
        self.calls: list[date] = []
        self.detail_levels: list[str | None] = []

    async def get_heart_data(
        self,
        account_id: str,
        start: date,
        end: date | None = None,
        detail_level: str | None = "1min",
    ) -> HeartRateResult:
        self.calls.append(start)
        self.detail_levels.append(detail_level)
        return self._responder(start)


def always_data(day: date) -> HeartRateResult:
    return HeartRateFetched(payload=day_payload(day, samples=[("08:00:00", 72)]))


class FixedClock:
    def __init__(self, now: datetime = TEST_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class RecordingSleep:
    """Async sleep replacement that records requested delays and returns at once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sync_config() -> SyncConfig:
    """Load the bundled sync config."""
    return load_sync_config()


@pytest.fixture
def store() -> InMemoryHeartRateStore:
    return InMemoryHeartRateStore()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()
