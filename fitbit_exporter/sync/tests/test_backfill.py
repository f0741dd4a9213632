"""Tests for the backfill driver's date walks and status."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from fitbit_exporter.fitbit.models import HeartRateFetched, HeartRateResult, RequestFailed
from fitbit_exporter.sync.backfill import BackfillDriver, DriverState
from fitbit_exporter.sync.errors import FitbitAPIError, StorageError
from fitbit_exporter.sync.fetcher import RateLimitedFetcher
from fitbit_exporter.sync.tests.conftest import (
    TEST_ACCOUNT,
    TEST_DATE,
    TEST_NOW,
    FixedClock,
    InMemoryHeartRateStore,
    RecordingSleep,
    ScriptedClient,
    always_data,
    day_payload,
    empty_payload,
)
from fitbit_exporter.sync.writer import HeartRateWriter


def days_ago(n: int) -> date:
    return TEST_DATE - timedelta(days=n)


def make_driver(
    store: InMemoryHeartRateStore,
    client: ScriptedClient,
    backfill_start: date | None = None,
    empty_day_threshold: int = 2,
    clock: FixedClock | None = None,
) -> BackfillDriver:
    clock = clock or FixedClock()
    fetcher = RateLimitedFetcher(client, sleep=RecordingSleep(), clock=clock)
    return BackfillDriver(
        TEST_ACCOUNT,
        fetcher,
        HeartRateWriter(store),
        store,
        backfill_start=backfill_start,
        empty_day_threshold=empty_day_threshold,
        clock=clock,
    )


def with_empty_days(*empty: date):
    """Responder returning data for every day except ``empty``."""

    def responder(day: date) -> HeartRateResult:
        if day in empty:
            return HeartRateFetched(payload=empty_payload())
        return always_data(day)

    return responder


class TestForwardWalk:
    @pytest.mark.asyncio
    async def test_catches_up_one_day_at_a_time(self, store: InMemoryHeartRateStore) -> None:
        store.daily[(TEST_ACCOUNT, days_ago(5))] = 60
        client = ScriptedClient(always_data)

        result = await make_driver(store, client).run()

        assert client.calls == [days_ago(4), days_ago(3), days_ago(2), days_ago(1), TEST_DATE]
        assert result.succeeded
        assert result.days_fetched == 5

    @pytest.mark.asyncio
    async def test_empty_store_fetches_today_only(self, store: InMemoryHeartRateStore) -> None:
        client = ScriptedClient(always_data)
        await make_driver(store, client).run()
        assert client.calls == [TEST_DATE]

    @pytest.mark.asyncio
    async def test_yesterday_and_today_are_refetched(self, store: InMemoryHeartRateStore) -> None:
        store.daily[(TEST_ACCOUNT, TEST_DATE)] = 60
        client = ScriptedClient(always_data)
        await make_driver(store, client).run()
        assert client.calls == [days_ago(1), TEST_DATE]

    @pytest.mark.asyncio
    async def test_intraday_only_dates_count_for_cursor(self, store: InMemoryHeartRateStore) -> None:
        # A day with samples but no resting rate yet still anchors the cursor
        await HeartRateWriter(store).persist(
            TEST_ACCOUNT, days_ago(2), day_payload(days_ago(2), resting=0, samples=[("12:00:00", 90)])
        )
        client = ScriptedClient(always_data)
        await make_driver(store, client).run()
        assert client.calls == [days_ago(1), TEST_DATE]

    @pytest.mark.asyncio
    async def test_backfill_start_raises_lower_bound(self, store: InMemoryHeartRateStore) -> None:
        store.daily[(TEST_ACCOUNT, days_ago(100))] = 60
        client = ScriptedClient(always_data)

        await make_driver(store, client, backfill_start=days_ago(3)).run()

        assert client.calls == [days_ago(3), days_ago(2), days_ago(1), TEST_DATE]

    @pytest.mark.asyncio
    async def test_previous_day_completed_after_midnight(
        self, store: InMemoryHeartRateStore
    ) -> None:
        # Fitbit fills in the late evening and the resting rate after the day ends
        day_complete = {"on": False}

        def responder(day: date) -> HeartRateResult:
            if day != TEST_DATE:
                return always_data(day)
            if day_complete["on"]:
                return HeartRateFetched(
                    payload=day_payload(day, resting=58, samples=[("23:00:00", 70), ("23:50:00", 75)])
                )
            return HeartRateFetched(payload=day_payload(day, resting=0, samples=[("23:00:00", 70)]))

        clock = FixedClock(datetime(2026, 2, 23, 23, 30, tzinfo=timezone.utc))
        client = ScriptedClient(responder)
        driver = make_driver(store, client, clock=clock)

        await driver.run()
        assert (TEST_ACCOUNT, TEST_DATE) not in store.daily

        day_complete["on"] = True
        clock.now = datetime(2026, 2, 24, 0, 30, tzinfo=timezone.utc)
        client.calls.clear()
        result = await driver.run()

        assert result.succeeded
        assert client.calls == [TEST_DATE, TEST_DATE + timedelta(days=1)]
        assert store.daily[(TEST_ACCOUNT, TEST_DATE)] == 58
        assert store.samples[(TEST_ACCOUNT, datetime(2026, 2, 23, 23, 50))] == 75
        assert store.samples[(TEST_ACCOUNT, datetime(2026, 2, 23, 23, 0))] == 70


class TestBackwardWalk:
    @pytest.mark.asyncio
    async def test_stops_after_consecutive_empty_days(self, store: InMemoryHeartRateStore) -> None:
        store.daily[(TEST_ACCOUNT, TEST_DATE)] = 60
        client = ScriptedClient(with_empty_days(days_ago(4), days_ago(5)))
        driver = make_driver(store, client, backfill_start=days_ago(365))

        result = await driver.run()

        assert client.calls == [
            days_ago(1),
            TEST_DATE,
            days_ago(2),
            days_ago(3),
            days_ago(4),
            days_ago(5),
        ]
        assert result.succeeded
        assert driver.status().history_exhausted

    @pytest.mark.asyncio
    async def test_non_empty_day_resets_counter(self, store: InMemoryHeartRateStore) -> None:
        store.daily[(TEST_ACCOUNT, TEST_DATE)] = 60
        client = ScriptedClient(with_empty_days(days_ago(2), days_ago(4), days_ago(5)))

        await make_driver(store, client, backfill_start=days_ago(365)).run()

        assert client.calls == [
            days_ago(1),
            TEST_DATE,
            days_ago(2),
            days_ago(3),
            days_ago(4),
            days_ago(5),
        ]

    @pytest.mark.asyncio
    async def test_threshold_is_tunable(self, store: InMemoryHeartRateStore) -> None:
        store.daily[(TEST_ACCOUNT, TEST_DATE)] = 60
        client = ScriptedClient(with_empty_days(days_ago(2), days_ago(3), days_ago(4)))

        await make_driver(store, client, backfill_start=days_ago(365), empty_day_threshold=3).run()

        assert client.calls == [days_ago(1), TEST_DATE, days_ago(2), days_ago(3), days_ago(4)]

    @pytest.mark.asyncio
    async def test_stops_at_backfill_start(self, store: InMemoryHeartRateStore) -> None:
        store.daily[(TEST_ACCOUNT, TEST_DATE)] = 60
        client = ScriptedClient(always_data)
        driver = make_driver(store, client, backfill_start=days_ago(2))

        await driver.run()

        assert client.calls == [days_ago(1), TEST_DATE, days_ago(2)]
        assert driver.status().history_exhausted

    @pytest.mark.asyncio
    async def test_exhausted_history_skipped_on_next_run(
        self, store: InMemoryHeartRateStore
    ) -> None:
        store.daily[(TEST_ACCOUNT, TEST_DATE)] = 60
        client = ScriptedClient(with_empty_days(days_ago(2), days_ago(3)))
        driver = make_driver(store, client, backfill_start=days_ago(365))

        await driver.run()
        client.calls.clear()
        await driver.run()

        assert client.calls == [days_ago(1), TEST_DATE]

    @pytest.mark.asyncio
    async def test_no_backward_walk_without_start_date(self, store: InMemoryHeartRateStore) -> None:
        store.daily[(TEST_ACCOUNT, TEST_DATE)] = 60
        client = ScriptedClient(always_data)
        driver = make_driver(store, client)

        await driver.run()

        assert client.calls == [days_ago(1), TEST_DATE]
        assert not driver.status().history_exhausted


class TestFailure:
    @pytest.mark.asyncio
    async def test_api_error_fails_run_and_stops_walk(self, store: InMemoryHeartRateStore) -> None:
        store.daily[(TEST_ACCOUNT, days_ago(3))] = 60

        def responder(day: date) -> HeartRateResult:
            if day == days_ago(1):
                return RequestFailed(status_code=500, message="server error")
            return always_data(day)

        client = ScriptedClient(responder)
        driver = make_driver(store, client)

        result = await driver.run()

        assert client.calls == [days_ago(2), days_ago(1)]
        assert isinstance(result.error, FitbitAPIError)
        assert not result.succeeded
        status = driver.status()
        assert status.state is DriverState.IDLE
        assert status.last_outcome is DriverState.FAILED
        assert not status.running
        assert "server error" in (status.last_error or "")
        assert status.days_fetched == 1
        assert (TEST_ACCOUNT, days_ago(2)) in store.daily

    @pytest.mark.asyncio
    async def test_next_run_resumes_after_failure(self, store: InMemoryHeartRateStore) -> None:
        store.daily[(TEST_ACCOUNT, days_ago(3))] = 60
        failing = {"on": True}

        def responder(day: date) -> HeartRateResult:
            if failing["on"] and day == days_ago(1):
                return RequestFailed(status_code=503, message="unavailable")
            return always_data(day)

        client = ScriptedClient(responder)
        driver = make_driver(store, client)
        await driver.run()

        failing["on"] = False
        client.calls.clear()
        result = await driver.run()

        assert client.calls == [days_ago(1), TEST_DATE]
        assert result.succeeded
        assert driver.status().last_error is None
        assert driver.status().last_outcome is DriverState.COMPLETE

    @pytest.mark.asyncio
    async def test_storage_error_fails_run(self, store: InMemoryHeartRateStore) -> None:
        store.fail_on = "insert_daily"
        driver = make_driver(store, ScriptedClient(always_data))

        result = await driver.run()

        assert isinstance(result.error, StorageError)
        assert driver.status().last_outcome is DriverState.FAILED

    @pytest.mark.asyncio
    async def test_unexpected_error_recorded_in_status(
        self, store: InMemoryHeartRateStore
    ) -> None:
        # e.g. a token refresh whose save hits a dropped database connection
        def responder(day: date) -> HeartRateResult:
            raise ConnectionResetError("connection lost while saving token")

        driver = make_driver(store, ScriptedClient(responder))

        with pytest.raises(ConnectionResetError):
            await driver.run()

        status = driver.status()
        assert status.state is DriverState.IDLE
        assert status.last_outcome is DriverState.FAILED
        assert status.last_error == "ConnectionResetError: connection lost while saving token"


class TestStatus:
    @pytest.mark.asyncio
    async def test_running_flag_visible_during_run(self, store: InMemoryHeartRateStore) -> None:
        seen: list[bool] = []

        def responder(day: date) -> HeartRateResult:
            seen.append(driver.status().running)
            return always_data(day)

        driver = make_driver(store, ScriptedClient(responder))
        assert not driver.status().running

        await driver.run()

        assert seen == [True]
        status = driver.status()
        assert not status.running
        assert status.last_run_started_at == TEST_NOW
        assert status.last_run_duration == 0.0
        assert status.rows_created > 0

    @pytest.mark.asyncio
    async def test_status_is_a_copy(self, store: InMemoryHeartRateStore) -> None:
        driver = make_driver(store, ScriptedClient(always_data))
        snapshot = driver.status()
        await driver.run()
        assert snapshot.last_outcome is None

    def test_threshold_must_be_positive(self, store: InMemoryHeartRateStore) -> None:
        with pytest.raises(ValueError):
            make_driver(store, ScriptedClient(always_data), empty_day_threshold=0)
