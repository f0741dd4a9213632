"""Response schemas for the per-account dashboard."""

from __future__ import annotations

import datetime as dt

from pydantic import Field

from fitbit_exporter.models.base import ExporterBase
from fitbit_exporter.models.sync import SyncStatusRead


class DailyReading(ExporterBase):
    """A per-day aggregate value (daily max/min sample, resting rate)."""

    date: dt.date
    value: int


class SampleReading(ExporterBase):
    recorded_at: dt.datetime
    value: int


class ZoneShare(ExporterBase):
    """Minutes and calories in one zone, with its share of total minutes.

    ``date`` is only set for personal-record zones.
    """

    date: dt.date | None = None
    percent: float = 0.0
    minutes: int = 0
    calories: float = 0.0


class ZoneBreakdown(ExporterBase):
    out_of_range: ZoneShare = Field(default_factory=ZoneShare)
    fat_burn: ZoneShare = Field(default_factory=ZoneShare)
    cardio: ZoneShare = Field(default_factory=ZoneShare)
    peak: ZoneShare = Field(default_factory=ZoneShare)


class CurrentDay(ExporterBase):
    date: dt.date
    resting: int | None = None
    high: SampleReading | None = None
    low: SampleReading | None = None
    zones: ZoneBreakdown = Field(default_factory=ZoneBreakdown)
    samples: list[SampleReading] = Field(default_factory=list)


class PersonalRecords(ExporterBase):
    top_daily_max: list[DailyReading] = Field(default_factory=list)
    bottom_daily_min: list[DailyReading] = Field(default_factory=list)
    max_resting: DailyReading | None = None
    min_resting: DailyReading | None = None
    most_out_of_range: ZoneShare | None = None
    most_fat_burn: ZoneShare | None = None
    most_cardio: ZoneShare | None = None
    most_peak: ZoneShare | None = None


class DashboardRead(ExporterBase):
    account_id: str
    sync: SyncStatusRead | None = None
    current_day: CurrentDay
    last_7_days: ZoneBreakdown
    last_30_days: ZoneBreakdown
    personal_records: PersonalRecords
