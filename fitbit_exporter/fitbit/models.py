"""Canonical data models for the Fitbit heart-rate API.

The pydantic models mirror the JSON returned by
``/1/user/{id}/activities/heart/date/{start}/{end}/{detail}.json``.  Field
aliases carry the vendor's key names so responses validate directly with
``DayPayload.model_validate(response.json())``.

The client never raises for an unsuccessful call.  It returns one of the
result variants at the bottom of this module and leaves the decision
(wait, retry, abort) to the caller.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from pydantic import BaseModel, ConfigDict, Field


class FitbitModel(BaseModel):
    """Base model for vendor payloads: accept aliases or field names, ignore extras."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ---------------------------------------------------------------------------
# Daily overview
# ---------------------------------------------------------------------------


class HeartRateZone(FitbitModel):
    """One intensity bucket of a day's overview."""

    name: str
    minutes: int = 0
    calories_out: float = Field(default=0.0, alias="caloriesOut")
    min: int | None = None
    max: int | None = None


class HeartRateOverviewValue(FitbitModel):
    # Absent until Fitbit has computed it for the day; 0 means "not yet known"
    resting_heart_rate: int = Field(default=0, alias="restingHeartRate")
    zones: list[HeartRateZone] = Field(default_factory=list, alias="heartRateZones")


class HeartRateOverview(FitbitModel):
    """Per-day summary entry from ``activities-heart``."""

    date: dt.date = Field(alias="dateTime")
    value: HeartRateOverviewValue = Field(default_factory=HeartRateOverviewValue)


# ---------------------------------------------------------------------------
# Intraday samples
# ---------------------------------------------------------------------------


class HeartSample(FitbitModel):
    """A single intraday reading; ``time`` is local to the requested date."""

    time: dt.time
    value: int

    def timestamp(self, day: dt.date) -> datetime:
        return datetime.combine(day, self.time)


class HeartRateIntraday(FitbitModel):
    dataset: list[HeartSample] = Field(default_factory=list)
    dataset_interval: int = Field(default=1, alias="datasetInterval")
    dataset_type: str = Field(default="minute", alias="datasetType")


class DayPayload(FitbitModel):
    """Parsed heart-rate response for one date (or a short range of dates)."""

    overview: list[HeartRateOverview] = Field(default_factory=list, alias="activities-heart")
    intraday: HeartRateIntraday | None = Field(default=None, alias="activities-heart-intraday")

    @property
    def samples(self) -> list[HeartSample]:
        return self.intraday.dataset if self.intraday else []

    @property
    def is_empty(self) -> bool:
        """True when the API returned neither overview rows nor intraday samples.

        Zero-valued entries still count as data.
        """
        return not self.overview and not self.samples


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


class FitbitProfile(FitbitModel):
    """Subset of ``/1/user/-/profile.json`` used for display."""

    encoded_id: str = Field(alias="encodedId")
    display_name: str = Field(default="", alias="displayName")
    full_name: str = Field(default="", alias="fullName")
    member_since: str | None = Field(default=None, alias="memberSince")


# ---------------------------------------------------------------------------
# OAuth tokens
# ---------------------------------------------------------------------------


@dataclass
class OAuthTokens:
    """OAuth token pair for one Fitbit account.

    Attributes:
        account_id:    Fitbit encoded user id the tokens belong to.
        access_token:  Bearer token for API calls.
        refresh_token: Long-lived token used to obtain a new access_token.
        expires_at:    UTC datetime when the access_token expires.
        token_type:    Token type, typically "Bearer".
        scope:         Granted OAuth scopes.
    """

    account_id: str
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    token_type: str = "Bearer"
    scope: list[str] = field(default_factory=list)

    def needs_refresh(self, buffer_seconds: int = 300) -> bool:
        """Return True if the access token expires within ``buffer_seconds``."""
        if self.expires_at is None:
            return False
        remaining = self.expires_at - datetime.now(timezone.utc)
        return remaining < timedelta(seconds=buffer_seconds)


# ---------------------------------------------------------------------------
# Client call results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HeartRateFetched:
    """2xx response that parsed cleanly."""

    payload: DayPayload


@dataclass(frozen=True)
class RateLimited:
    """429 response.  ``retry_after`` is the server hint in seconds, if sent."""

    retry_after: float | None = None


@dataclass(frozen=True)
class RequestFailed:
    """Any other unsuccessful call.  ``status_code`` is 0 for transport errors."""

    status_code: int
    message: str


@dataclass(frozen=True)
class MalformedResponse:
    """2xx response whose body could not be parsed."""

    message: str


HeartRateResult = HeartRateFetched | RateLimited | RequestFailed | MalformedResponse
