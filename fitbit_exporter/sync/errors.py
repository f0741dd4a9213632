"""Errors that end a sync run.

Rate limiting has no exception here: it is a ``RateLimited`` client result
handled inside the fetcher and never escapes it.  Everything here is fatal
for the current run; the next scheduled run is the retry.
"""

from __future__ import annotations

from datetime import date


class SyncError(Exception):
    """Base class for failures that abort a backfill run."""

    def __init__(self, message: str, account_id: str | None = None, day: date | None = None) -> None:
        self.account_id = account_id
        self.day = day
        super().__init__(message)


class FitbitAPIError(SyncError):
    """Non-2xx, non-429 response (or a transport failure, status 0)."""

    def __init__(
        self, message: str, status_code: int, account_id: str | None = None, day: date | None = None
    ) -> None:
        self.status_code = status_code
        super().__init__(f"Fitbit API error ({status_code}): {message}", account_id, day)


class MalformedPayloadError(SyncError):
    """Successful response whose body did not match the heart-rate schema."""


class StorageError(SyncError):
    """Persisting a record failed."""


class FetchTimeoutError(SyncError):
    """A date's fetch-with-retry sequence outlived its overall allowance."""
