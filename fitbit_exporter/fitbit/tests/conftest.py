"""Shared fixtures and canned API responses for Fitbit client tests."""

from __future__ import annotations

from datetime import date
from typing import Callable

import httpx

TEST_ACCOUNT = "ABC123"
TEST_DATE = date(2026, 2, 23)

HEART_RATE_RESPONSE: dict = {
    "activities-heart": [
        {
            "dateTime": "2026-02-23",
            "value": {
                "customHeartRateZones": [],
                "heartRateZones": [
                    {"caloriesOut": 1830.2, "max": 94, "min": 30, "minutes": 1301, "name": "Out of Range"},
                    {"caloriesOut": 512.7, "max": 132, "min": 94, "minutes": 105, "name": "Fat Burn"},
                    {"caloriesOut": 101.0, "max": 160, "min": 132, "minutes": 12, "name": "Cardio"},
                    {"caloriesOut": 0, "max": 220, "min": 160, "minutes": 0, "name": "Peak"},
                ],
                "restingHeartRate": 58,
            },
        }
    ],
    "activities-heart-intraday": {
        "dataset": [
            {"time": "00:00:00", "value": 61},
            {"time": "00:01:00", "value": 60},
            {"time": "00:02:00", "value": 0},
        ],
        "datasetInterval": 1,
        "datasetType": "minute",
    },
}

PROFILE_RESPONSE: dict = {
    "user": {
        "encodedId": TEST_ACCOUNT,
        "displayName": "Sam",
        "fullName": "Sam Example",
        "memberSince": "2019-04-01",
    }
}


class StaticTokens:
    """``TokenProvider`` fake: hands out ``token-N`` and counts refreshes."""

    def __init__(self) -> None:
        self.generation = 1
        self.refreshes = 0

    async def access_token(self, account_id: str) -> str:
        return f"token-{self.generation}"

    async def refresh(self, account_id: str) -> str:
        self.refreshes += 1
        self.generation += 1
        return f"token-{self.generation}"


def mock_http(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))
