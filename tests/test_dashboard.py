"""
Tests for the GET /v1/dashboard endpoint (STORY-111).

CHANGELOG:
- 2026-03-09: Initial creation (STORY-111)

TODO:
- None
"""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from powerstats.errors import StoreError

AUTH_HEADER = {"Authorization": "Bearer test-token-abc"}
LOCATION = "VT"
DASHBOARD_URL = "/v1/dashboard"


def _get(client: TestClient):
    return client.get(
        DASHBOARD_URL, params={"location": LOCATION}, headers=AUTH_HEADER
    )


@pytest.fixture()
def seeded(client: TestClient) -> TestClient:
    readings = [
        {
            "location": LOCATION,
            "ts": f"2026-03-0{day}T12:00:00Z",
            "solar": {"instant_power": 1000.0 * day},
            "percent_charged": 50.0 + day,
        }
        for day in (1, 2, 3)
    ]
    response = client.post(
        "/v1/ingest", json={"readings": readings}, headers=AUTH_HEADER
    )
    assert response.status_code == 200
    return client


class TestDashboard:
    """Instant view plus recent daily buckets."""

    def test_dashboard(self, seeded: TestClient) -> None:
        response = _get(seeded)
        assert response.status_code == 200
        data = response.json()
        assert data["history_available"] is True
        assert data["instant"]["power"] == {"solar": 3000.0}
        assert data["instant"]["charge"]["percent_charged"] == 53.0
        averages = [b["channels"]["solar"]["average"] for b in data["daily"]]
        assert averages == [3000.0, 2000.0, 1000.0]

    def test_daily_history_limit(self, seeded: TestClient) -> None:
        seeded.app.state.settings = seeded.app.state.settings.model_copy(
            update={"daily_history_limit": 2}
        )
        assert len(_get(seeded).json()["daily"]) == 2

    def test_history_failure_degrades(self, seeded: TestClient) -> None:
        store = seeded.app.state.store
        original = store.get_buckets
        store.get_buckets = AsyncMock(side_effect=StoreError("down"))
        try:
            response = _get(seeded)
        finally:
            store.get_buckets = original
        assert response.status_code == 200
        data = response.json()
        assert data["history_available"] is False
        assert data["daily"] == []
        assert data["instant"]["power"] == {"solar": 3000.0}

    def test_no_data_returns_404(self, client: TestClient) -> None:
        assert _get(client).status_code == 404

    def test_location_mismatch_returns_403(self, client: TestClient) -> None:
        response = client.get(
            DASHBOARD_URL, params={"location": "MA"}, headers=AUTH_HEADER
        )
        assert response.status_code == 403
