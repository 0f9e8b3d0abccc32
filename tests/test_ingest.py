"""
Tests for the POST /v1/ingest endpoint (STORY-010, STORY-106).

Validates payload acceptance, location authorisation, de-duplication of
re-sent readings, cache invalidation, batch and body size limits, and the
mapping of store failures to 503/502.

CHANGELOG:
- 2026-03-12: Non-finite numbers rejected (STORY-113)
- 2026-03-04: Combined readings folded through the rollup updater (STORY-106)
- 2026-02-14: Initial creation with TDD tests (STORY-010)

TODO:
- None
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from powerstats.errors import StoreError, TransientStoreError

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

AUTH_HEADER = {"Authorization": "Bearer test-token-abc"}
LOCATION = "VT"
INGEST_URL = "/v1/ingest"


def _make_reading(
    location: str = LOCATION,
    ts: str = "2026-03-01T14:00:00Z",
    **overrides: object,
) -> dict:
    """Build a single reading dict with sensible defaults."""
    reading = {
        "location": location,
        "ts": ts,
        "site": {
            "instant_power": -400.0,
            "energy_imported": 1000.0,
            "energy_exported": 50.0,
        },
        "load": {"instant_power": 1700.0},
        "battery": {"instant_power": -300.0},
        "solar": {"instant_power": 2400.0},
        "percent_charged": 81.5,
    }
    reading.update(overrides)
    return reading


def _batch(count: int) -> dict:
    return {
        "readings": [
            _make_reading(ts=f"2026-03-01T14:{i:02d}:00Z") for i in range(count)
        ]
    }


# ---------------------------------------------------------------------------
# Valid batches
# ---------------------------------------------------------------------------


class TestIngestValidBatch:
    """Tests for valid batch ingestion."""

    def test_valid_batch_is_accepted(self, client: TestClient) -> None:
        response = client.post(INGEST_URL, json=_batch(3), headers=AUTH_HEADER)
        assert response.status_code == 200
        assert response.json() == {"accepted": 3, "duplicates": 0}

    def test_resent_batch_reports_duplicates(self, client: TestClient) -> None:
        client.post(INGEST_URL, json=_batch(2), headers=AUTH_HEADER)
        response = client.post(INGEST_URL, json=_batch(3), headers=AUTH_HEADER)
        assert response.json() == {"accepted": 1, "duplicates": 2}

    def test_lower_case_location_accepted(self, client: TestClient) -> None:
        payload = {"readings": [_make_reading(location="vt")]}
        response = client.post(INGEST_URL, json=payload, headers=AUTH_HEADER)
        assert response.status_code == 200

    def test_partial_reading_accepted(self, client: TestClient) -> None:
        """Readings may carry any subset of channels, or only charge."""
        reading = {
            "location": LOCATION,
            "ts": "2026-03-01T14:00:00Z",
            "percent_charged": 50,
        }
        response = client.post(
            INGEST_URL, json={"readings": [reading]}, headers=AUTH_HEADER
        )
        assert response.status_code == 200
        assert response.json()["accepted"] == 1

    def test_empty_batch(self, client: TestClient) -> None:
        response = client.post(INGEST_URL, json={"readings": []}, headers=AUTH_HEADER)
        assert response.status_code == 200
        assert response.json() == {"accepted": 0, "duplicates": 0}


# ---------------------------------------------------------------------------
# Authorisation
# ---------------------------------------------------------------------------


class TestIngestAuth:
    """Tests for authentication and location ownership."""

    def test_no_auth_returns_401(self, client: TestClient) -> None:
        response = client.post(INGEST_URL, json=_batch(1))
        assert response.status_code == 401

    def test_invalid_token_returns_401(self, client: TestClient) -> None:
        response = client.post(
            INGEST_URL, json=_batch(1), headers={"Authorization": "Bearer nope"}
        )
        assert response.status_code == 401

    def test_location_mismatch_returns_403(self, client: TestClient) -> None:
        payload = {"readings": [_make_reading(), _make_reading(location="MA")]}
        response = client.post(INGEST_URL, json=payload, headers=AUTH_HEADER)
        assert response.status_code == 403
        assert "location" in response.json()["detail"].lower()


# ---------------------------------------------------------------------------
# Invalid payloads
# ---------------------------------------------------------------------------


class TestIngestInvalidPayload:
    """Tests for 422 responses."""

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"readings": "nope"},
            {"readings": [_make_reading(ts="yesterday")]},
            {"readings": [_make_reading(percent_charged=120)]},
            {"readings": [_make_reading(location="bad location")]},
            {"readings": [{"location": LOCATION, "ts": "2026-03-01T14:00:00Z"}]},
            {"readings": [_make_reading(solar={"energy_imported": 1.0})]},
        ],
    )
    def test_invalid_payload_returns_422(
        self, client: TestClient, payload: dict
    ) -> None:
        response = client.post(INGEST_URL, json=payload, headers=AUTH_HEADER)
        assert response.status_code == 422

    def test_invalid_json_returns_422(self, client: TestClient) -> None:
        response = client.post(
            INGEST_URL,
            content=b"{not json",
            headers={**AUTH_HEADER, "Content-Type": "application/json"},
        )
        assert response.status_code == 422

    @pytest.mark.parametrize(
        "reading",
        [
            b'"solar": {"instant_power": NaN}',
            b'"solar": {"instant_power": Infinity}',
            b'"site": {"instant_power": 1.0, "energy_imported": -Infinity}',
            b'"load": {"instant_power": 1.0}, "percent_charged": NaN',
        ],
    )
    def test_non_finite_numbers_return_422(
        self, client: TestClient, reading: bytes
    ) -> None:
        body = (
            b'{"readings": [{"location": "VT", "ts": "2026-03-01T14:00:00Z", '
            + reading
            + b"}]}"
        )
        response = client.post(
            INGEST_URL,
            content=body,
            headers={**AUTH_HEADER, "Content-Type": "application/json"},
        )
        assert response.status_code == 422

        instant = client.get(
            "/v1/instant", params={"location": LOCATION}, headers=AUTH_HEADER
        )
        assert instant.status_code == 404


# ---------------------------------------------------------------------------
# Size limits
# ---------------------------------------------------------------------------


class TestIngestLimits:
    """Tests for MAX_READINGS_PER_REQUEST and MAX_REQUEST_BYTES."""

    def test_batch_exceeding_max_readings_returns_413(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("MAX_READINGS_PER_REQUEST", "2")
        from powerstats.api.main import app

        with TestClient(app) as new_client:
            response = new_client.post(INGEST_URL, json=_batch(3), headers=AUTH_HEADER)
            assert response.status_code == 413
            accepted = new_client.post(INGEST_URL, json=_batch(2), headers=AUTH_HEADER)
            assert accepted.status_code == 200

    def test_body_exceeding_max_bytes_returns_413(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("MAX_REQUEST_BYTES", "100")
        from powerstats.api.main import app

        with TestClient(app) as new_client:
            response = new_client.post(INGEST_URL, json=_batch(5), headers=AUTH_HEADER)
            assert response.status_code == 413
            assert "body" in response.json()["detail"].lower()

    def test_malformed_content_length_returns_400(self, client: TestClient) -> None:
        response = client.post(
            INGEST_URL,
            content=b'{"readings": []}',
            headers={
                **AUTH_HEADER,
                "Content-Type": "application/json",
                "Content-Length": "not-a-number",
            },
        )
        assert response.status_code == 400


# ---------------------------------------------------------------------------
# Store failures and cache invalidation
# ---------------------------------------------------------------------------


def _override_updater(client: TestClient, side_effect: object) -> MagicMock:
    from powerstats.api.deps import get_rollup_updater

    updater = MagicMock()
    updater.ingest = AsyncMock(side_effect=side_effect)
    client.app.dependency_overrides[get_rollup_updater] = lambda: updater
    return updater


def _override_cache(client: TestClient) -> MagicMock:
    from powerstats.api.deps import get_cache

    cache = MagicMock()
    cache.invalidate = AsyncMock()
    client.app.dependency_overrides[get_cache] = lambda: cache
    return cache


class TestIngestStoreFailures:
    """Tests for 503/502 mapping."""

    def test_transient_failure_returns_503(self, client: TestClient) -> None:
        _override_updater(client, TransientStoreError("lock timeout"))
        response = client.post(INGEST_URL, json=_batch(1), headers=AUTH_HEADER)
        assert response.status_code == 503
        assert response.headers["Retry-After"] == "5"

    def test_permanent_failure_returns_502(self, client: TestClient) -> None:
        _override_updater(client, StoreError("bad column"))
        response = client.post(INGEST_URL, json=_batch(1), headers=AUTH_HEADER)
        assert response.status_code == 502


class TestIngestCacheInvalidation:
    """The instant cache is dropped whenever a reading was accepted."""

    def test_cache_invalidated_on_success(self, client: TestClient) -> None:
        cache = _override_cache(client)
        client.post(INGEST_URL, json=_batch(2), headers=AUTH_HEADER)
        cache.invalidate.assert_awaited_once_with(LOCATION)

    def test_cache_not_invalidated_for_duplicates_only(
        self, client: TestClient
    ) -> None:
        client.post(INGEST_URL, json=_batch(1), headers=AUTH_HEADER)
        cache = _override_cache(client)
        client.post(INGEST_URL, json=_batch(1), headers=AUTH_HEADER)
        cache.invalidate.assert_not_awaited()

    def test_cache_invalidated_when_batch_fails_part_way(
        self, client: TestClient
    ) -> None:
        _override_updater(client, [True, TransientStoreError("lost")])
        cache = _override_cache(client)
        response = client.post(INGEST_URL, json=_batch(2), headers=AUTH_HEADER)
        assert response.status_code == 503
        cache.invalidate.assert_awaited_once_with(LOCATION)
