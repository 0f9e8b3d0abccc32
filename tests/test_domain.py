"""
Tests for domain types: bucket alignment, location keys and windows.

CHANGELOG:
- 2026-03-12: Alignment through align_bucket_start; to_epoch_ceil (STORY-113)
- 2026-03-04: Reading.samples and charge_sample (STORY-106)
- 2026-02-27: Initial creation (STORY-101)

TODO:
- None
"""

from datetime import UTC, datetime, timedelta, timezone

import pytest

from powerstats.domain import (
    Bucket,
    Channel,
    ChannelReading,
    ChannelStats,
    ChargeSample,
    LastN,
    Reading,
    Resolution,
    TimeRange,
    align_bucket_start,
    normalize_location,
    to_epoch,
    to_epoch_ceil,
    validate_width,
)
from powerstats.errors import ConfigurationError

TS = datetime(2026, 3, 1, 14, 2, 30, tzinfo=UTC)


def _start(resolution: Resolution, ts: datetime) -> int:
    return align_bucket_start(to_epoch(ts), resolution.width_s)


# ---------------------------------------------------------------------------
# Bucket alignment
# ---------------------------------------------------------------------------


class TestAlignment:
    """Tests for floor(epoch / width) * width alignment."""

    def test_five_minute_floor(self) -> None:
        """14:02:30 falls in the 14:00 five-minute bucket."""
        start = _start(Resolution.FIVE_MINUTE, TS)
        assert start == to_epoch(datetime(2026, 3, 1, 14, 0, tzinfo=UTC))

    def test_daily_floor_is_utc_midnight(self) -> None:
        """Daily buckets start at UTC midnight."""
        start = _start(Resolution.DAILY, TS)
        assert start == to_epoch(datetime(2026, 3, 1, tzinfo=UTC))

    def test_bucket_boundary_belongs_to_new_bucket(self) -> None:
        """A timestamp exactly on a boundary starts its own bucket."""
        boundary = datetime(2026, 3, 1, 14, 5, tzinfo=UTC)
        assert _start(Resolution.FIVE_MINUTE, boundary) == to_epoch(boundary)

    def test_start_is_multiple_of_width(self) -> None:
        for resolution in Resolution:
            assert _start(resolution, TS) % resolution.width_s == 0

    def test_aware_timestamps_in_other_zones(self) -> None:
        """Alignment uses the UTC instant regardless of the input offset."""
        local = TS.astimezone(timezone(timedelta(hours=-5)))
        assert _start(Resolution.DAILY, local) == _start(Resolution.DAILY, TS)

    def test_naive_timestamp_treated_as_utc(self) -> None:
        naive = TS.replace(tzinfo=None)
        assert to_epoch(naive) == to_epoch(TS)

    def test_fractional_seconds_round_down_or_up(self) -> None:
        fractional = TS + timedelta(milliseconds=500)
        assert to_epoch(fractional) == to_epoch(TS)
        assert to_epoch_ceil(fractional) == to_epoch(TS) + 1
        assert to_epoch_ceil(TS) == to_epoch(TS)

    def test_widths(self) -> None:
        assert Resolution.FIVE_MINUTE.width_s == 300
        assert Resolution.DAILY.width_s == 86_400

    @pytest.mark.parametrize("width", [0, -300, 7, 7200 * 5])
    def test_invalid_width_rejected(self, width: int) -> None:
        """Widths that do not tile a UTC day are configuration errors."""
        with pytest.raises(ConfigurationError):
            validate_width(width)

    def test_align_with_invalid_width_raises(self) -> None:
        with pytest.raises(ConfigurationError):
            align_bucket_start(1_000, 7)


# ---------------------------------------------------------------------------
# Location keys
# ---------------------------------------------------------------------------


class TestNormalizeLocation:
    """Tests for location key validation."""

    def test_upper_cases(self) -> None:
        assert normalize_location("vt") == "VT"

    def test_strips_whitespace(self) -> None:
        assert normalize_location("  ma ") == "MA"

    def test_allows_dash_and_underscore(self) -> None:
        assert normalize_location("home-2_b") == "HOME-2_B"

    @pytest.mark.parametrize("bad", ["", "   ", "a b", "vt/1", "x" * 65])
    def test_malformed_rejected(self, bad: str) -> None:
        with pytest.raises(ValueError):
            normalize_location(bad)


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


class TestChargeSample:
    """Tests for percent_charged bounds."""

    @pytest.mark.parametrize("pct", [0.0, 55.5, 100.0])
    def test_in_range_accepted(self, pct: float) -> None:
        assert ChargeSample("VT", TS, pct).percent_charged == pct

    @pytest.mark.parametrize("pct", [-0.1, 100.1])
    def test_out_of_range_rejected(self, pct: float) -> None:
        with pytest.raises(ValueError):
            ChargeSample("VT", TS, pct)


class TestReading:
    """Tests for splitting a combined reading."""

    def test_samples_in_channel_order(self) -> None:
        reading = Reading(
            location="VT",
            timestamp=TS,
            channels={
                Channel.SOLAR: ChannelReading(2100.0),
                Channel.SITE: ChannelReading(-400.0, energy_imported=10.0),
            },
        )
        samples = reading.samples()
        assert [s.channel for s in samples] == [Channel.SITE, Channel.SOLAR]
        assert samples[0].power == -400.0
        assert samples[0].energy_imported == 10.0
        assert all(s.timestamp == TS for s in samples)

    def test_charge_sample_absent(self) -> None:
        reading = Reading("VT", TS, {Channel.LOAD: ChannelReading(800.0)})
        assert reading.charge_sample() is None

    def test_charge_sample_present(self) -> None:
        reading = Reading("VT", TS, {}, percent_charged=42.0)
        charge = reading.charge_sample()
        assert charge == ChargeSample("VT", TS, 42.0)
        assert reading.samples() == []


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------


class TestChannelStats:
    """Tests for read-time derived values."""

    def test_average(self) -> None:
        stats = ChannelStats(count=3, sum=340.0, hi=150.0, lo=90.0)
        assert stats.average == pytest.approx(113.333, rel=1e-4)

    def test_average_of_empty_group_is_none(self) -> None:
        assert ChannelStats().average is None

    def test_net_energy(self) -> None:
        assert ChannelStats(imported=120.0, exported=500.0).net_energy == 380.0

    def test_bucket_missing_channel_is_empty(self) -> None:
        bucket = Bucket("VT", Resolution.DAILY, 0)
        assert bucket.stats(Channel.SOLAR) == ChannelStats()


# ---------------------------------------------------------------------------
# History windows
# ---------------------------------------------------------------------------


class TestWindows:
    """Tests for LastN and TimeRange validation."""

    def test_last_n_requires_positive_limit(self) -> None:
        with pytest.raises(ValueError):
            LastN(0)

    def test_range_end_before_begin_rejected(self) -> None:
        with pytest.raises(ValueError):
            TimeRange(TS, TS - timedelta(seconds=1))

    def test_range_single_instant_allowed(self) -> None:
        assert TimeRange(TS, TS).begin == TS

    def test_range_limit_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            TimeRange(TS, TS, limit=0)
