"""
Domain types for power telemetry rollups.

Defines the channels and resolutions the rollup engine works with, the
ephemeral inputs (Sample, ChargeSample, Reading), the durable Bucket
aggregate as read back from the store, and the two history window shapes
(LastN and TimeRange).

Bucket alignment is done on UTC epoch seconds:
``bucket_start = floor(epoch / width) * width``.

CHANGELOG:
- 2026-03-12: Per-channel observation times on InstantReading; to_epoch_ceil
  (STORY-113)
- 2026-03-04: Add Reading for combined four-channel payloads (STORY-106)
- 2026-03-03: Add charge group to Bucket (STORY-105)
- 2026-02-27: Initial creation (STORY-101)

TODO:
- None
"""

import math
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from powerstats.errors import ConfigurationError

_LOCATION_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

_SECONDS_PER_DAY = 86_400


class Channel(str, Enum):
    """Power flow measured at one point of a site."""

    SITE = "site"
    LOAD = "load"
    BATTERY = "battery"
    SOLAR = "solar"


class Resolution(str, Enum):
    """Bucket width. Values are the public names used in queries."""

    FIVE_MINUTE = "five_minute"
    DAILY = "daily"

    @property
    def width_s(self) -> int:
        """Width of one bucket in seconds."""
        return RESOLUTION_WIDTHS[self]


RESOLUTION_WIDTHS: dict[Resolution, int] = {
    Resolution.FIVE_MINUTE: 300,
    Resolution.DAILY: _SECONDS_PER_DAY,
}


def validate_width(width_s: int) -> int:
    """Check that a bucket width tiles a UTC day exactly.

    Raises:
        ConfigurationError: If the width is not a positive divisor of 86400.
    """
    if width_s <= 0 or _SECONDS_PER_DAY % width_s != 0:
        raise ConfigurationError(
            f"Invalid resolution width {width_s}s: must be a positive divisor "
            f"of {_SECONDS_PER_DAY}"
        )
    return width_s


def align_bucket_start(epoch_s: int, width_s: int) -> int:
    """Floor an epoch second to the start of its bucket."""
    return (epoch_s // validate_width(width_s)) * width_s


def to_epoch(ts: datetime) -> int:
    """Convert a datetime to whole epoch seconds, treating naive values as UTC."""
    return math.floor(as_utc(ts).timestamp())


def to_epoch_ceil(ts: datetime) -> int:
    """Like to_epoch, but rounds a fractional second up."""
    return math.ceil(as_utc(ts).timestamp())


def as_utc(ts: datetime) -> datetime:
    """Return *ts* as an aware UTC datetime."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)


def normalize_location(location: str) -> str:
    """Validate a location key and return its canonical upper-case form.

    Raises:
        ValueError: If the key is empty or contains unsupported characters.
    """
    candidate = location.strip()
    if not _LOCATION_RE.match(candidate):
        raise ValueError(f"Malformed location key {location!r}")
    return candidate.upper()


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Sample:
    """One instantaneous power reading for a single channel.

    Attributes:
        location: Canonical location key.
        channel: Which power flow was measured.
        timestamp: Measurement instant (UTC).
        power: Instantaneous power in watts (signed).
        energy_imported: Cumulative imported energy counter in Wh, if known.
        energy_exported: Cumulative exported energy counter in Wh, if known.
    """

    location: str
    channel: Channel
    timestamp: datetime
    power: float
    energy_imported: float | None = None
    energy_exported: float | None = None


@dataclass(frozen=True)
class ChargeSample:
    """Battery state of charge at one instant."""

    location: str
    timestamp: datetime
    percent_charged: float

    def __post_init__(self) -> None:
        if not 0.0 <= self.percent_charged <= 100.0:
            raise ValueError(
                f"percent_charged must be within [0, 100], got {self.percent_charged}"
            )


@dataclass(frozen=True)
class ChannelReading:
    """Power and cumulative counters for one channel inside a Reading."""

    power: float
    energy_imported: float | None = None
    energy_exported: float | None = None


@dataclass(frozen=True)
class Reading:
    """A combined raw reading: any subset of channels plus optional charge."""

    location: str
    timestamp: datetime
    channels: Mapping[Channel, ChannelReading]
    percent_charged: float | None = None

    def samples(self) -> list[Sample]:
        """Split the reading into one Sample per channel, in channel order."""
        return [
            Sample(
                location=self.location,
                channel=channel,
                timestamp=self.timestamp,
                power=self.channels[channel].power,
                energy_imported=self.channels[channel].energy_imported,
                energy_exported=self.channels[channel].energy_exported,
            )
            for channel in Channel
            if channel in self.channels
        ]

    def charge_sample(self) -> ChargeSample | None:
        """Return the charge part of the reading, if present."""
        if self.percent_charged is None:
            return None
        return ChargeSample(self.location, self.timestamp, self.percent_charged)


@dataclass(frozen=True)
class InstantReading:
    """Most recent raw power value of each channel for a location.

    Attributes:
        location: Canonical location key.
        timestamp: Newest of the per-channel observation times (UTC).
        power: Channel -> latest instantaneous power in watts.
        observed_at: Channel -> time its power value was measured (UTC).
            Channels missing here fall back to ``timestamp``.
    """

    location: str
    timestamp: datetime
    power: Mapping[Channel, float]
    observed_at: Mapping[Channel, datetime] = field(default_factory=dict)

    def channel_time(self, channel: Channel) -> datetime:
        """Return when *channel*'s power value was measured."""
        return self.observed_at.get(channel, self.timestamp)


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChannelStats:
    """Running aggregate for one channel (or the charge group) of a bucket.

    ``hi_time`` and ``lo_time`` are epoch seconds. Extrema are None while
    ``count`` is 0.
    """

    count: int = 0
    sum: float = 0.0
    hi: float | None = None
    hi_time: int | None = None
    lo: float | None = None
    lo_time: int | None = None
    imported: float = 0.0
    exported: float = 0.0

    @property
    def average(self) -> float | None:
        """Mean of folded values, or None when nothing has been folded."""
        if self.count <= 0:
            return None
        return self.sum / self.count

    @property
    def net_energy(self) -> float:
        """Exported minus imported energy over the bucket, in Wh."""
        return self.exported - self.imported


@dataclass(frozen=True)
class Bucket:
    """Durable aggregate for one (location, resolution, bucket_start) key."""

    location: str
    resolution: Resolution
    bucket_start: int
    channels: Mapping[Channel, ChannelStats] = field(default_factory=dict)
    charge: ChannelStats = field(default_factory=ChannelStats)

    def stats(self, channel: Channel) -> ChannelStats:
        """Return the aggregate for *channel* (empty when never folded)."""
        return self.channels.get(channel, ChannelStats())


# ---------------------------------------------------------------------------
# History windows
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LastN:
    """The most recent *limit* buckets, newest first."""

    limit: int

    def __post_init__(self) -> None:
        if self.limit < 1:
            raise ValueError(f"limit must be >= 1, got {self.limit}")


@dataclass(frozen=True)
class TimeRange:
    """Buckets with ``begin <= bucket_start <= end``, oldest first."""

    begin: datetime
    end: datetime
    limit: int | None = None

    def __post_init__(self) -> None:
        if as_utc(self.end) < as_utc(self.begin):
            raise ValueError("end must not be before begin")
        if self.limit is not None and self.limit < 1:
            raise ValueError(f"limit must be >= 1, got {self.limit}")


HistoryWindow = LastN | TimeRange
