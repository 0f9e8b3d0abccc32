"""
Query engine for instant views, bucket histories and dashboards.

Composes BucketStore reads into presentation-ready views. Averages are
derived at read time (None for an empty group) and every timestamp is
converted to the serving time zone.

Degrade-vs-fail policy:
- instant_view: the power reading is required (NotFoundError and store
  errors propagate); the charge reading is optional and its failure yields
  a snapshot with ``charge=None``.
- dashboard: the daily history is optional and degrades to an empty list;
  the instant part behaves as instant_view.

The two reads of an instant view are independent; no snapshot isolation
between them is attempted.

CHANGELOG:
- 2026-03-12: Per-channel observation times (STORY-113)
- 2026-03-09: Add dashboard view (STORY-111)
- 2026-03-07: Initial creation (STORY-109)

TODO:
- None
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, tzinfo

from powerstats.domain import (
    Bucket,
    Channel,
    ChannelStats,
    HistoryWindow,
    LastN,
    Resolution,
    normalize_location,
)
from powerstats.errors import NotFoundError, StoreError
from powerstats.services.store import BucketStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Extremum:
    """A hi or lo value and the local time it was observed."""

    value: float
    at: datetime


@dataclass(frozen=True)
class StatsView:
    """Read-time view of one channel (or the charge group) of a bucket."""

    count: int
    sum: float
    average: float | None
    hi: Extremum | None
    lo: Extremum | None
    imported: float = 0.0
    exported: float = 0.0

    @property
    def net_energy(self) -> float:
        """Exported minus imported energy, in Wh."""
        return self.exported - self.imported


@dataclass(frozen=True)
class BucketView:
    """A bucket with derived averages and local timestamps."""

    location: str
    resolution: Resolution
    bucket_start: int
    start: datetime
    channels: dict[Channel, StatsView]
    charge: StatsView


@dataclass(frozen=True)
class ChargeSnapshot:
    """Latest battery state of charge."""

    percent_charged: float
    as_of: datetime


@dataclass(frozen=True)
class InstantSnapshot:
    """Latest power per channel plus (when available) latest charge."""

    location: str
    as_of: datetime
    power: dict[Channel, float]
    power_as_of: dict[Channel, datetime]
    charge: ChargeSnapshot | None
    query_time_ms: float


@dataclass(frozen=True)
class Dashboard:
    """Instant snapshot plus recent daily history for one location."""

    instant: InstantSnapshot
    daily: list[BucketView] = field(default_factory=list)
    history_available: bool = True


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class QueryEngine:
    """Read path over a BucketStore.

    Args:
        store: The shared BucketStore.
        zone: Time zone every served timestamp is converted to.
    """

    def __init__(self, store: BucketStore, zone: tzinfo) -> None:
        self._store = store
        self._zone = zone

    def _local(self, epoch_s: int) -> datetime:
        return datetime.fromtimestamp(epoch_s, tz=self._zone)

    def _extremum(self, value: float | None, at: int | None) -> Extremum | None:
        if value is None or at is None:
            return None
        return Extremum(value=value, at=self._local(at))

    def _stats_view(self, stats: ChannelStats) -> StatsView:
        return StatsView(
            count=stats.count,
            sum=stats.sum,
            average=stats.average,
            hi=self._extremum(stats.hi, stats.hi_time),
            lo=self._extremum(stats.lo, stats.lo_time),
            imported=stats.imported,
            exported=stats.exported,
        )

    def to_view(self, bucket: Bucket) -> BucketView:
        """Derive averages and local times for one bucket."""
        return BucketView(
            location=bucket.location,
            resolution=bucket.resolution,
            bucket_start=bucket.bucket_start,
            start=self._local(bucket.bucket_start),
            channels={ch: self._stats_view(bucket.stats(ch)) for ch in Channel},
            charge=self._stats_view(bucket.charge),
        )

    async def instant_view(self, location: str) -> InstantSnapshot:
        """Return the latest power of each channel and, if available, charge.

        Raises:
            NotFoundError: If the location has no power reading.
            StoreError: If the power reading could not be read.
        """
        location = normalize_location(location)
        started = time.perf_counter()

        reading = await self._store.get_latest_instant(location)

        charge: ChargeSnapshot | None = None
        try:
            latest = await self._store.get_latest_charge(location)
        except NotFoundError:
            logger.info("No charge reading for %s, serving power only", location)
        except StoreError:
            logger.warning(
                "Charge lookup failed for %s, serving power only",
                location,
                exc_info=True,
            )
        else:
            charge = ChargeSnapshot(
                percent_charged=latest.percent_charged,
                as_of=latest.timestamp.astimezone(self._zone),
            )

        return InstantSnapshot(
            location=location,
            as_of=reading.timestamp.astimezone(self._zone),
            power=dict(reading.power),
            power_as_of={
                channel: reading.channel_time(channel).astimezone(self._zone)
                for channel in reading.power
            },
            charge=charge,
            query_time_ms=(time.perf_counter() - started) * 1000.0,
        )

    async def history_view(
        self,
        location: str,
        resolution: Resolution,
        window: HistoryWindow,
    ) -> list[BucketView]:
        """Return buckets for *window*, in the order the store returns them.

        LastN windows are newest first; TimeRange windows are oldest first.
        """
        location = normalize_location(location)
        buckets = await self._store.get_buckets(location, resolution, window)
        return [self.to_view(bucket) for bucket in buckets]

    async def dashboard(self, location: str, daily_limit: int) -> Dashboard:
        """Return the instant view plus the last *daily_limit* daily buckets.

        Raises:
            NotFoundError: If the location has no power reading.
        """
        instant = await self.instant_view(location)
        try:
            daily = await self.history_view(
                location, Resolution.DAILY, LastN(daily_limit)
            )
        except StoreError:
            logger.warning(
                "Daily history lookup failed for %s, serving instant view only",
                location,
                exc_info=True,
            )
            return Dashboard(instant=instant, daily=[], history_available=False)
        return Dashboard(instant=instant, daily=daily)
