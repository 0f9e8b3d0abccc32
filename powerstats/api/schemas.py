"""
Pydantic response models shared by the read routes.

Converts query-engine views (InstantSnapshot, BucketView, Dashboard) into
JSON-serialisable response models.

CHANGELOG:
- 2026-03-12: power_as_of on InstantOut (STORY-113)
- 2026-03-09: Add DashboardOut (STORY-111)
- 2026-03-07: Initial creation (STORY-109)

TODO:
- None
"""

from datetime import datetime

from pydantic import BaseModel

from powerstats.services.query import BucketView, Dashboard, InstantSnapshot, StatsView


class ChargeOut(BaseModel):
    """Latest battery state of charge."""

    percent_charged: float
    as_of: datetime


class InstantOut(BaseModel):
    """Latest power per channel in watts, plus charge when available.

    Attributes:
        location: Canonical location key.
        as_of: Newest power observation in the serving time zone.
        power: Channel name -> instantaneous power in watts.
        power_as_of: Channel name -> time that channel's power was measured.
        charge: Latest charge level, or None when unavailable.
        query_time_ms: Time spent reading the store.
    """

    location: str
    as_of: datetime
    power: dict[str, float]
    power_as_of: dict[str, datetime]
    charge: ChargeOut | None
    query_time_ms: float

    @classmethod
    def from_snapshot(cls, snapshot: InstantSnapshot) -> "InstantOut":
        """Build the response model from an InstantSnapshot."""
        charge = None
        if snapshot.charge is not None:
            charge = ChargeOut(
                percent_charged=snapshot.charge.percent_charged,
                as_of=snapshot.charge.as_of,
            )
        return cls(
            location=snapshot.location,
            as_of=snapshot.as_of,
            power={channel.value: value for channel, value in snapshot.power.items()},
            power_as_of={
                channel.value: at for channel, at in snapshot.power_as_of.items()
            },
            charge=charge,
            query_time_ms=snapshot.query_time_ms,
        )


class StatsOut(BaseModel):
    """Aggregate for one channel (or charge) within a bucket."""

    count: int
    sum: float
    average: float | None
    hi: float | None
    hi_at: datetime | None
    lo: float | None
    lo_at: datetime | None
    imported: float
    exported: float
    net_energy: float

    @classmethod
    def from_view(cls, view: StatsView) -> "StatsOut":
        """Build the response model from a StatsView."""
        return cls(
            count=view.count,
            sum=view.sum,
            average=view.average,
            hi=None if view.hi is None else view.hi.value,
            hi_at=None if view.hi is None else view.hi.at,
            lo=None if view.lo is None else view.lo.value,
            lo_at=None if view.lo is None else view.lo.at,
            imported=view.imported,
            exported=view.exported,
            net_energy=view.net_energy,
        )


class BucketOut(BaseModel):
    """One aggregate bucket.

    Attributes:
        bucket_start: Start of the bucket in the serving time zone.
        bucket_start_ms: Start of the bucket in epoch milliseconds.
        channels: Channel name -> aggregate.
        charge: Battery charge aggregate.
    """

    bucket_start: datetime
    bucket_start_ms: int
    channels: dict[str, StatsOut]
    charge: StatsOut

    @classmethod
    def from_view(cls, view: BucketView) -> "BucketOut":
        """Build the response model from a BucketView."""
        return cls(
            bucket_start=view.start,
            bucket_start_ms=view.bucket_start * 1000,
            channels={
                ch.value: StatsOut.from_view(stats)
                for ch, stats in view.channels.items()
            },
            charge=StatsOut.from_view(view.charge),
        )


class HistoryResponse(BaseModel):
    """Response model for the history endpoint."""

    location: str
    resolution: str
    buckets: list[BucketOut]


class DashboardOut(BaseModel):
    """Instant view plus recent daily history."""

    instant: InstantOut
    daily: list[BucketOut]
    history_available: bool

    @classmethod
    def from_dashboard(cls, dashboard: Dashboard) -> "DashboardOut":
        """Build the response model from a Dashboard."""
        return cls(
            instant=InstantOut.from_snapshot(dashboard.instant),
            daily=[BucketOut.from_view(view) for view in dashboard.daily],
            history_available=dashboard.history_available,
        )
