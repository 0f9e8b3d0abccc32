"""
Series formatter: bucket views to chart-ready (timestamp_ms, value) pairs.

to_series() is pure and keeps input order and length. Each point's
timestamp is ``bucket_start * 1000`` (epoch milliseconds, as chart
renderers expect). A bucket whose selected group is empty (count 0) is not
dropped; its point carries ``value=None`` and encodes as JSON null, which
charts draw as a gap.

encode_series() is the one place the flat ``[[ts, value], ...]`` payload
is serialized.

CHANGELOG:
- 2026-03-08: Initial creation (STORY-110)

TODO:
- None
"""

import json
from collections.abc import Callable, Iterable
from typing import NamedTuple

from powerstats.domain import Channel
from powerstats.services.query import BucketView

ValueSelector = Callable[[BucketView], float | None]


class SeriesPoint(NamedTuple):
    """One chart point."""

    timestamp_ms: int
    value: float | None


def to_series(
    buckets: Iterable[BucketView], selector: ValueSelector
) -> list[SeriesPoint]:
    """Project each bucket to a (timestamp_ms, value) point, preserving order."""
    return [
        SeriesPoint(bucket.bucket_start * 1000, selector(bucket)) for bucket in buckets
    ]


def encode_series(points: Iterable[SeriesPoint]) -> str:
    """Serialize points as a flat JSON list of ``[timestamp_ms, value]`` pairs."""
    return json.dumps([[point.timestamp_ms, point.value] for point in points])


# ---------------------------------------------------------------------------
# Selectors
# ---------------------------------------------------------------------------


def average_power(channel: Channel) -> ValueSelector:
    """Average power of *channel* in watts."""

    def select(bucket: BucketView) -> float | None:
        return bucket.channels[channel].average

    return select


def peak_power(channel: Channel) -> ValueSelector:
    """Highest power of *channel* in watts."""

    def select(bucket: BucketView) -> float | None:
        hi = bucket.channels[channel].hi
        return None if hi is None else hi.value

    return select


def low_power(channel: Channel) -> ValueSelector:
    """Lowest power of *channel* in watts."""

    def select(bucket: BucketView) -> float | None:
        lo = bucket.channels[channel].lo
        return None if lo is None else lo.value

    return select


def net_energy(channel: Channel) -> ValueSelector:
    """Exported minus imported energy of *channel* in Wh."""

    def select(bucket: BucketView) -> float | None:
        stats = bucket.channels[channel]
        if stats.count == 0:
            return None
        return stats.net_energy

    return select


def average_charge() -> ValueSelector:
    """Average battery state of charge in percent."""

    def select(bucket: BucketView) -> float | None:
        return bucket.charge.average

    return select


METRICS: dict[str, Callable[[Channel], ValueSelector]] = {
    "average": average_power,
    "peak": peak_power,
    "low": low_power,
    "net_energy": net_energy,
}
