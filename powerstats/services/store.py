"""
Bucket store: persisted aggregates and raw latest-value reads.

BucketStore owns every SQL statement the rollup and query layers need:

- get_latest_instant / get_latest_charge read the raw streams.
- get_buckets reads aggregates with one of two access patterns, "last N"
  (descending, LIMIT in SQL) or "range" (inclusive, ascending). The limit is
  enforced only here, in the SQL statement.
- insert_raw_reading, insert_charge_reading, advance_counter and
  upsert_bucket are write primitives meant to be composed inside
  run_in_transaction().

A bucket write is one INSERT ... ON CONFLICT DO UPDATE statement. Extrema are
replaced only on a strictly greater (hi) or strictly smaller (lo) value, so
the first occurrence of an extremum keeps its timestamp.

Every operation runs under a deadline. Driver errors are translated into
TransientStoreError (retryable) or StoreError.

CHANGELOG:
- 2026-03-12: Latest power looked up per channel; range begin rounds up
  (STORY-113)
- 2026-03-06: Deadline per operation and error translation (STORY-108)
- 2026-03-05: Cumulative energy counters (STORY-107)
- 2026-03-03: Charge group in bucket upserts (STORY-105)
- 2026-03-01: Initial creation from the aggregation service (STORY-104)

TODO:
- None
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, TypeVar

from sqlalchemy import case, or_, select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import (
    DBAPIError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from powerstats.db.models import (
    BUCKET_MODELS,
    CHANNEL_FIELDS,
    CHARGE_FIELDS,
    CHARGE_PREFIX,
    RAW_POWER_COLUMNS,
    ChargeReading,
    EnergyCounter,
    RawReading,
    bucket_column,
)
from powerstats.db.session import create_session_factory
from powerstats.domain import (
    Bucket,
    Channel,
    ChannelStats,
    ChargeSample,
    HistoryWindow,
    InstantReading,
    LastN,
    Reading,
    Resolution,
    TimeRange,
    align_bucket_start,
    as_utc,
    to_epoch,
    to_epoch_ceil,
)
from powerstats.errors import (
    ConfigurationError,
    NotFoundError,
    StoreError,
    TransientStoreError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Serialization failure, deadlock, lock not available.
_TRANSIENT_SQLSTATES = frozenset({"40001", "40P01", "55P03"})

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


@dataclass(frozen=True)
class Contribution:
    """One channel's share of a fold: power plus energy deltas in Wh."""

    power: float
    imported: float = 0.0
    exported: float = 0.0


def _is_transient(exc: DBAPIError) -> bool:
    """Return True if a driver error is worth retrying."""
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    if exc.connection_invalidated:
        return True
    code = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
    return code in _TRANSIENT_SQLSTATES


def _counter_delta(
    previous: float | None,
    current: float | None,
    newer: bool,
) -> tuple[float, float | None]:
    """Compute (delta, value_to_store) for one cumulative counter.

    A decrease on a newer sample is a meter reset; a decrease on an older
    sample is an out-of-order delivery. Neither contributes energy.
    """
    if current is None:
        return 0.0, previous
    if previous is None:
        return 0.0, current
    if current >= previous:
        return current - previous, current
    if newer:
        return 0.0, current
    return 0.0, previous


def _row_stats(row: Any, prefix: str, fields: tuple[str, ...]) -> ChannelStats:
    """Build ChannelStats from the prefixed columns of a bucket row."""
    return ChannelStats(**{f: getattr(row, bucket_column(prefix, f)) for f in fields})


def _row_to_bucket(row: Any, resolution: Resolution) -> Bucket:
    """Convert a bucket ORM row into a domain Bucket."""
    return Bucket(
        location=row.location,
        resolution=resolution,
        bucket_start=row.bucket_start,
        channels={ch: _row_stats(row, ch.value, CHANNEL_FIELDS) for ch in Channel},
        charge=_row_stats(row, CHARGE_PREFIX, CHARGE_FIELDS),
    )


def _fresh_group(
    prefix: str,
    value: float | None,
    ts: int,
    imported: float | None = 0.0,
    exported: float | None = 0.0,
) -> dict[str, Any]:
    """Column values for a group on row insert.

    ``value=None`` yields an empty (count 0) group. Pass ``imported=None``
    for groups without energy columns.
    """
    empty = value is None
    group: dict[str, Any] = {
        f"{prefix}_hi": value,
        f"{prefix}_hi_time": None if empty else ts,
        f"{prefix}_lo": value,
        f"{prefix}_lo_time": None if empty else ts,
        f"{prefix}_count": 0 if empty else 1,
        f"{prefix}_sum": 0.0 if empty else value,
    }
    if imported is not None:
        group[f"{prefix}_imported"] = imported
        group[f"{prefix}_exported"] = exported or 0.0
    return group


def _fold_assignments(
    table: Any,
    excluded: Any,
    prefix: str,
    with_energy: bool,
) -> dict[str, Any]:
    """ON CONFLICT SET clauses folding the excluded row's group into a row.

    Right-hand sides read the pre-update row, so each hi/hi_time pair is
    decided by the same comparison.
    """

    def name(suffix: str) -> str:
        return bucket_column(prefix, suffix)

    def col(suffix: str) -> Any:
        return table.c[name(suffix)]

    def new(suffix: str) -> Any:
        return excluded[name(suffix)]

    raises_hi = or_(col("hi").is_(None), new("hi") > col("hi"))
    lowers_lo = or_(col("lo").is_(None), new("lo") < col("lo"))

    assignments: dict[str, Any] = {
        name("hi"): case((raises_hi, new("hi")), else_=col("hi")),
        name("hi_time"): case((raises_hi, new("hi_time")), else_=col("hi_time")),
        name("lo"): case((lowers_lo, new("lo")), else_=col("lo")),
        name("lo_time"): case((lowers_lo, new("lo_time")), else_=col("lo_time")),
        name("count"): col("count") + new("count"),
        name("sum"): col("sum") + new("sum"),
    }
    if with_energy:
        assignments[name("imported")] = col("imported") + new("imported")
        assignments[name("exported")] = col("exported") + new("exported")
    return assignments


class BucketStore:
    """Async access to raw streams and aggregate buckets.

    Construct once at startup and share; the engine's pool makes it safe
    for concurrent use.

    Args:
        engine: Async engine (PostgreSQL or SQLite).
        timeout_s: Deadline applied to every store operation.
        session_factory: Optional factory; built from *engine* when omitted.

    Raises:
        ConfigurationError: If the engine's dialect has no upsert support here.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        timeout_s: float = 5.0,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        dialect = engine.dialect.name
        if dialect not in _INSERTS:
            raise ConfigurationError(f"Unsupported database dialect '{dialect}'")
        self._insert = _INSERTS[dialect]
        self._engine = engine
        self._timeout_s = timeout_s
        self._session_factory = session_factory or create_session_factory(engine)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _guard(self, operation: str) -> AsyncIterator[None]:
        """Apply the deadline and translate driver errors for one operation."""
        try:
            async with asyncio.timeout(self._timeout_s):
                yield
        except TimeoutError as exc:
            raise TransientStoreError(
                f"{operation} exceeded {self._timeout_s}s deadline"
            ) from exc
        except PoolTimeoutError as exc:
            raise TransientStoreError(
                f"{operation}: connection pool exhausted"
            ) from exc
        except DBAPIError as exc:
            if _is_transient(exc):
                raise TransientStoreError(f"{operation}: {exc.orig}") from exc
            raise StoreError(f"{operation}: {exc.orig}") from exc
        except OSError as exc:
            raise TransientStoreError(f"{operation}: {exc}") from exc
        except SQLAlchemyError as exc:
            raise StoreError(f"{operation}: {exc}") from exc

    async def run_in_transaction(
        self,
        operation: str,
        work: Callable[[AsyncSession], Awaitable[T]],
    ) -> T:
        """Run *work* inside one transaction under the store deadline.

        The transaction commits when *work* returns and rolls back when it
        raises or is cancelled.
        """
        async with self._guard(operation):
            async with self._session_factory() as session, session.begin():
                return await work(session)

    async def ping(self) -> None:
        """Round-trip ``SELECT 1`` to the database."""
        async with self._guard("ping"):
            async with self._session_factory() as session:
                await session.execute(text("SELECT 1"))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_latest_instant(self, location: str) -> InstantReading:
        """Return the newest raw power value of each channel for *location*.

        Readings may carry any subset of channels, so every channel is looked
        up on its own: the newest row where that channel's column is set.
        Channels never reported are absent from the result.

        Raises:
            NotFoundError: If no channel of the location has a power value.
        """
        power: dict[Channel, float] = {}
        observed_at: dict[Channel, datetime] = {}
        async with self._guard("get_latest_instant"):
            async with self._session_factory() as session:
                for channel, column_name in RAW_POWER_COLUMNS.items():
                    column = getattr(RawReading, column_name)
                    stmt = (
                        select(RawReading.ts, column)
                        .where(RawReading.location == location, column.is_not(None))
                        .order_by(RawReading.ts.desc())
                        .limit(1)
                    )
                    row = (await session.execute(stmt)).one_or_none()
                    if row is not None:
                        observed_at[channel] = as_utc(row[0])
                        power[channel] = row[1]

        if not power:
            raise NotFoundError(f"No power reading for location '{location}'")

        return InstantReading(
            location=location,
            timestamp=max(observed_at.values()),
            power=power,
            observed_at=observed_at,
        )

    async def get_latest_charge(self, location: str) -> ChargeSample:
        """Return the newest battery charge reading for *location*.

        Raises:
            NotFoundError: If no charge reading exists for the location.
        """
        stmt = (
            select(ChargeReading)
            .where(ChargeReading.location == location)
            .order_by(ChargeReading.ts.desc())
            .limit(1)
        )
        async with self._guard("get_latest_charge"):
            async with self._session_factory() as session:
                row = (await session.execute(stmt)).scalar_one_or_none()

        if row is None:
            raise NotFoundError(f"No charge reading for location '{location}'")
        return ChargeSample(
            location=row.location,
            timestamp=as_utc(row.ts),
            percent_charged=row.percent_charged,
        )

    async def get_buckets(
        self,
        location: str,
        resolution: Resolution,
        window: HistoryWindow,
    ) -> list[Bucket]:
        """Read buckets for one location and resolution.

        LastN windows return at most ``limit`` buckets, newest first.
        TimeRange windows return buckets with ``begin <= bucket_start <= end``,
        oldest first, bounded only when the window carries a limit.
        """
        model = BUCKET_MODELS[resolution]
        stmt = select(model).where(model.location == location)
        if isinstance(window, LastN):
            stmt = stmt.order_by(model.bucket_start.desc()).limit(window.limit)
        elif isinstance(window, TimeRange):
            stmt = stmt.where(
                model.bucket_start >= to_epoch_ceil(window.begin),
                model.bucket_start <= to_epoch(window.end),
            ).order_by(model.bucket_start.asc())
            if window.limit is not None:
                stmt = stmt.limit(window.limit)
        else:
            raise TypeError(f"Unsupported history window {window!r}")

        async with self._guard("get_buckets"):
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).scalars().all()

        logger.debug(
            "get_buckets location=%s resolution=%s window=%s rows=%d",
            location,
            resolution.value,
            window,
            len(rows),
        )
        return [_row_to_bucket(row, resolution) for row in rows]

    # ------------------------------------------------------------------
    # Write primitives (call inside run_in_transaction)
    # ------------------------------------------------------------------

    async def insert_raw_reading(self, session: AsyncSession, reading: Reading) -> bool:
        """Insert a raw reading; return False if (location, ts) already exists."""
        values: dict[str, Any] = {
            "location": reading.location,
            "ts": as_utc(reading.timestamp),
        }
        for channel, column in RAW_POWER_COLUMNS.items():
            if channel in reading.channels:
                values[column] = reading.channels[channel].power
        stmt = (
            self._insert(RawReading)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["location", "ts"])
        )
        result = await session.execute(stmt)
        return result.rowcount > 0

    async def insert_charge_reading(
        self, session: AsyncSession, sample: ChargeSample
    ) -> bool:
        """Insert a charge reading; return False if (location, ts) already exists."""
        stmt = (
            self._insert(ChargeReading)
            .values(
                location=sample.location,
                ts=as_utc(sample.timestamp),
                percent_charged=sample.percent_charged,
            )
            .on_conflict_do_nothing(index_elements=["location", "ts"])
        )
        result = await session.execute(stmt)
        return result.rowcount > 0

    async def advance_counter(
        self,
        session: AsyncSession,
        location: str,
        channel: Channel,
        ts: int,
        imported: float | None,
        exported: float | None,
    ) -> tuple[float, float]:
        """Record cumulative counters and return the (imported, exported) deltas.

        The first counters seen for a channel yield zero deltas.
        """
        if imported is None and exported is None:
            return 0.0, 0.0

        stmt = (
            select(EnergyCounter)
            .where(
                EnergyCounter.location == location,
                EnergyCounter.channel == channel.value,
            )
            .with_for_update()
        )
        counter = (await session.execute(stmt)).scalar_one_or_none()

        if counter is None:
            await session.execute(
                self._insert(EnergyCounter)
                .values(
                    location=location,
                    channel=channel.value,
                    imported_total=imported,
                    exported_total=exported,
                    as_of=ts,
                )
                .on_conflict_do_nothing(index_elements=["location", "channel"])
            )
            return 0.0, 0.0

        newer = ts >= counter.as_of
        delta_imported, counter.imported_total = _counter_delta(
            counter.imported_total, imported, newer
        )
        delta_exported, counter.exported_total = _counter_delta(
            counter.exported_total, exported, newer
        )
        if newer:
            counter.as_of = ts
        else:
            logger.debug(
                "Out-of-order counters for %s/%s at %d (stored as_of %d)",
                location,
                channel.value,
                ts,
                counter.as_of,
            )
        await session.flush()
        return delta_imported, delta_exported

    async def upsert_bucket(
        self,
        session: AsyncSession,
        resolution: Resolution,
        location: str,
        ts: int,
        contributions: Mapping[Channel, Contribution],
        charge: float | None = None,
    ) -> int:
        """Fold channel contributions (and optionally a charge %) into one bucket.

        Creates the bucket on first use. Returns the bucket start.
        """
        if not contributions and charge is None:
            raise ValueError("upsert_bucket needs at least one contribution")

        model = BUCKET_MODELS[resolution]
        table = model.__table__  # type: ignore[attr-defined]
        bucket_start = align_bucket_start(ts, resolution.width_s)

        values: dict[str, Any] = {"location": location, "bucket_start": bucket_start}
        for channel in Channel:
            contribution = contributions.get(channel)
            if contribution is None:
                values.update(_fresh_group(channel.value, None, ts))
            else:
                values.update(
                    _fresh_group(
                        channel.value,
                        contribution.power,
                        ts,
                        contribution.imported,
                        contribution.exported,
                    )
                )
        values.update(_fresh_group(CHARGE_PREFIX, charge, ts, imported=None))

        stmt = self._insert(model).values(**values)
        assignments: dict[str, Any] = {}
        for channel in contributions:
            assignments.update(
                _fold_assignments(table, stmt.excluded, channel.value, with_energy=True)
            )
        if charge is not None:
            assignments.update(
                _fold_assignments(
                    table, stmt.excluded, CHARGE_PREFIX, with_energy=False
                )
            )
        stmt = stmt.on_conflict_do_update(
            index_elements=["location", "bucket_start"],
            set_=assignments,
        )
        await session.execute(stmt)
        return bucket_start
