"""
SQLAlchemy ORM models for the powerstats database.

Raw streams (raw_readings, charge_readings) use a composite primary key
(location, ts) so a repeated reading is ignored on insert. Aggregates live in
one table per resolution (bucket_five_minute, bucket_daily) keyed by
(location, bucket_start), with eight columns per power channel and six for
battery charge. Bucket timestamps are integer epoch seconds.

CHANGELOG:
- 2026-03-05: Add energy_counters for cumulative counter deltas (STORY-107)
- 2026-03-03: Add charge columns to bucket tables (STORY-105)
- 2026-02-27: Initial creation (STORY-102)

TODO:
- None
"""

import datetime

from sqlalchemy import BigInteger, DateTime, Double, Integer, Text, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from powerstats.domain import Channel, Resolution


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all powerstats ORM models."""

    pass


class RawReading(Base):
    """Latest-value source for instant views: one row per received reading.

    Channel powers are nullable because a reading may carry only some
    channels.
    """

    __tablename__ = "raw_readings"

    location: Mapped[str] = mapped_column(Text, primary_key=True, nullable=False)
    ts: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), primary_key=True, nullable=False
    )
    site_power_w: Mapped[float | None] = mapped_column(Double, nullable=True)
    load_power_w: Mapped[float | None] = mapped_column(Double, nullable=True)
    battery_power_w: Mapped[float | None] = mapped_column(Double, nullable=True)
    solar_power_w: Mapped[float | None] = mapped_column(Double, nullable=True)

    def __repr__(self) -> str:
        """Return string representation of the RawReading."""
        return f"RawReading(location={self.location!r}, ts={self.ts!r})"


class ChargeReading(Base):
    """Battery state of charge as received, one row per reading."""

    __tablename__ = "charge_readings"

    location: Mapped[str] = mapped_column(Text, primary_key=True, nullable=False)
    ts: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), primary_key=True, nullable=False
    )
    percent_charged: Mapped[float] = mapped_column(Double, nullable=False)

    def __repr__(self) -> str:
        """Return string representation of the ChargeReading."""
        return (
            f"ChargeReading(location={self.location!r}, ts={self.ts!r}, "
            f"percent_charged={self.percent_charged!r})"
        )


class EnergyCounter(Base):
    """Last cumulative energy counters seen per (location, channel)."""

    __tablename__ = "energy_counters"

    location: Mapped[str] = mapped_column(Text, primary_key=True, nullable=False)
    channel: Mapped[str] = mapped_column(Text, primary_key=True, nullable=False)
    imported_total: Mapped[float | None] = mapped_column(Double, nullable=True)
    exported_total: Mapped[float | None] = mapped_column(Double, nullable=True)
    as_of: Mapped[int] = mapped_column(BigInteger, nullable=False)


class _BucketColumns:
    """Columns shared by every bucket resolution table."""

    location: Mapped[str] = mapped_column(Text, primary_key=True, nullable=False)
    bucket_start: Mapped[int] = mapped_column(
        BigInteger, primary_key=True, nullable=False
    )

    site_hi: Mapped[float | None] = mapped_column(Double, nullable=True)
    site_hi_time: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    site_lo: Mapped[float | None] = mapped_column(Double, nullable=True)
    site_lo_time: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    site_count: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default=text("0")
    )
    site_sum: Mapped[float] = mapped_column(
        Double, nullable=False, server_default=text("0")
    )
    site_imported: Mapped[float] = mapped_column(
        Double, nullable=False, server_default=text("0")
    )
    site_exported: Mapped[float] = mapped_column(
        Double, nullable=False, server_default=text("0")
    )

    load_hi: Mapped[float | None] = mapped_column(Double, nullable=True)
    load_hi_time: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    load_lo: Mapped[float | None] = mapped_column(Double, nullable=True)
    load_lo_time: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    load_count: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default=text("0")
    )
    load_sum: Mapped[float] = mapped_column(
        Double, nullable=False, server_default=text("0")
    )
    load_imported: Mapped[float] = mapped_column(
        Double, nullable=False, server_default=text("0")
    )
    load_exported: Mapped[float] = mapped_column(
        Double, nullable=False, server_default=text("0")
    )

    battery_hi: Mapped[float | None] = mapped_column(Double, nullable=True)
    battery_hi_time: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    battery_lo: Mapped[float | None] = mapped_column(Double, nullable=True)
    battery_lo_time: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    battery_count: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default=text("0")
    )
    battery_sum: Mapped[float] = mapped_column(
        Double, nullable=False, server_default=text("0")
    )
    battery_imported: Mapped[float] = mapped_column(
        Double, nullable=False, server_default=text("0")
    )
    battery_exported: Mapped[float] = mapped_column(
        Double, nullable=False, server_default=text("0")
    )

    solar_hi: Mapped[float | None] = mapped_column(Double, nullable=True)
    solar_hi_time: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    solar_lo: Mapped[float | None] = mapped_column(Double, nullable=True)
    solar_lo_time: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    solar_count: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default=text("0")
    )
    solar_sum: Mapped[float] = mapped_column(
        Double, nullable=False, server_default=text("0")
    )
    solar_imported: Mapped[float] = mapped_column(
        Double, nullable=False, server_default=text("0")
    )
    solar_exported: Mapped[float] = mapped_column(
        Double, nullable=False, server_default=text("0")
    )

    charge_hi: Mapped[float | None] = mapped_column(Double, nullable=True)
    charge_hi_time: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    charge_lo: Mapped[float | None] = mapped_column(Double, nullable=True)
    charge_lo_time: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    charge_count: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default=text("0")
    )
    charge_sum: Mapped[float] = mapped_column(
        Double, nullable=False, server_default=text("0")
    )

    def __repr__(self) -> str:
        """Return string representation of the bucket row."""
        return (
            f"{type(self).__name__}(location={self.location!r}, "
            f"bucket_start={self.bucket_start!r})"
        )


class BucketFiveMinute(_BucketColumns, Base):
    """Five-minute aggregate buckets."""

    __tablename__ = "bucket_five_minute"


class BucketDaily(_BucketColumns, Base):
    """Daily (UTC day) aggregate buckets."""

    __tablename__ = "bucket_daily"


BUCKET_MODELS: dict[Resolution, type[_BucketColumns]] = {
    Resolution.FIVE_MINUTE: BucketFiveMinute,
    Resolution.DAILY: BucketDaily,
}

# Per-channel column suffixes. The charge group has no energy columns.
CHANNEL_FIELDS = (
    "hi",
    "hi_time",
    "lo",
    "lo_time",
    "count",
    "sum",
    "imported",
    "exported",
)
CHARGE_FIELDS = CHANNEL_FIELDS[:6]
CHARGE_PREFIX = "charge"

# Channel -> raw_readings power column.
RAW_POWER_COLUMNS: dict[Channel, str] = {
    Channel.SITE: "site_power_w",
    Channel.LOAD: "load_power_w",
    Channel.BATTERY: "battery_power_w",
    Channel.SOLAR: "solar_power_w",
}


def bucket_column(prefix: str, suffix: str) -> str:
    """Return the bucket column name for a channel prefix and field suffix."""
    return f"{prefix}_{suffix}"
