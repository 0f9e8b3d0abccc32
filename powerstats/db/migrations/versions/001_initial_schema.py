"""
Initial schema: raw streams, energy counters and bucket tables.

Enables the TimescaleDB extension and creates:

- raw_readings and charge_readings, keyed by (location, ts) and converted
  to hypertables on ts with a 7-day chunk interval.
- energy_counters, the last cumulative counters per (location, channel).
- bucket_five_minute and bucket_daily, keyed by (location, bucket_start),
  with eight columns per power channel and six for battery charge.

Revision ID: 001
Revises: None
Create Date: 2026-02-27

CHANGELOG:
- 2026-03-05: Add energy_counters (STORY-107)
- 2026-03-03: Add charge columns to bucket tables (STORY-105)
- 2026-02-27: Initial creation (STORY-102)

TODO:
- None
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_CHANNELS = ("site", "load", "battery", "solar")
_BUCKET_TABLES = ("bucket_five_minute", "bucket_daily")
_HYPERTABLES = ("raw_readings", "charge_readings")


def _group_columns(prefix: str, with_energy: bool) -> list[sa.Column]:
    """Aggregate columns for one channel (or the charge group)."""
    zero = sa.text("0")
    columns = [
        sa.Column(f"{prefix}_hi", sa.Double(), nullable=True),
        sa.Column(f"{prefix}_hi_time", sa.BigInteger(), nullable=True),
        sa.Column(f"{prefix}_lo", sa.Double(), nullable=True),
        sa.Column(f"{prefix}_lo_time", sa.BigInteger(), nullable=True),
        sa.Column(f"{prefix}_count", sa.Integer(), nullable=False, server_default=zero),
        sa.Column(f"{prefix}_sum", sa.Double(), nullable=False, server_default=zero),
    ]
    if with_energy:
        columns += [
            sa.Column(
                f"{prefix}_imported", sa.Double(), nullable=False, server_default=zero
            ),
            sa.Column(
                f"{prefix}_exported", sa.Double(), nullable=False, server_default=zero
            ),
        ]
    return columns


def upgrade() -> None:
    """Create the extension, raw hypertables, counters and bucket tables."""
    op.execute("CREATE EXTENSION IF NOT EXISTS timescaledb")

    op.create_table(
        "raw_readings",
        sa.Column("location", sa.Text(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        *[
            sa.Column(f"{channel}_power_w", sa.Double(), nullable=True)
            for channel in _CHANNELS
        ],
        sa.PrimaryKeyConstraint("location", "ts"),
    )

    op.create_table(
        "charge_readings",
        sa.Column("location", sa.Text(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("percent_charged", sa.Double(), nullable=False),
        sa.PrimaryKeyConstraint("location", "ts"),
    )

    for table in _HYPERTABLES:
        op.execute(
            "SELECT create_hypertable("
            f"'{table}', 'ts', "
            "chunk_time_interval => INTERVAL '7 days', "
            "if_not_exists => TRUE"
            ")"
        )

    op.create_table(
        "energy_counters",
        sa.Column("location", sa.Text(), nullable=False),
        sa.Column("channel", sa.Text(), nullable=False),
        sa.Column("imported_total", sa.Double(), nullable=True),
        sa.Column("exported_total", sa.Double(), nullable=True),
        sa.Column("as_of", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("location", "channel"),
    )

    for table in _BUCKET_TABLES:
        columns: list[sa.Column] = []
        for channel in _CHANNELS:
            columns += _group_columns(channel, with_energy=True)
        columns += _group_columns("charge", with_energy=False)
        op.create_table(
            table,
            sa.Column("location", sa.Text(), nullable=False),
            sa.Column("bucket_start", sa.BigInteger(), nullable=False),
            *columns,
            sa.PrimaryKeyConstraint("location", "bucket_start"),
        )


def downgrade() -> None:
    """Drop all powerstats tables.

    Note: Does not drop the timescaledb extension as other tables may use it.
    """
    for table in _BUCKET_TABLES:
        op.drop_table(table)
    op.drop_table("energy_counters")
    for table in _HYPERTABLES:
        op.drop_table(table)
