"""
Rollup updater: folds incoming samples into five-minute and daily buckets.

Each fold is one transaction: cumulative energy counters are advanced into
per-bucket deltas, then one upsert per resolution folds the contribution
into its bucket. Transient store failures are retried with exponential
backoff (initial delay doubling up to max_retry_delay_s) for a bounded number
of attempts, after which the TransientStoreError reaches the caller. A fold
either lands completely or not at all.

Tie-break: a value equal to the current hi or lo does not move its
timestamp; the first occurrence wins.

CHANGELOG:
- 2026-03-06: Bounded retry of transient store errors (STORY-108)
- 2026-03-04: ingest() records raw readings and folds in one transaction
  (STORY-106)
- 2026-03-02: Initial creation (STORY-104)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TYPE_CHECKING, TypeVar

from powerstats.domain import (
    Channel,
    ChargeSample,
    Reading,
    Resolution,
    Sample,
    to_epoch,
)
from powerstats.errors import TransientStoreError
from powerstats.services.store import Contribution

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from powerstats.services.store import BucketStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

_DEFAULT_MAX_RETRY_DELAY_S = 1.0


class RollupUpdater:
    """Folds samples into every configured resolution.

    Args:
        store: The shared BucketStore.
        max_attempts: Attempts per fold, including the first.
        retry_delay_s: Backoff before the second attempt; doubles after each
            further failure.
        max_retry_delay_s: Backoff cap.
        resolutions: Resolutions each sample is folded into.

    Usage::

        updater = RollupUpdater(store, max_attempts=3)
        await updater.fold(Sample("VT", Channel.SOLAR, ts, 2100.0))
    """

    def __init__(
        self,
        store: BucketStore,
        max_attempts: int = 3,
        retry_delay_s: float = 0.05,
        max_retry_delay_s: float = _DEFAULT_MAX_RETRY_DELAY_S,
        resolutions: Sequence[Resolution] = tuple(Resolution),
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._store = store
        self._max_attempts = max_attempts
        self._retry_delay_s = retry_delay_s
        self._max_retry_delay_s = max_retry_delay_s
        self._resolutions = tuple(resolutions)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fold(self, sample: Sample) -> None:
        """Fold one power sample into its bucket at every resolution.

        Raises:
            TransientStoreError: If every attempt hit a transient failure.
            StoreError: On a non-retryable store failure.
        """
        ts = to_epoch(sample.timestamp)

        async def work(session: AsyncSession) -> None:
            await self._fold_into(session, sample.location, ts, [sample], None)

        await self._with_retry("fold", work)

    async def fold_charge(self, sample: ChargeSample) -> None:
        """Fold one battery charge sample into its bucket at every resolution."""
        ts = to_epoch(sample.timestamp)

        async def work(session: AsyncSession) -> None:
            await self._fold_into(
                session, sample.location, ts, [], sample.percent_charged
            )

        await self._with_retry("fold_charge", work)

    async def ingest(self, reading: Reading) -> bool:
        """Persist a raw reading and fold all of its parts, atomically.

        The raw row's (location, ts) key de-duplicates deliveries: a reading
        already stored is neither re-inserted nor folded again.

        Returns:
            bool: True if the reading was new and folded, False if duplicate.
        """
        ts = to_epoch(reading.timestamp)
        samples = reading.samples()
        charge = reading.charge_sample()

        async def work(session: AsyncSession) -> bool:
            raw_new = bool(samples) and await self._store.insert_raw_reading(
                session, reading
            )
            charge_new = charge is not None and await self._store.insert_charge_reading(
                session, charge
            )
            if not raw_new and not charge_new:
                return False
            await self._fold_into(
                session,
                reading.location,
                ts,
                samples if raw_new else [],
                charge.percent_charged if charge_new and charge else None,
            )
            return True

        return await self._with_retry("ingest", work)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _fold_into(
        self,
        session: AsyncSession,
        location: str,
        ts: int,
        samples: Sequence[Sample],
        charge: float | None,
    ) -> None:
        """Advance counters and upsert every resolution within *session*."""
        contributions: dict[Channel, Contribution] = {}
        for sample in samples:
            imported, exported = await self._store.advance_counter(
                session,
                location,
                sample.channel,
                ts,
                sample.energy_imported,
                sample.energy_exported,
            )
            contributions[sample.channel] = Contribution(
                sample.power, imported, exported
            )

        for resolution in self._resolutions:
            await self._store.upsert_bucket(
                session, resolution, location, ts, contributions, charge
            )

    async def _with_retry(
        self,
        operation: str,
        work: Callable[[AsyncSession], Awaitable[T]],
    ) -> T:
        """Run *work* in a store transaction, retrying transient failures."""
        delay = self._retry_delay_s
        for attempt in range(1, self._max_attempts + 1):
            try:
                return await self._store.run_in_transaction(operation, work)
            except TransientStoreError as exc:
                if attempt == self._max_attempts:
                    logger.error(
                        "%s failed after %d attempts: %s",
                        operation,
                        attempt,
                        exc,
                    )
                    raise
                logger.warning(
                    "%s attempt %d/%d hit a transient store error, "
                    "retrying in %.3fs: %s",
                    operation,
                    attempt,
                    self._max_attempts,
                    delay,
                    exc,
                )
                await asyncio.sleep(delay)
                delay = min(delay * 2, self._max_retry_delay_s)
        raise AssertionError("unreachable")  # pragma: no cover
