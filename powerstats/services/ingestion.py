"""
Ingestion service for batches of combined power readings.

Each reading is recorded and folded by RollupUpdater.ingest() in its own
transaction, so a failure part-way through a batch leaves the earlier
readings committed. Re-sending the batch is safe: readings already stored
are reported as duplicates and not folded twice. The instant cache for the
location is invalidated whenever at least one reading was accepted.

CHANGELOG:
- 2026-03-04: Fold readings through RollupUpdater.ingest (STORY-106)
- 2026-02-14: Initial creation (STORY-010)

TODO:
- None
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from powerstats.cache.redis_client import InstantCache
from powerstats.domain import Reading
from powerstats.services.rollup import RollupUpdater

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestResult:
    """Outcome of one ingest batch.

    Attributes:
        accepted: Readings that were new and folded.
        duplicates: Readings whose (location, ts) was already stored.
    """

    accepted: int
    duplicates: int


async def ingest_readings(
    updater: RollupUpdater,
    cache: InstantCache,
    location: str,
    readings: Sequence[Reading],
) -> IngestResult:
    """Record and fold a batch of readings for one location.

    Args:
        updater: Rollup updater used for each reading.
        cache: Instant cache to invalidate on success.
        location: The authenticated location every reading belongs to.
        readings: Readings in delivery order.

    Returns:
        IngestResult: Accepted and duplicate counts.

    Raises:
        TransientStoreError: If a reading could not be folded after retries.
        StoreError: On a non-retryable store failure.
    """
    accepted = 0
    duplicates = 0
    try:
        for reading in readings:
            if await updater.ingest(reading):
                accepted += 1
            else:
                duplicates += 1
    finally:
        if accepted > 0:
            await cache.invalidate(location)

    logger.info(
        "Ingested %d/%d readings for location %s (%d duplicates)",
        accepted,
        len(readings),
        location,
        duplicates,
    )
    return IngestResult(accepted=accepted, duplicates=duplicates)
