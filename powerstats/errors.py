"""
Error taxonomy shared by the store, rollup and query layers.

NotFoundError is distinct from a store failure. TransientStoreError marks
failures worth retrying (connectivity, lock contention, deadline expiry).
ConfigurationError is raised only while loading settings at startup.

CHANGELOG:
- 2026-03-02: Add StoreError base for non-retryable store failures (STORY-104)
- 2026-02-27: Initial creation (STORY-101)

TODO:
- None
"""


class PowerStatsError(Exception):
    """Base class for all powerstats errors."""


class NotFoundError(PowerStatsError):
    """No row exists for the requested location, key or time window."""


class StoreError(PowerStatsError):
    """The backing store failed in a way that retrying will not fix."""


class TransientStoreError(StoreError):
    """The backing store failed in a way that may succeed on retry.

    Raised for connection loss, lock contention, serialization failures
    and store calls exceeding their deadline.
    """


class ConfigurationError(PowerStatsError):
    """Invalid static configuration (resolution, time zone, location key)."""
