"""
GET /v1/instant endpoint for the latest power and charge of a location.

Returns the instant view built by the query engine, using the Redis instant
cache with a short TTL to spare the database on dashboards that poll. The
charge part is optional: when it cannot be read the response carries
``"charge": null`` instead of failing. A location without any power reading
answers 404. Views without a charge part are not cached, so a charge read
that failed once is retried on the next request.

CHANGELOG:
- 2026-03-12: Per-channel latest power; skip caching views without charge
  (STORY-113)
- 2026-03-07: Serve the query engine's instant view (STORY-109)
- 2026-02-14: Initial creation (STORY-011)

TODO:
- None
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from powerstats.api.deps import (
    get_cache,
    get_location,
    get_query_engine,
    require_location,
    store_http_error,
)
from powerstats.api.schemas import InstantOut
from powerstats.cache.redis_client import InstantCache
from powerstats.errors import NotFoundError, StoreError
from powerstats.services.query import QueryEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["instant"])


@router.get("/instant")
async def instant(
    location: Annotated[str, Query(description="Location key, e.g. VT.")],
    auth_location: Annotated[str, Depends(get_location)],
    engine: Annotated[QueryEngine, Depends(get_query_engine)],
    cache: Annotated[InstantCache, Depends(get_cache)],
) -> dict:
    """Return the latest power reading (and charge, when available).

    Args:
        location: The location to query (query parameter).
        auth_location: The authenticated location from the bearer token.
        engine: Shared query engine.
        cache: Shared instant cache.

    Returns:
        dict: JSON object shaped like InstantOut.

    Raises:
        HTTPException: 403 if location does not match auth token.
        HTTPException: 404 if no power reading exists for the location.
        HTTPException: 503/502 if the store failed.
    """
    location = require_location(location, auth_location)

    cached = await cache.get(location)
    if cached is not None:
        return cached

    try:
        snapshot = await engine.instant_view(location)
    except NotFoundError:
        raise HTTPException(
            status_code=404,
            detail=f"No data found for location '{location}'.",
        ) from None
    except StoreError as exc:
        logger.warning("Instant view failed for %s: %s", location, exc)
        raise store_http_error(exc) from None

    view = InstantOut.from_snapshot(snapshot).model_dump(mode="json")
    if snapshot.charge is not None:
        await cache.set(location, view)
    return view
