"""
GET /v1/history endpoint for aggregate buckets.

Two access patterns:
- ``limit=N`` (or nothing): the most recent N buckets, newest first.
  Defaults to DAILY_HISTORY_LIMIT.
- ``begin=...&end=...``: buckets with begin <= bucket_start <= end, oldest
  first, optionally bounded by ``limit``.

CHANGELOG:
- 2026-03-07: Serve query-engine bucket views at five-minute and daily
  resolution (STORY-109)
- 2026-02-14: Initial creation (STORY-012)

TODO:
- None
"""

import logging
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from powerstats.api.deps import (
    get_location,
    get_query_engine,
    get_settings,
    require_location,
    store_http_error,
)
from powerstats.api.schemas import BucketOut, HistoryResponse
from powerstats.config import Settings
from powerstats.domain import HistoryWindow, LastN, Resolution, TimeRange
from powerstats.errors import StoreError
from powerstats.services.query import BucketView, QueryEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["history"])


def resolve_window(
    begin: datetime | None,
    end: datetime | None,
    limit: int | None,
    default_limit: int,
) -> HistoryWindow:
    """Build the history window from query parameters.

    Raises:
        HTTPException: 422 if only one of begin/end is given or end < begin.
    """
    if begin is None and end is None:
        return LastN(limit or default_limit)
    if begin is None or end is None:
        raise HTTPException(
            status_code=422,
            detail="Both 'begin' and 'end' are required for a ranged query.",
        )
    try:
        return TimeRange(begin, end, limit)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from None


async def load_history(
    engine: QueryEngine,
    location: str,
    resolution: Resolution,
    window: HistoryWindow,
) -> list[BucketView]:
    """Run a history query, mapping store failures to HTTP errors."""
    try:
        return await engine.history_view(location, resolution, window)
    except StoreError as exc:
        logger.warning("History query failed for %s: %s", location, exc)
        raise store_http_error(exc) from None


@router.get("/history", response_model=HistoryResponse)
async def get_history(
    location: Annotated[str, Query(description="Location key, e.g. VT.")],
    auth_location: Annotated[str, Depends(get_location)],
    engine: Annotated[QueryEngine, Depends(get_query_engine)],
    settings: Annotated[Settings, Depends(get_settings)],
    resolution: Annotated[Resolution, Query()] = Resolution.DAILY,
    limit: Annotated[int | None, Query(ge=1, le=10_000)] = None,
    begin: Annotated[datetime | None, Query()] = None,
    end: Annotated[datetime | None, Query()] = None,
) -> HistoryResponse:
    """Return aggregate buckets for a location.

    Raises:
        HTTPException: 403 if location does not match auth token.
        HTTPException: 422 on invalid resolution or window parameters.
        HTTPException: 503/502 if the store failed.
    """
    location = require_location(location, auth_location)
    window = resolve_window(begin, end, limit, settings.daily_history_limit)
    views = await load_history(engine, location, resolution, window)

    logger.debug(
        "History query: location=%s resolution=%s rows=%d",
        location,
        resolution.value,
        len(views),
    )

    return HistoryResponse(
        location=location,
        resolution=resolution.value,
        buckets=[BucketOut.from_view(view) for view in views],
    )
