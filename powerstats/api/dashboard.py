"""
GET /v1/dashboard endpoint: instant view plus recent daily buckets.

The daily history is optional. When it cannot be read the response still
carries the instant view, an empty ``daily`` list and
``"history_available": false``.

CHANGELOG:
- 2026-03-09: Initial creation (STORY-111)

TODO:
- None
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from powerstats.api.deps import (
    get_location,
    get_query_engine,
    get_settings,
    require_location,
    store_http_error,
)
from powerstats.api.schemas import DashboardOut
from powerstats.config import Settings
from powerstats.errors import NotFoundError, StoreError
from powerstats.services.query import QueryEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["dashboard"])


@router.get("/dashboard", response_model=DashboardOut)
async def get_dashboard(
    location: Annotated[str, Query(description="Location key, e.g. VT.")],
    auth_location: Annotated[str, Depends(get_location)],
    engine: Annotated[QueryEngine, Depends(get_query_engine)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> DashboardOut:
    """Return the dashboard for a location.

    Raises:
        HTTPException: 403 if location does not match auth token.
        HTTPException: 404 if the location has no power reading.
        HTTPException: 503/502 if the instant view could not be read.
    """
    location = require_location(location, auth_location)
    try:
        dashboard = await engine.dashboard(location, settings.daily_history_limit)
    except NotFoundError:
        raise HTTPException(
            status_code=404,
            detail=f"No data found for location '{location}'.",
        ) from None
    except StoreError as exc:
        logger.warning("Dashboard failed for %s: %s", location, exc)
        raise store_http_error(exc) from None
    return DashboardOut.from_dashboard(dashboard)
