"""
GET /v1/series endpoint for chart-ready time series.

Projects one value per bucket into a flat JSON list of
``[timestamp_ms, value]`` pairs. The metric selects which value:

- ``average``, ``peak``, ``low``: power of ``channel`` in watts.
- ``net_energy``: exported minus imported energy of ``channel`` in Wh.
- ``charge``: average battery state of charge in percent (no channel).

Empty buckets are kept and carry ``null``.

CHANGELOG:
- 2026-03-08: Serve series from bucket views (STORY-110)
- 2026-02-14: Initial creation (STORY-012)

TODO:
- None
"""

import logging
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from powerstats.api.deps import (
    get_location,
    get_query_engine,
    get_settings,
    require_location,
)
from powerstats.api.history import load_history, resolve_window
from powerstats.config import Settings
from powerstats.domain import Channel, Resolution
from powerstats.services.query import QueryEngine
from powerstats.services.series import (
    METRICS,
    ValueSelector,
    average_charge,
    encode_series,
    to_series,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["series"])

CHARGE_METRIC = "charge"

VALID_METRICS = frozenset(METRICS) | {CHARGE_METRIC}


def select_metric(metric: str, channel: Channel | None) -> ValueSelector:
    """Return the value selector for a metric name.

    Raises:
        HTTPException: 422 on an unknown metric or a missing channel.
    """
    if metric == CHARGE_METRIC:
        return average_charge()
    factory = METRICS.get(metric)
    if factory is None:
        raise HTTPException(
            status_code=422,
            detail=f"Invalid metric '{metric}'. Must be one of: "
            f"{', '.join(sorted(VALID_METRICS))}",
        )
    if channel is None:
        raise HTTPException(
            status_code=422,
            detail=f"Metric '{metric}' requires a 'channel' parameter.",
        )
    return factory(channel)


@router.get("/series")
async def get_series(
    location: Annotated[str, Query(description="Location key, e.g. VT.")],
    metric: Annotated[
        str, Query(description="average, peak, low, net_energy or charge.")
    ],
    auth_location: Annotated[str, Depends(get_location)],
    engine: Annotated[QueryEngine, Depends(get_query_engine)],
    settings: Annotated[Settings, Depends(get_settings)],
    channel: Annotated[Channel | None, Query()] = None,
    resolution: Annotated[Resolution, Query()] = Resolution.DAILY,
    limit: Annotated[int | None, Query(ge=1, le=10_000)] = None,
    begin: Annotated[datetime | None, Query()] = None,
    end: Annotated[datetime | None, Query()] = None,
) -> Response:
    """Return ``[[timestamp_ms, value], ...]`` for the requested metric.

    Raises:
        HTTPException: 403 if location does not match auth token.
        HTTPException: 422 on invalid metric, channel or window.
        HTTPException: 503/502 if the store failed.
    """
    location = require_location(location, auth_location)
    selector = select_metric(metric, channel)
    window = resolve_window(begin, end, limit, settings.daily_history_limit)
    views = await load_history(engine, location, resolution, window)

    return Response(
        content=encode_series(to_series(views, selector)),
        media_type="application/json",
    )
