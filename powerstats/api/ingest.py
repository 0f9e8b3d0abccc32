"""
POST /v1/ingest endpoint for batch ingestion of power readings.

Accepts a JSON payload with a list of combined readings (per-channel power
and cumulative energy counters plus optional battery charge), validates
location ownership, enforces batch size and request body limits, then
records and folds each reading. Readings already stored are counted as
duplicates. When folding exhausts its retries the endpoint answers 503 so
the sender retries the batch later.

CHANGELOG:
- 2026-03-12: Reject NaN and infinite numbers with 422 (STORY-113)
- 2026-03-04: Readings carry per-channel power and counters; fold into
  buckets via the rollup updater (STORY-106)
- 2026-02-14: Initial creation (STORY-010)

TODO:
- None
"""

import logging
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from powerstats.api.deps import (
    get_cache,
    get_location,
    get_rollup_updater,
    get_settings,
    store_http_error,
)
from powerstats.cache.redis_client import InstantCache
from powerstats.config import Settings
from powerstats.domain import Channel, ChannelReading, Reading, normalize_location
from powerstats.errors import StoreError, TransientStoreError
from powerstats.services.ingestion import ingest_readings
from powerstats.services.rollup import RollupUpdater

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["ingest"])


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class ChannelIn(BaseModel):
    """Power and cumulative counters for one channel."""

    model_config = ConfigDict(allow_inf_nan=False)

    instant_power: float
    energy_imported: float | None = None
    energy_exported: float | None = None


class ReadingIn(BaseModel):
    """Single combined reading for one location."""

    model_config = ConfigDict(allow_inf_nan=False)

    location: str
    ts: datetime
    site: ChannelIn | None = None
    load: ChannelIn | None = None
    battery: ChannelIn | None = None
    solar: ChannelIn | None = None
    percent_charged: float | None = Field(default=None, ge=0, le=100)

    @field_validator("location")
    @classmethod
    def location_must_be_well_formed(cls, v: str) -> str:
        """Normalize the location key (upper case, validated)."""
        return normalize_location(v)

    @model_validator(mode="after")
    def must_carry_data(self) -> "ReadingIn":
        """Reject readings with neither channel power nor charge."""
        if not self._channels() and self.percent_charged is None:
            raise ValueError("reading carries no channel power and no charge")
        return self

    def _channels(self) -> dict[Channel, ChannelIn]:
        return {
            channel: value
            for channel in Channel
            if (value := getattr(self, channel.value)) is not None
        }

    def to_reading(self) -> Reading:
        """Convert to the domain Reading."""
        return Reading(
            location=self.location,
            timestamp=self.ts,
            channels={
                channel: ChannelReading(
                    power=value.instant_power,
                    energy_imported=value.energy_imported,
                    energy_exported=value.energy_exported,
                )
                for channel, value in self._channels().items()
            },
            percent_charged=self.percent_charged,
        )


class IngestPayload(BaseModel):
    """Batch payload for the ingest endpoint."""

    readings: list[ReadingIn]


class IngestResponse(BaseModel):
    """Response from the ingest endpoint."""

    accepted: int
    duplicates: int


# ---------------------------------------------------------------------------
# Route
# ---------------------------------------------------------------------------


@router.post("/ingest", response_model=IngestResponse)
async def ingest(
    request: Request,
    location: Annotated[str, Depends(get_location)],
    settings: Annotated[Settings, Depends(get_settings)],
    updater: Annotated[RollupUpdater, Depends(get_rollup_updater)],
    cache: Annotated[InstantCache, Depends(get_cache)],
) -> IngestResponse:
    """Ingest a batch of power readings.

    Args:
        request: The incoming FastAPI request.
        location: Authenticated location from bearer token.
        settings: Service settings (size limits).
        updater: Rollup updater folding each reading.
        cache: Instant cache invalidated on success.

    Returns:
        IngestResponse: Accepted and duplicate counts.

    Raises:
        HTTPException: 413 if body exceeds MAX_REQUEST_BYTES or batch
            exceeds MAX_READINGS_PER_REQUEST.
        HTTPException: 403 if any reading's location does not match.
        HTTPException: 503 if folding failed transiently after retries.
        HTTPException: 502 on a non-retryable store failure.
    """
    max_request_bytes = settings.max_request_bytes
    content_length = request.headers.get("content-length")
    if content_length is not None:
        try:
            content_length_int = int(content_length)
        except ValueError:
            raise HTTPException(
                status_code=400,
                detail="Invalid Content-Length header.",
            ) from None
        if content_length_int > max_request_bytes:
            raise HTTPException(
                status_code=413,
                detail=f"Request body exceeds limit of {max_request_bytes} bytes.",
            )

    body = await request.body()
    if len(body) > max_request_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"Request body exceeds limit of {max_request_bytes} bytes.",
        )

    try:
        payload = IngestPayload.model_validate_json(body)
    except ValidationError as exc:
        return JSONResponse(
            status_code=422,
            content={"detail": exc.errors(include_url=False, include_context=False)},
        )

    if not payload.readings:
        return IngestResponse(accepted=0, duplicates=0)

    if len(payload.readings) > settings.max_readings_per_request:
        raise HTTPException(
            status_code=413,
            detail=f"Batch size {len(payload.readings)} exceeds limit of "
            f"{settings.max_readings_per_request}. Split into smaller batches.",
        )

    for reading in payload.readings:
        if reading.location != location:
            raise HTTPException(
                status_code=403,
                detail=f"Reading location '{reading.location}' does not match "
                f"authenticated location '{location}'.",
            )

    try:
        result = await ingest_readings(
            updater,
            cache,
            location,
            [reading.to_reading() for reading in payload.readings],
        )
    except TransientStoreError as exc:
        logger.warning("Ingest for location %s deferred: %s", location, exc)
        raise store_http_error(exc) from None
    except StoreError as exc:
        logger.exception("Ingest failed for location %s", location)
        raise store_http_error(exc) from None

    return IngestResponse(accepted=result.accepted, duplicates=result.duplicates)
