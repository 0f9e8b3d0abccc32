"""
Health check endpoints for the powerstats API.

GET /health is a liveness probe returning {"status": "ok"}. GET
/health/ready also round-trips the database and answers 503 when it is
unreachable. Neither requires authentication.

CHANGELOG:
- 2026-03-10: Add readiness probe backed by BucketStore.ping (STORY-112)
- 2026-02-14: Initial creation (STORY-015)

TODO:
- None
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from powerstats.api.deps import get_store
from powerstats.errors import StoreError
from powerstats.services.store import BucketStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict[str, str]:
    """Return a simple health status.

    Returns:
        dict: ``{"status": "ok"}`` indicating the service is alive.
    """
    return {"status": "ok"}


@router.get("/health/ready")
async def ready(store: Annotated[BucketStore, Depends(get_store)]) -> JSONResponse:
    """Return 200 when the database answers, 503 otherwise."""
    try:
        await store.ping()
    except StoreError:
        logger.warning("Readiness check failed", exc_info=True)
        return JSONResponse(status_code=503, content={"status": "unavailable"})
    return JSONResponse(status_code=200, content={"status": "ok"})
