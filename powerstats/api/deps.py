"""
FastAPI dependency injection providers.

Everything a route needs (settings, the query engine, the rollup updater,
the instant cache, the store) is built once in the application lifespan and
kept on ``app.state``. These providers hand those shared instances to route
handlers and are the seams tests override via ``app.dependency_overrides``.

CHANGELOG:
- 2026-03-10: Serve services from app.state instead of module singletons
  (STORY-112)
- 2026-02-14: Initial creation (STORY-007)
"""

from fastapi import HTTPException, Request

from powerstats.cache.redis_client import InstantCache
from powerstats.config import Settings
from powerstats.errors import StoreError, TransientStoreError
from powerstats.services.query import QueryEngine
from powerstats.services.rollup import RollupUpdater
from powerstats.services.store import BucketStore


def get_settings(request: Request) -> Settings:
    """Return the settings loaded at startup."""
    return request.app.state.settings


def get_store(request: Request) -> BucketStore:
    """Return the shared BucketStore."""
    return request.app.state.store


def get_query_engine(request: Request) -> QueryEngine:
    """Return the shared QueryEngine."""
    return request.app.state.query_engine


def get_rollup_updater(request: Request) -> RollupUpdater:
    """Return the shared RollupUpdater."""
    return request.app.state.rollup_updater


def get_cache(request: Request) -> InstantCache:
    """Return the shared InstantCache."""
    return request.app.state.cache


async def get_location(request: Request) -> str:
    """Extract the authenticated location via BearerAuth on app.state.

    Args:
        request: The incoming FastAPI request.

    Returns:
        str: The location the bearer token grants access to.
    """
    return await request.app.state.auth.verify(request)


def require_location(requested: str, authenticated: str) -> str:
    """Check that a requested location is the authenticated one.

    Args:
        requested: Location named in the query string (any case).
        authenticated: Location bound to the bearer token.

    Returns:
        str: The canonical location.

    Raises:
        HTTPException: 403 if the locations differ.
    """
    if requested.strip().upper() != authenticated:
        raise HTTPException(
            status_code=403,
            detail="Location does not match authenticated location.",
        )
    return authenticated


def store_http_error(exc: StoreError) -> HTTPException:
    """Map a store failure to the HTTP error returned to the client.

    Transient failures become 503 with Retry-After; anything else is 502.
    """
    if isinstance(exc, TransientStoreError):
        return HTTPException(
            status_code=503,
            detail="Store temporarily unavailable.",
            headers={"Retry-After": "5"},
        )
    return HTTPException(status_code=502, detail="Store error.")
