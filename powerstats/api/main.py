"""
FastAPI application entry point for the powerstats API.

The lifespan loads and validates settings, configures logging, waits for
the database (bounded retries, then startup fails), and builds every shared
service once: BucketStore, RollupUpdater, QueryEngine, InstantCache and
BearerAuth all live on ``app.state`` for the dependency providers in
``powerstats.api.deps``.

CHANGELOG:
- 2026-03-10: Build services in the lifespan and keep them on app.state;
  register instant, history, series and dashboard routers (STORY-112)
- 2026-02-28: Load settings via pydantic-settings (STORY-103)
- 2026-02-14: Initial creation (STORY-007)

TODO:
- None
"""

import logging
import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from powerstats import __version__
from powerstats.api.dashboard import router as dashboard_router
from powerstats.api.health import router as health_router
from powerstats.api.history import router as history_router
from powerstats.api.ingest import router as ingest_router
from powerstats.api.instant import router as instant_router
from powerstats.api.series import router as series_router
from powerstats.auth.bearer import BearerAuth
from powerstats.cache.redis_client import InstantCache
from powerstats.config import load_settings
from powerstats.db.session import create_engine, create_schema, wait_for_database
from powerstats.errors import StoreError
from powerstats.logging_config import configure_logging
from powerstats.services.query import QueryEngine
from powerstats.services.rollup import RollupUpdater
from powerstats.services.store import BucketStore

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Read allowed browser origins from CORS_ORIGINS (comma separated)."""
    raw = os.environ.get("CORS_ORIGINS", "")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: build shared services, dispose them on exit.

    Startup:
        - Loads settings (ConfigurationError aborts startup).
        - Waits for the database; gives up after CONNECT_MAX_ATTEMPTS.
        - Creates tables when AUTO_CREATE_SCHEMA is set.

    Shutdown:
        - Closes the Redis client and disposes the engine pool.
    """
    settings = load_settings()
    configure_logging(settings.log_level, settings.log_format)

    engine = create_engine(settings.database_url)
    try:
        await wait_for_database(
            engine,
            settings.connect_max_attempts,
            settings.connect_retry_delay_s,
        )
        if settings.auto_create_schema:
            logger.info("AUTO_CREATE_SCHEMA set, creating tables")
            await create_schema(engine)
    except StoreError:
        logger.critical("Database unavailable, aborting startup")
        await engine.dispose()
        raise

    store = BucketStore(engine, timeout_s=settings.store_timeout_s)
    cache = InstantCache.from_url(settings.redis_url, settings.cache_ttl_s)
    token_map = settings.token_map

    app.state.settings = settings
    app.state.store = store
    app.state.rollup_updater = RollupUpdater(
        store,
        max_attempts=settings.fold_max_attempts,
        retry_delay_s=settings.fold_retry_delay_ms / 1000.0,
    )
    app.state.query_engine = QueryEngine(store, settings.zone)
    app.state.cache = cache
    app.state.auth = BearerAuth(token_map)
    logger.info(
        "Loaded %d token(s) for %d location(s)",
        len(token_map),
        len(app.state.auth.locations),
    )

    logger.info(
        "powerstats API ready (serving time zone %s)", settings.serving_timezone
    )
    try:
        yield
    finally:
        logger.info("powerstats API shutting down")
        await cache.aclose()
        await engine.dispose()


app = FastAPI(
    title="powerstats API",
    description="Power telemetry rollups: instant views, buckets and series.",
    version=__version__,
    lifespan=lifespan,
)


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_methods=["GET"],
    allow_headers=["Authorization"],
)

app.include_router(health_router)
app.include_router(ingest_router)
app.include_router(instant_router)
app.include_router(history_router)
app.include_router(series_router)
app.include_router(dashboard_router)


@app.get("/")
async def root() -> dict:
    """Root health check endpoint.

    Returns:
        dict: JSON object with application status.
    """
    return {"status": "ok"}
