"""
FastAPI application for the feed engine admin API.

Production deployment configuration via environment variables.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.catalog import CatalogRepository, get_catalog_repository
from core.ingestion import FeedRefreshScheduler, IngestionEngine
from feeds.base import BaseFeedFetcher
from utils.config import Config
from web.feed_routes import router as feed_router


logger = logging.getLogger(__name__)

# =============================================================================
# Environment Configuration
# =============================================================================

# Production mode detection
IS_PRODUCTION = os.getenv("PRODUCTION", "").lower() == "true"

# CORS configuration - locked down for production
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "").split(",") if os.getenv("ALLOWED_ORIGINS") else []
if not ALLOWED_ORIGINS and not IS_PRODUCTION:
    # Development fallback only
    ALLOWED_ORIGINS = ["http://localhost:8000", "http://127.0.0.1:8000"]


def create_app(
    catalog: Optional[CatalogRepository] = None,
    fetcher: Optional[BaseFeedFetcher] = None,
    config: Optional[Config] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        catalog: Catalog to serve (defaults to the persisted singleton)
        fetcher: Feed fetcher (defaults to HTTP)
        config: Configuration (defaults to environment)
    """
    config = config or Config.load()
    catalog = catalog or get_catalog_repository(config.catalog_path)
    engine = IngestionEngine(catalog, fetcher, config)
    scheduler = FeedRefreshScheduler(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run the refresh scheduler for the lifetime of the server."""
        if config.scheduler_enabled:
            scheduler.start()
        logger.info("Feed engine started (scheduler %s)", "on" if scheduler.running else "off")
        try:
            yield
        finally:
            scheduler.shutdown()
            engine.fetcher.close()

    app = FastAPI(
        title="Listing Feed Engine",
        description="Feed ingestion and catalog reconciliation admin API",
        version="0.1.0",
        # Production settings: disable docs for private deployment
        docs_url=None if IS_PRODUCTION else "/docs",
        redoc_url=None if IS_PRODUCTION else "/redoc",
        openapi_url=None if IS_PRODUCTION else "/openapi.json",
        debug=config.debug and not IS_PRODUCTION,
        lifespan=lifespan,
    )
    app.state.engine = engine
    app.state.scheduler = scheduler

    @app.get("/", include_in_schema=False)
    def root():
        """Root healthcheck. No dependencies, no IO."""
        return {"status": "ok"}

    @app.get("/health", include_in_schema=False)
    def health():
        """Health with scheduler state."""
        return {
            "status": "healthy",
            "scheduler": "running" if scheduler.running else "stopped",
            "refreshing": sorted(scheduler.in_flight),
        }

    # CORS middleware - locked down for production
    if ALLOWED_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=ALLOWED_ORIGINS,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "DELETE"],
            allow_headers=["*"],
        )

    app.include_router(feed_router)

    return app
