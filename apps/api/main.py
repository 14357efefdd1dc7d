"""Ledger API: FastAPI entry point.

Startup builds the ledger engine, session factory and category classifier
once and keeps them on ``app.state``; request handlers reach them through
dependencies rather than module globals.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from apps.api.core.config import Settings, settings
from apps.api.core.database import create_db_engine, create_session_factory, init_db
from apps.api.core.errors import register_error_handlers
from apps.api.core.logging import setup_logging
from apps.api.domains.ingestion.router import router as ingestion_router
from apps.api.domains.ingestion.service import IngestionService
from apps.api.routers import health
from packages.ingestion_engine.classifier import get_category_classifier

logger = structlog.get_logger()

DEFAULT_DATABASE_URL = "sqlite:///./ledger.db"
DEFAULT_VERSION = "0.4.0"


def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    """Build the API. ``app_settings`` defaults to the environment settings;
    missing settings fall back to local-development defaults."""
    cfg = app_settings or settings
    version = getattr(cfg, "APP_VERSION", DEFAULT_VERSION)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan: startup/shutdown hooks."""
        setup_logging(
            log_level=getattr(cfg, "LOG_LEVEL", "INFO"),
            json_output=bool(cfg and cfg.is_production),
        )
        logger.info("app_starting", version=version)

        engine = create_db_engine(getattr(cfg, "DATABASE_URL", DEFAULT_DATABASE_URL))
        init_db(engine)
        classifier = get_category_classifier(getattr(cfg, "CATEGORY_RULES_PATH", "") or None)
        app.state.engine = engine
        app.state.ingestion_service = IngestionService(
            session_factory=create_session_factory(engine),
            classifier=classifier,
            lookup_chunk_size=getattr(cfg, "DUPLICATE_LOOKUP_CHUNK_SIZE", 500),
            csv_chunk_rows=getattr(cfg, "CSV_CHUNK_ROWS", 1000),
            max_upload_bytes=getattr(cfg, "MAX_UPLOAD_BYTES", 5 * 1024 * 1024),
        )
        yield
        logger.info("app_stopping")
        engine.dispose()

    app = FastAPI(
        title="Ledger API",
        description="Statement ingestion, duplicate protection and budget impact.",
        version=version,
        lifespan=lifespan,
    )

    register_error_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.allowed_origins if cfg else ["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(ingestion_router, prefix="/api/v1")
    app.include_router(health.router, prefix="/api/v1")
    return app


app = create_app()
