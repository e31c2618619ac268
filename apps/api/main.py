"""SCALE SMS Ingestion API: FastAPI entry point.

Routes are served from domain modules under apps/api/domains/. Per-user
ingestion sessions are stopped on shutdown so admitted messages finish.
"""

import os
import structlog
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from apps.api.core.config import settings
from apps.api.core.errors import register_error_handlers
from apps.api.core.logging import setup_logging
from apps.api.domains.ingestion.router import router as ingestion_router
from apps.api.domains.ingestion.service import shutdown_ingestion_service
from apps.api.routers import health
from packages.sms_ingestion import __version__

logger = structlog.get_logger()

DEFAULT_ORIGINS = ["http://localhost:3000"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging on startup; stop ingestion sessions on shutdown."""
    setup_logging(
        log_level=settings.log_level if settings else "INFO",
        json_output=(os.getenv("ENVIRONMENT", "development") == "production"),
    )
    logger.info("app_starting", version=__version__)
    yield
    await shutdown_ingestion_service()
    logger.info("app_stopping")


app = FastAPI(
    title="SCALE SMS Ingestion API",
    description="Turns mobile-money and bank notifications into transactions.",
    version=__version__,
    lifespan=lifespan,
)

register_error_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins if settings else DEFAULT_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(ingestion_router, prefix="/api/v1")
app.include_router(health.router, prefix="/api/v1")
