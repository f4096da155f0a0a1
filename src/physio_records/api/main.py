"""Main FastAPI application for the physiotherapy records API.

This module sets up the FastAPI application with all routes, middleware,
and configuration.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from physio_records.api.errors import ApiError, api_error_handler
from physio_records.api.logging_config import setup_logging
from physio_records.api.middleware import CORRELATION_HEADER, setup_middleware
from physio_records.api.routes import health, patients, profile, visits
from physio_records.infrastructure.settings import APP_VERSION, settings

# Configure structured logging
setup_logging(use_json=settings.json_logs, log_level=settings.log_level)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    # Startup
    logger.info("Physio Records API starting up...")
    logger.info("API documentation available at /api/docs")
    logger.info(f"Logging level: {settings.log_level}")
    logger.info(f"JSON logs: {settings.json_logs}")
    if not settings.config_manager.is_configured():
        logger.warning("Supabase is not configured; authenticated routes will fail")
    yield
    # Shutdown
    logger.info("Physio Records API shutting down...")


# Create FastAPI application
app = FastAPI(
    title="Physio Records API",
    description="Patient and visit records for physiotherapists, backed by Supabase",
    version=APP_VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan
)

app.add_exception_handler(ApiError, api_error_handler)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["ETag", CORRELATION_HEADER, "X-Process-Time"],
)

# Setup custom middleware
setup_middleware(app)

# Include routers
app.include_router(health.router)
app.include_router(patients.router)
app.include_router(visits.router)
app.include_router(profile.router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Physio Records API",
        "version": APP_VERSION,
        "docs": "/api/docs",
        "health": "/api/health"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "physio_records.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
