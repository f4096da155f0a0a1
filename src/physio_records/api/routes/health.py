"""Health check endpoint for the records API."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from physio_records.api.dependencies import ConfigManagerDep
from physio_records.api.models.common import HealthResponse
from physio_records.infrastructure.settings import APP_VERSION

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(config_manager: ConfigManagerDep) -> HealthResponse:
    """Health check endpoint.

    Does not require authentication and never contacts Supabase; it only
    reports whether the connection settings are present and valid.

    Security Impact:
        - No credential values are included in the response
    """
    configured = config_manager.is_configured()
    if not configured:
        logger.warning("Health check: Supabase configuration is missing or invalid")

    return HealthResponse(
        status="healthy" if configured else "degraded",
        timestamp=datetime.now(timezone.utc),
        version=APP_VERSION,
        supabase_configured=configured,
    )
