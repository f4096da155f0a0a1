"""Dependency injection for the records API.

This module provides dependency injection functions for FastAPI. The client
provider is cached because it only holds immutable configuration; the scoped
client it produces is created per request and closed when the request ends.
"""

import logging
from functools import lru_cache
from typing import Annotated, AsyncIterator

from fastapi import Depends, Request

from physio_records.api.errors import ApiError, raise_for_result
from physio_records.api.services.patient_service import PatientService
from physio_records.api.services.profile_service import ProfileService
from physio_records.api.services.visit_service import VisitService
from physio_records.infrastructure.client_provider import (
    CredentialedClientProvider,
    RequestContext,
    ScopedClient,
)
from physio_records.infrastructure.config_manager import ConfigManager
from physio_records.infrastructure.settings import Settings, settings
from physio_records.infrastructure.token_verifier import SupabaseJwtVerifier

logger = logging.getLogger(__name__)

CONFIG_MISSING_CODE = "supabase_not_configured"


def get_settings() -> Settings:
    return settings


def get_config_manager() -> ConfigManager:
    """Get the application's configuration manager.

    Shares the instance held by ``settings`` so startup checks and request
    handling read the same configuration.
    """
    return settings.config_manager


@lru_cache()
def get_client_provider() -> CredentialedClientProvider:
    """Get the credentialed client provider (cached).

    Raises:
        ValueError: If Supabase configuration is missing or invalid
    """
    config = get_config_manager().get_supabase_config()
    logger.debug(f"Creating client provider for {config.url}")
    return CredentialedClientProvider(config, SupabaseJwtVerifier(config))


SettingsDep = Annotated[Settings, Depends(get_settings)]
ConfigManagerDep = Annotated[ConfigManager, Depends(get_config_manager)]


async def get_scoped_client(request: Request) -> AsyncIterator[ScopedClient]:
    """Authenticate the request and yield its credential-bound client.

    The client is closed when the request finishes, whether or not the
    handler succeeded.

    Raises:
        ApiError: 502 when Supabase is not configured, or the mapped
            status when authentication fails
    """
    try:
        provider = get_client_provider()
    except ValueError as e:
        logger.error(f"Supabase configuration invalid: {e}")
        raise ApiError(502, CONFIG_MISSING_CODE)

    context = RequestContext(
        headers=request.headers,
        correlation_id=getattr(request.state, "correlation_id", None),
    )
    scoped = raise_for_result(await provider.acquire(context))
    try:
        yield scoped
    finally:
        await scoped.close()


ScopedClientDep = Annotated[ScopedClient, Depends(get_scoped_client)]


def get_patient_service(scoped: ScopedClientDep, app_settings: SettingsDep) -> PatientService:
    return PatientService(scoped, app_settings)


def get_visit_service(scoped: ScopedClientDep, app_settings: SettingsDep) -> VisitService:
    return VisitService(scoped, app_settings)


def get_profile_service(scoped: ScopedClientDep) -> ProfileService:
    return ProfileService(scoped)


PatientServiceDep = Annotated[PatientService, Depends(get_patient_service)]
VisitServiceDep = Annotated[VisitService, Depends(get_visit_service)]
ProfileServiceDep = Annotated[ProfileService, Depends(get_profile_service)]
