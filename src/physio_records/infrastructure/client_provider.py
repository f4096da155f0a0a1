"""Credentialed, request-scoped Supabase client provider.

Every inbound request gets its own supabase AsyncClient bound to that
request's verified bearer token. The client is never cached, never shared
and is closed when the request ends, so row-level security always evaluates
store calls as the calling principal.

Security Impact:
    - The bearer credential is read from the request headers exactly once
    - No service-role key exists in this process; there is nothing to fall
      back to, and a propagation failure is reported as UPSTREAM_UNAVAILABLE
      instead of widening access
    - The provider holds only immutable configuration
"""

import logging
from dataclasses import dataclass
from typing import Mapping, Optional

from supabase import AsyncClientOptions, acreate_client

from physio_records.adapters.storage.supabase_adapter import SupabaseRecordStore
from physio_records.domain.ports import (
    ErrorKind,
    Principal,
    RecordStorePort,
    Result,
    TokenVerifierPort,
)
from physio_records.infrastructure.config_manager import SupabaseConfig

logger = logging.getLogger(__name__)

BEARER_PREFIX = "bearer "
MISSING_TOKEN_CODE = "missing_token"
CLIENT_UNAVAILABLE_CODE = "supabase_client_unavailable"


@dataclass(frozen=True)
class RequestContext:
    """The parts of an inbound request the provider needs."""

    headers: Mapping[str, str]
    correlation_id: Optional[str] = None


@dataclass
class ScopedClient:
    """A store bound to one principal for the lifetime of one request."""

    principal: Principal
    store: RecordStorePort

    @property
    def owner_id(self) -> str:
        return self.principal.user_id

    async def close(self) -> None:
        await self.store.close()


def extract_bearer_token(headers: Mapping[str, str]) -> Optional[str]:
    """Return the bearer token from an Authorization header, if any."""
    authorization = headers.get("authorization") or headers.get("Authorization")
    if not authorization:
        return None
    if not authorization.lower().startswith(BEARER_PREFIX):
        return None
    token = authorization[len(BEARER_PREFIX):].strip()
    return token or None


class CredentialedClientProvider:
    """Builds one credential-bound store per request.

    Parameters:
        config: Supabase project configuration
        verifier: Bearer token verifier
    """

    def __init__(self, config: SupabaseConfig, verifier: TokenVerifierPort):
        self._config = config
        self._verifier = verifier

    async def acquire(self, context: RequestContext) -> Result[ScopedClient]:
        """Authenticate the request and build its scoped client.

        Parameters:
            context: Request headers and correlation id

        Returns:
            Result containing the ScopedClient; UNAUTHENTICATED when no
            verifiable bearer token is present; UPSTREAM_UNAVAILABLE when the
            token cannot be attached to a new client
        """
        token = extract_bearer_token(context.headers)
        if token is None:
            return Result.failure_result(MISSING_TOKEN_CODE, ErrorKind.UNAUTHENTICATED)

        verified = self._verifier.verify(token)
        if verified.is_failure():
            return verified.propagate()
        principal = verified.value

        bound = await self._bind_client(principal, context.correlation_id)
        if bound.is_failure():
            return bound.propagate()

        return Result.success_result(ScopedClient(
            principal=principal,
            store=SupabaseRecordStore(bound.value, page_size=self._config.store_page_size),
        ))

    async def _bind_client(self, principal: Principal, correlation_id: Optional[str]):
        access_token = principal.access_token.get_secret_value()
        headers = {"Authorization": f"Bearer {access_token}"}
        if correlation_id:
            headers["X-Correlation-Id"] = correlation_id

        try:
            client = await acreate_client(
                self._config.url,
                self._config.anon_key.get_secret_value(),
                options=AsyncClientOptions(
                    headers=headers,
                    auto_refresh_token=False,
                    persist_session=False,
                    postgrest_client_timeout=self._config.request_timeout,
                ),
            )
            client.postgrest.auth(access_token)
            attached = client.postgrest.session.headers.get("Authorization")
        except Exception as e:
            logger.error(
                f"Failed to build scoped Supabase client for {principal.user_id}: {type(e).__name__}",
                exc_info=True
            )
            return Result.failure_result(CLIENT_UNAVAILABLE_CODE, ErrorKind.UPSTREAM_UNAVAILABLE)

        if attached != f"Bearer {access_token}":
            logger.error(f"Credential was not attached to the store client for {principal.user_id}")
            await client.postgrest.aclose()
            return Result.failure_result(CLIENT_UNAVAILABLE_CODE, ErrorKind.UPSTREAM_UNAVAILABLE)

        return Result.success_result(client)
