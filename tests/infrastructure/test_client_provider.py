"""Unit tests for CredentialedClientProvider."""

from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest

from physio_records.adapters.storage.supabase_adapter import SupabaseRecordStore
from physio_records.domain.ports import ErrorKind, Principal, Result
from physio_records.infrastructure.client_provider import (
    CredentialedClientProvider,
    RequestContext,
    extract_bearer_token,
)
from physio_records.infrastructure.config_manager import SupabaseConfig

TOKEN = "header.payload.signature"
USER_ID = "11111111-1111-4111-8111-111111111111"
ACREATE = "physio_records.infrastructure.client_provider.acreate_client"


@pytest.fixture
def config():
    return SupabaseConfig(
        url="https://example.supabase.co/",
        anon_key="anon-key",
        jwt_secret="jwt-secret",
        store_page_size=500,
    )


@pytest.fixture
def verifier():
    verifier = Mock()
    verifier.verify.return_value = Result.success_result(
        Principal(user_id=USER_ID, access_token=TOKEN)
    )
    return verifier


@pytest.fixture
def provider(config, verifier):
    return CredentialedClientProvider(config, verifier)


def make_client(attached_token=TOKEN):
    client = MagicMock()
    client.postgrest.session.headers = {"Authorization": f"Bearer {attached_token}"}
    client.postgrest.aclose = AsyncMock()
    return client


class TestExtractBearerToken:
    """Test Authorization header parsing."""

    def test_bearer(self):
        """Test the standard header form."""
        assert extract_bearer_token({"authorization": f"Bearer {TOKEN}"}) == TOKEN

    def test_scheme_is_case_insensitive(self):
        """Test lower-case scheme names."""
        assert extract_bearer_token({"Authorization": f"bearer  {TOKEN} "}) == TOKEN

    @pytest.mark.parametrize("value", [None, "", "Basic abc", "Bearer ", "Bearer"])
    def test_missing_or_other_scheme(self, value):
        """Test that anything but a bearer token yields None."""
        headers = {} if value is None else {"authorization": value}
        assert extract_bearer_token(headers) is None


class TestAcquire:
    """Test per-request client construction."""

    @pytest.mark.asyncio
    async def test_binds_token_to_new_client(self, provider, verifier):
        """Test that the scoped store carries the caller's token."""
        client = make_client()
        with patch(ACREATE, AsyncMock(return_value=client)) as acreate:
            result = await provider.acquire(RequestContext(
                headers={"authorization": f"Bearer {TOKEN}"},
                correlation_id="corr-1",
            ))

        assert result.is_success()
        scoped = result.value
        assert scoped.owner_id == USER_ID
        assert isinstance(scoped.store, SupabaseRecordStore)
        assert scoped.store.client is client
        assert scoped.store.page_size == 500
        verifier.verify.assert_called_once_with(TOKEN)
        client.postgrest.auth.assert_called_once_with(TOKEN)

        args, kwargs = acreate.call_args
        assert args == ("https://example.supabase.co", "anon-key")
        options = kwargs["options"]
        assert options.headers["Authorization"] == f"Bearer {TOKEN}"
        assert options.headers["X-Correlation-Id"] == "corr-1"

    @pytest.mark.asyncio
    async def test_each_request_gets_its_own_client(self, provider):
        """Test that clients are never reused between requests."""
        with patch(ACREATE, AsyncMock(side_effect=[make_client(), make_client()])) as acreate:
            first = await provider.acquire(RequestContext(headers={"authorization": f"Bearer {TOKEN}"}))
            second = await provider.acquire(RequestContext(headers={"authorization": f"Bearer {TOKEN}"}))

        assert acreate.await_count == 2
        assert first.value.store.client is not second.value.store.client

    @pytest.mark.asyncio
    async def test_missing_token(self, provider, verifier):
        """Test that requests without a token never reach Supabase."""
        with patch(ACREATE, AsyncMock()) as acreate:
            result = await provider.acquire(RequestContext(headers={}))

        assert result.kind is ErrorKind.UNAUTHENTICATED
        assert result.error == "missing_token"
        verifier.verify.assert_not_called()
        acreate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_token(self, provider, verifier):
        """Test that verification failures are propagated."""
        verifier.verify.return_value = Result.failure_result("invalid_token", ErrorKind.UNAUTHENTICATED)
        with patch(ACREATE, AsyncMock()) as acreate:
            result = await provider.acquire(RequestContext(headers={"authorization": f"Bearer {TOKEN}"}))

        assert result.kind is ErrorKind.UNAUTHENTICATED
        assert result.error == "invalid_token"
        acreate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_client_construction_failure(self, provider):
        """Test that a failing client factory is an upstream failure."""
        with patch(ACREATE, AsyncMock(side_effect=RuntimeError("network down"))):
            result = await provider.acquire(RequestContext(headers={"authorization": f"Bearer {TOKEN}"}))

        assert result.kind is ErrorKind.UPSTREAM_UNAVAILABLE
        assert result.error == "supabase_client_unavailable"

    @pytest.mark.asyncio
    async def test_credential_not_attached(self, provider):
        """Test that a client without the caller's token is discarded."""
        client = make_client(attached_token="someone-else")
        with patch(ACREATE, AsyncMock(return_value=client)):
            result = await provider.acquire(RequestContext(headers={"authorization": f"Bearer {TOKEN}"}))

        assert result.kind is ErrorKind.UPSTREAM_UNAVAILABLE
        client.postgrest.aclose.assert_awaited_once()
