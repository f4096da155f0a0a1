"""Fixtures for API endpoint tests."""

import pytest
from fastapi.testclient import TestClient

from fakes import OWNER_ID
from physio_records.api.dependencies import get_scoped_client
from physio_records.api.main import app
from physio_records.domain.ports import Principal
from physio_records.infrastructure.client_provider import ScopedClient


def scoped_client_for(database, owner_id):
    return ScopedClient(
        principal=Principal(user_id=owner_id, access_token="test-token"),
        store=database.store_for(owner_id),
    )


@pytest.fixture
def act_as(database):
    """Switch the authenticated principal for subsequent requests."""
    def switch(owner_id):
        scoped = scoped_client_for(database, owner_id)
        app.dependency_overrides[get_scoped_client] = lambda: scoped
        return scoped
    return switch


@pytest.fixture
def client(act_as):
    """Test client authenticated as the primary owner."""
    app.dependency_overrides = {}
    act_as(OWNER_ID)

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def anna(client):
    """A created patient."""
    response = client.post(
        "/api/patients",
        json={"firstName": "Anna", "lastName": "Nowak", "dateOfBirth": "1990-05-12"},
    )
    assert response.status_code == 201
    return response.json()
