"""Tests for profile API endpoints."""

import pytest

from fakes import OTHER_OWNER_ID, OWNER_ID


@pytest.fixture
def profile(database):
    return database.seed("profiles", id=OWNER_ID, first_name="Maria", last_name="Lis")


class TestProfile:
    """Tests for GET and PATCH /api/profile."""

    def test_get(self, client, profile):
        """Test reading the caller's profile."""
        response = client.get("/api/profile")

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == OWNER_ID
        assert data["firstName"] == "Maria"
        assert response.headers["ETag"] == data["eTag"]

    def test_missing_profile(self, client, profile, act_as):
        """Test that a caller without a profile row gets 404."""
        act_as(OTHER_OWNER_ID)

        response = client.get("/api/profile")

        assert response.status_code == 404
        assert response.json() == {"message": "profile_missing"}

    def test_update(self, client, profile):
        """Test renaming the caller."""
        etag = client.get("/api/profile").json()["eTag"]

        response = client.patch(
            "/api/profile",
            json={"firstName": "Maria", "lastName": "Lis-Nowak"},
            headers={"If-Match": etag},
        )

        assert response.status_code == 200
        assert response.json()["lastName"] == "Lis-Nowak"
        assert response.json()["eTag"] != etag

    def test_update_requires_names(self, client, profile):
        """Test that both names are validated."""
        etag = client.get("/api/profile").json()["eTag"]

        response = client.patch("/api/profile", json={"firstName": "Maria"}, headers={"If-Match": etag})

        assert response.status_code == 400
        assert response.json() == {"message": "last_name_required"}

    def test_update_without_changes(self, client, profile):
        """Test that an unchanged profile is rejected."""
        etag = client.get("/api/profile").json()["eTag"]

        response = client.patch(
            "/api/profile",
            json={"firstName": "Maria", "lastName": "Lis"},
            headers={"If-Match": etag},
        )

        assert response.status_code == 400
        assert response.json() == {"message": "no_changes_submitted"}
