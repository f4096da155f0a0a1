"""Shared fixtures for the records test suite."""

import pytest

from fakes import FIXED_NOW, OTHER_OWNER_ID, OWNER_ID, FakeDatabase


@pytest.fixture
def database():
    """Empty fake database whose clock starts at 2024-01-01T10:00:00Z."""
    return FakeDatabase()


@pytest.fixture
def store(database):
    """Store scoped to the primary owner."""
    return database.store_for(OWNER_ID)


@pytest.fixture
def other_store(database):
    """Store scoped to a second, unrelated owner."""
    return database.store_for(OTHER_OWNER_ID)


@pytest.fixture
def fixed_clock():
    """Application clock frozen at FIXED_NOW."""
    return lambda: FIXED_NOW
