"""Profile Service.

The profile row's id is the caller's user id, so the row is its own owner.
"""

import logging
from typing import Any, Mapping, Optional

from physio_records.api.models.profiles import ProfileResponse, ProfileUpdateRequest
from physio_records.domain.ports import Result
from physio_records.domain.records import ProfileRecord
from physio_records.domain.services.mutation_coordinator import (
    DirectOwnership,
    MutationCoordinator,
    ResourceDefinition,
)
from physio_records.domain.services.validation import normalize_name
from physio_records.infrastructure.client_provider import ScopedClient

logger = logging.getLogger(__name__)

PROFILES_TABLE = "profiles"


def normalize_profile(values: Mapping[str, Any]) -> Result[dict]:
    first_name = normalize_name(values.get("first_name"), "first_name")
    if first_name.is_failure():
        return first_name.propagate()
    last_name = normalize_name(values.get("last_name"), "last_name")
    if last_name.is_failure():
        return last_name.propagate()
    return Result.success_result({"first_name": first_name.value, "last_name": last_name.value})


PROFILE_DEFINITION = ResourceDefinition(
    name="profile",
    table=PROFILES_TABLE,
    model=ProfileRecord,
    ownership=DirectOwnership("id"),
    mutable_fields=("first_name", "last_name"),
    normalize_update=normalize_profile,
)


class ProfileService:
    """Service for the caller's own therapist profile."""

    def __init__(self, scoped: ScopedClient):
        self.scoped = scoped
        self.coordinator = MutationCoordinator(scoped.store, PROFILE_DEFINITION)

    async def get(self) -> Result[ProfileResponse]:
        profile = await self.coordinator.read(self.scoped.owner_id, self.scoped.owner_id)
        if profile.is_failure():
            return profile.propagate()
        return Result.success_result(ProfileResponse.from_record(profile.value))

    async def update(self, request: ProfileUpdateRequest, if_match: Optional[str]) -> Result[ProfileResponse]:
        """Rename the caller, guarded by the If-Match tag."""
        updated = await self.coordinator.update(
            self.scoped.owner_id,
            self.scoped.owner_id,
            {"first_name": request.first_name, "last_name": request.last_name},
            if_match,
        )
        if updated.is_failure():
            return updated.propagate()
        logger.info(f"Updated profile {self.scoped.owner_id}")
        return Result.success_result(ProfileResponse.from_record(updated.value))
