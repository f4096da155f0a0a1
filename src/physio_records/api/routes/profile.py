"""Profile API endpoints."""

from typing import Optional

from fastapi import APIRouter, Header, Response

from physio_records.api.dependencies import ProfileServiceDep
from physio_records.api.errors import raise_for_result
from physio_records.api.models.profiles import ProfileResponse, ProfileUpdateRequest
from physio_records.domain.services.concurrency_token import header_value

router = APIRouter(prefix="/api", tags=["profile"])


@router.get("/profile", response_model=ProfileResponse)
async def get_profile(response: Response, service: ProfileServiceDep):
    """Get the authenticated therapist's profile."""
    profile = raise_for_result(await service.get())
    response.headers["ETag"] = profile.e_tag
    return profile


@router.patch("/profile", response_model=ProfileResponse)
async def update_profile(
    body: ProfileUpdateRequest,
    response: Response,
    service: ProfileServiceDep,
    if_match: Optional[str] = Header(None, alias="If-Match")
):
    """Update the therapist's first and last name."""
    profile = raise_for_result(await service.update(body, header_value(if_match)))
    response.headers["ETag"] = profile.e_tag
    return profile
