"""Pydantic models for the profile endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import Field

from physio_records.api.models.common import ApiModel
from physio_records.domain.records import ProfileRecord


class ProfileUpdateRequest(ApiModel):
    """Body for updating the caller's profile."""

    first_name: Optional[str] = None
    last_name: Optional[str] = None


class ProfileResponse(ApiModel):
    """The caller's therapist profile."""

    id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    preferred_ai_model: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    e_tag: str = Field(..., description="Concurrency tag for If-Match")

    @classmethod
    def from_record(cls, record: ProfileRecord) -> 'ProfileResponse':
        return cls(
            id=record.id,
            first_name=record.first_name,
            last_name=record.last_name,
            preferred_ai_model=record.preferred_ai_model,
            created_at=record.created_at,
            updated_at=record.updated_at,
            e_tag=record.etag,
        )
