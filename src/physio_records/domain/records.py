"""Row models for the records stored in Supabase.

These pydantic models describe rows exactly as PostgREST returns them
(snake_case columns). They carry no business rules; validation of caller
input lives in ``domain.services.validation`` so that failures surface as
``Result`` values instead of raised exceptions.
"""

import logging
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from physio_records.domain.ports import ErrorKind, Result
from physio_records.domain.services.concurrency_token import ConcurrencyToken, parse_timestamp

logger = logging.getLogger(__name__)


class OwnedRecord(BaseModel):
    """Fields shared by every record exposed through the mutation layer."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str = Field(..., description="Record identifier (UUID)")
    created_at: datetime = Field(..., description="Creation timestamp set by the store")
    updated_at: datetime = Field(..., description="Last-modified timestamp set by the store")

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def parse_store_timestamp(cls, v):
        """Parse store timestamps with full microsecond precision."""
        if isinstance(v, str):
            parsed = parse_timestamp(v)
            if parsed is None:
                raise ValueError(f"Invalid timestamp: {v}")
            return parsed
        return v

    @property
    def etag(self) -> str:
        """Concurrency tag for this version of the record."""
        return ConcurrencyToken.format(self.updated_at)


class ProfileRecord(OwnedRecord):
    """Therapist profile; the row id is the owner's user id."""

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    preferred_ai_model: Optional[str] = None


class PatientRecord(OwnedRecord):
    """Patient owned directly by a therapist."""

    therapist_id: str
    first_name: str
    last_name: str
    date_of_birth: Optional[date] = None


class VisitRecord(OwnedRecord):
    """Visit owned through its parent patient."""

    patient_id: str
    visit_date: datetime
    interview: Optional[str] = None
    description: Optional[str] = None
    recommendations: Optional[str] = None
    recommendations_generated_by_ai: bool = False
    recommendations_generated_at: Optional[datetime] = None

    @field_validator("visit_date", "recommendations_generated_at", mode="before")
    @classmethod
    def parse_visit_timestamps(cls, v):
        if isinstance(v, str):
            parsed = parse_timestamp(v)
            if parsed is None:
                raise ValueError(f"Invalid timestamp: {v}")
            return parsed
        return v


class VisitAiGenerationRecord(BaseModel):
    """AI generation log entry; read-only from this service."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    visit_id: str
    therapist_id: str
    model_used: Optional[str] = None
    created_at: datetime


def parse_rows(model: type, rows: list) -> Result[list]:
    """Parse store rows into records, failing as a malformed upstream response."""
    try:
        return Result.success_result([model.model_validate(row) for row in rows])
    except ValidationError:
        logger.error(f"Malformed {model.__name__} row in store response")
        return Result.failure_result(
            "malformed_response",
            ErrorKind.UPSTREAM_UNAVAILABLE,
            {"model": model.__name__}
        )
