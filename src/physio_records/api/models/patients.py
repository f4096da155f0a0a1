"""Pydantic models for patient endpoints."""

from datetime import date, datetime
from typing import Optional

from pydantic import Field

from physio_records.api.models.common import ApiModel
from physio_records.api.models.visits import VisitResponse
from physio_records.domain.records import PatientRecord
from physio_records.domain.services.aggregation import ChildAggregate


class PatientWriteRequest(ApiModel):
    """Body for creating or replacing a patient.

    Fields are optional here so that missing names are reported with the
    same ``first_name_required`` codes as blank ones.
    """

    first_name: Optional[str] = Field(None, description="Given name")
    last_name: Optional[str] = Field(None, description="Family name")
    date_of_birth: Optional[date] = Field(None, description="Date of birth (not in the future)")

    def to_values(self) -> dict:
        return {
            "first_name": self.first_name,
            "last_name": self.last_name,
            "date_of_birth": self.date_of_birth,
        }


class PatientResponse(ApiModel):
    """A single patient."""

    id: str
    first_name: str
    last_name: str
    date_of_birth: Optional[date] = None
    created_at: datetime
    updated_at: datetime
    e_tag: str = Field(..., description="Concurrency tag for If-Match")

    @classmethod
    def from_record(cls, record: PatientRecord) -> 'PatientResponse':
        return cls(
            id=record.id,
            first_name=record.first_name,
            last_name=record.last_name,
            date_of_birth=record.date_of_birth,
            created_at=record.created_at,
            updated_at=record.updated_at,
            e_tag=record.etag,
        )


class PatientListItem(PatientResponse):
    """Patient row in a listing, with visit metrics."""

    latest_visit_date: Optional[datetime] = None
    visit_count: int = 0

    @classmethod
    def from_record(cls, record: PatientRecord, aggregate: Optional[ChildAggregate] = None) -> 'PatientListItem':
        base = PatientResponse.from_record(record)
        return cls(
            **base.model_dump(),
            latest_visit_date=aggregate.latest_child_timestamp if aggregate else None,
            visit_count=aggregate.child_count if aggregate else 0,
        )


class PatientDetailResponse(PatientListItem):
    """Patient with visit metrics and, optionally, the most recent visits."""

    visits: Optional[list[VisitResponse]] = None
