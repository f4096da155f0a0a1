"""Pydantic models for visit endpoints."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import Field

from physio_records.api.models.common import ApiModel
from physio_records.domain.records import VisitRecord
from physio_records.domain.services.aggregation import ChildAggregate


class VisitWriteRequest(ApiModel):
    """Body for creating a visit or patching one.

    On PATCH, omitted (null) fields keep their current value and blank
    strings clear the field.
    """

    visit_date: Optional[datetime] = Field(None, description="Visit date; defaults to now on create")
    interview: Optional[str] = None
    description: Optional[str] = None
    recommendations: Optional[str] = None

    def to_values(self) -> dict:
        return self.model_dump(exclude_none=True, by_alias=False)


class RecommendationsRequest(ApiModel):
    """Body for saving visit recommendations."""

    recommendations: Optional[str] = Field(None, description="Recommendation text")
    ai_generated: bool = Field(False, description="Whether the text came from an AI generation")
    source_generation_id: Optional[UUID] = Field(None, description="AI generation the text came from")


class VisitResponse(ApiModel):
    """A single visit."""

    id: str
    patient_id: str
    visit_date: datetime
    interview: Optional[str] = None
    description: Optional[str] = None
    recommendations: Optional[str] = None
    recommendations_generated_by_ai: bool = False
    recommendations_generated_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    e_tag: str = Field(..., description="Concurrency tag for If-Match")
    ai_generation_count: int = 0
    latest_ai_generation_id: Optional[str] = None

    @classmethod
    def from_record(
        cls,
        record: VisitRecord,
        aggregate: Optional[ChildAggregate] = None,
        include_recommendations: bool = True
    ) -> 'VisitResponse':
        return cls(
            id=record.id,
            patient_id=record.patient_id,
            visit_date=record.visit_date,
            interview=record.interview,
            description=record.description,
            recommendations=record.recommendations if include_recommendations else None,
            recommendations_generated_by_ai=record.recommendations_generated_by_ai,
            recommendations_generated_at=record.recommendations_generated_at,
            created_at=record.created_at,
            updated_at=record.updated_at,
            e_tag=record.etag,
            ai_generation_count=aggregate.child_count if aggregate else 0,
            latest_ai_generation_id=aggregate.latest_child_id if aggregate else None,
        )
