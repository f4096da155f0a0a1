"""Pydantic request and response models for the records API."""

from physio_records.api.models.common import ApiModel, HealthResponse, PageResponse
from physio_records.api.models.patients import (
    PatientDetailResponse,
    PatientListItem,
    PatientResponse,
    PatientWriteRequest,
)
from physio_records.api.models.profiles import ProfileResponse, ProfileUpdateRequest
from physio_records.api.models.visits import RecommendationsRequest, VisitResponse, VisitWriteRequest

__all__ = [
    "ApiModel",
    "HealthResponse",
    "PageResponse",
    "PatientDetailResponse",
    "PatientListItem",
    "PatientResponse",
    "PatientWriteRequest",
    "ProfileResponse",
    "ProfileUpdateRequest",
    "RecommendationsRequest",
    "VisitResponse",
    "VisitWriteRequest",
]
