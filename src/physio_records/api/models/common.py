"""Shared pydantic models for API responses."""

from datetime import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class ApiModel(BaseModel):
    """Base model serializing field names as camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PageResponse(ApiModel, Generic[T]):
    """Paginated listing response."""

    items: list[T] = Field(..., description="Items on this page")
    page: int = Field(..., description="1-based page number")
    page_size: int = Field(..., description="Requested page size")
    total_items: int = Field(..., description="Items in the full filtered set")
    total_pages: int = Field(..., description="Pages in the full filtered set")


class HealthResponse(ApiModel):
    """Service health status."""

    status: str = Field(..., description="healthy or degraded")
    timestamp: datetime = Field(..., description="Time of the check")
    version: str = Field(..., description="API version")
    supabase_configured: bool = Field(..., description="Whether Supabase settings are present and valid")
