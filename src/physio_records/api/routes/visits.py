"""Visit API endpoints.

Visits are created and listed under their patient and addressed directly
by id afterwards.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Header, Query, Response, status

from physio_records.api.dependencies import VisitServiceDep
from physio_records.api.errors import raise_for_result
from physio_records.api.models.common import PageResponse
from physio_records.api.models.visits import RecommendationsRequest, VisitResponse, VisitWriteRequest
from physio_records.domain.services.concurrency_token import header_value

router = APIRouter(prefix="/api", tags=["visits"])


@router.post(
    "/patients/{patient_id}/visits",
    response_model=VisitResponse,
    status_code=status.HTTP_201_CREATED
)
async def create_visit(
    patient_id: str,
    body: VisitWriteRequest,
    response: Response,
    service: VisitServiceDep
):
    """Record a visit for one of the caller's patients."""
    visit = raise_for_result(await service.create(patient_id, body))
    response.headers["ETag"] = visit.e_tag
    response.headers["Location"] = f"/api/visits/{visit.id}"
    return visit


@router.get("/patients/{patient_id}/visits", response_model=PageResponse[VisitResponse])
async def list_visits(
    patient_id: str,
    service: VisitServiceDep,
    page: int = Query(1, description="1-based page number"),
    page_size: Optional[int] = Query(None, alias="pageSize", description="Items per page (1..100)"),
    date_from: Optional[datetime] = Query(None, alias="from", description="Visits on or after (ISO 8601)"),
    date_to: Optional[datetime] = Query(None, alias="to", description="Visits on or before (ISO 8601)"),
    include_recommendations: bool = Query(True, alias="includeRecommendations"),
    order: Optional[str] = Query(None, description="asc or desc (default desc)")
):
    """List a patient's visits by visit date."""
    return raise_for_result(await service.list(
        patient_id,
        page=page,
        page_size=page_size,
        date_from=date_from,
        date_to=date_to,
        include_recommendations=include_recommendations,
        order=order,
    ))


@router.get("/visits/{visit_id}", response_model=VisitResponse)
async def get_visit(visit_id: str, response: Response, service: VisitServiceDep):
    """Get a visit with its AI generation metrics."""
    visit = raise_for_result(await service.get(visit_id))
    response.headers["ETag"] = visit.e_tag
    return visit


@router.patch("/visits/{visit_id}", response_model=VisitResponse)
async def update_visit(
    visit_id: str,
    body: VisitWriteRequest,
    response: Response,
    service: VisitServiceDep,
    if_match: Optional[str] = Header(None, alias="If-Match")
):
    """Patch a visit's date or content fields.

    Requires the If-Match header carrying the visit's current ETag.
    """
    visit = raise_for_result(await service.update(visit_id, body, header_value(if_match)))
    response.headers["ETag"] = visit.e_tag
    return visit


@router.delete("/visits/{visit_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_visit(visit_id: str, service: VisitServiceDep):
    """Delete a visit."""
    raise_for_result(await service.delete(visit_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/visits/{visit_id}/recommendations", response_model=VisitResponse)
async def save_recommendations(
    visit_id: str,
    body: RecommendationsRequest,
    response: Response,
    service: VisitServiceDep,
    if_match: Optional[str] = Header(None, alias="If-Match")
):
    """Save a visit's recommendations and their AI provenance."""
    visit = raise_for_result(await service.save_recommendations(visit_id, body, header_value(if_match)))
    response.headers["ETag"] = visit.e_tag
    return visit
