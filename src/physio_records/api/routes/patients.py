"""Patient API endpoints.

This module provides endpoints for creating, listing, reading, replacing
and deleting the caller's patients.
"""

from typing import Optional

from fastapi import APIRouter, Header, Query, Response, status

from physio_records.api.dependencies import PatientServiceDep
from physio_records.api.errors import raise_for_result
from physio_records.api.models.common import PageResponse
from physio_records.api.models.patients import (
    PatientDetailResponse,
    PatientListItem,
    PatientResponse,
    PatientWriteRequest,
)
from physio_records.domain.services.concurrency_token import header_value
from physio_records.infrastructure.settings import DEFAULT_VISITS_PREVIEW

router = APIRouter(prefix="/api", tags=["patients"])


@router.post("/patients", response_model=PatientResponse, status_code=status.HTTP_201_CREATED)
async def create_patient(
    body: PatientWriteRequest,
    response: Response,
    service: PatientServiceDep
):
    """Create a patient for the authenticated therapist.

    Returns 409 when a patient with the same name (case-insensitive) and
    date of birth already exists.
    """
    patient = raise_for_result(await service.create(body))
    response.headers["ETag"] = patient.e_tag
    response.headers["Location"] = f"/api/patients/{patient.id}"
    return patient


@router.get("/patients", response_model=PageResponse[PatientListItem])
async def list_patients(
    service: PatientServiceDep,
    page: int = Query(1, description="1-based page number"),
    page_size: Optional[int] = Query(None, alias="pageSize", description="Items per page (1..100)"),
    search: Optional[str] = Query(None, description="Partial match on first or last name"),
    sort: Optional[str] = Query(None, description="lastName, createdAt or latestVisitDate"),
    order: Optional[str] = Query(None, description="asc or desc")
):
    """List patients with visit count and latest visit date.

    Sorting by latestVisitDate orders the full filtered set before the page
    is cut; patients without visits sort first ascending and last descending.
    """
    return raise_for_result(await service.list(
        page=page,
        page_size=page_size,
        search=search,
        sort=sort,
        order=order,
    ))


@router.get("/patients/{patient_id}", response_model=PatientDetailResponse)
async def get_patient(
    patient_id: str,
    response: Response,
    service: PatientServiceDep,
    include_visits: bool = Query(False, alias="includeVisits", description="Include recent visits"),
    visits_limit: int = Query(DEFAULT_VISITS_PREVIEW, alias="visitsLimit", description="Recent visits (1..20)")
):
    """Get a patient with visit metrics."""
    patient = raise_for_result(await service.get(patient_id, include_visits, visits_limit))
    response.headers["ETag"] = patient.e_tag
    return patient


@router.patch("/patients/{patient_id}", response_model=PatientResponse)
async def update_patient(
    patient_id: str,
    body: PatientWriteRequest,
    response: Response,
    service: PatientServiceDep,
    if_match: Optional[str] = Header(None, alias="If-Match")
):
    """Replace a patient's name and date of birth.

    Requires the If-Match header carrying the patient's current ETag.
    """
    patient = raise_for_result(await service.update(patient_id, body, header_value(if_match)))
    response.headers["ETag"] = patient.e_tag
    return patient


@router.delete("/patients/{patient_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_patient(patient_id: str, service: PatientServiceDep):
    """Delete a patient and, through the store's cascade, their visits."""
    raise_for_result(await service.delete(patient_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
