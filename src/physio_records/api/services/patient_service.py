"""Patient Service.

This service exposes owner-scoped patient operations: create, list with
visit metrics, detail with recent visits, guarded update and delete.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, List, Mapping, Optional

from physio_records.api.models.common import PageResponse
from physio_records.api.models.patients import (
    PatientDetailResponse,
    PatientListItem,
    PatientResponse,
    PatientWriteRequest,
)
from physio_records.api.models.visits import VisitResponse
from physio_records.domain.ports import OrderBy, QueryFilter, RecordStorePort, Result, invalid_argument
from physio_records.domain.records import PatientRecord, VisitRecord, parse_rows
from physio_records.domain.services.aggregation import AggregationEngine
from physio_records.domain.services.mutation_coordinator import (
    DirectOwnership,
    MutationCoordinator,
    ResourceDefinition,
    UniqueConstraint,
)
from physio_records.domain.services.query_planner import (
    ListingDefinition,
    PaginatedQueryPlanner,
    SortOption,
    casefolded,
)
from physio_records.domain.services.validation import normalize_date_of_birth, normalize_name, utc_now
from physio_records.infrastructure.client_provider import ScopedClient
from physio_records.infrastructure.settings import (
    DEFAULT_VISITS_PREVIEW,
    MAX_VISITS_PREVIEW,
    Settings,
    settings as default_settings,
)

logger = logging.getLogger(__name__)

PATIENTS_TABLE = "patients"
VISITS_TABLE = "visits"

PATIENT_OWNERSHIP = DirectOwnership("therapist_id")

PATIENT_NAME_DOB_UNIQUE = UniqueConstraint(
    name="uq_patients_name_dob",
    case_insensitive_fields=("first_name", "last_name"),
    exact_fields=("date_of_birth",),
)


def normalize_patient(values: Mapping[str, Any], today) -> Result[dict]:
    """Normalize a full set of patient fields."""
    first_name = normalize_name(values.get("first_name"), "first_name")
    if first_name.is_failure():
        return first_name.propagate()
    last_name = normalize_name(values.get("last_name"), "last_name")
    if last_name.is_failure():
        return last_name.propagate()
    date_of_birth = normalize_date_of_birth(values.get("date_of_birth"), today)
    if date_of_birth.is_failure():
        return date_of_birth.propagate()

    return Result.success_result({
        "first_name": first_name.value,
        "last_name": last_name.value,
        "date_of_birth": date_of_birth.value,
    })


def patient_definition(clock: Callable[[], datetime]) -> ResourceDefinition:
    return ResourceDefinition(
        name="patient",
        table=PATIENTS_TABLE,
        model=PatientRecord,
        ownership=PATIENT_OWNERSHIP,
        mutable_fields=("first_name", "last_name", "date_of_birth"),
        normalize_create=lambda values: normalize_patient(values, clock().date()),
        unique_constraint=PATIENT_NAME_DOB_UNIQUE,
    )


def visit_aggregation(store: RecordStorePort, batch_size: int) -> AggregationEngine:
    """Visit count and latest visit date per patient."""
    return AggregationEngine(
        store,
        child_table=VISITS_TABLE,
        parent_column="patient_id",
        timestamp_column="visit_date",
        batch_size=batch_size,
    )


def patient_listing(app_settings: Settings) -> ListingDefinition:
    return ListingDefinition(
        table=PATIENTS_TABLE,
        scope_column="therapist_id",
        parse_row=PatientRecord.model_validate,
        project=PatientListItem.from_record,
        sort_options={
            "lastName": SortOption(key=lambda patient, _: patient.last_name.casefold()),
            "createdAt": SortOption(key=lambda patient, _: patient.created_at, default_descending=True),
            "latestVisitDate": SortOption(
                key=lambda _, aggregate: aggregate.latest_child_timestamp if aggregate else None,
                uses_aggregate=True,
                default_descending=True,
            ),
        },
        default_sort="lastName",
        tie_breakers=(
            lambda patient: casefolded(patient.last_name),
            lambda patient: casefolded(patient.first_name),
        ),
        search_columns=("first_name", "last_name"),
        aggregation=lambda store: visit_aggregation(store, app_settings.aggregate_batch_size),
        max_search_length=app_settings.search_max_length,
    )


class PatientService:
    """Service for the caller's patients.

    Parameters:
        scoped: Request-scoped client and principal
        app_settings: Application settings
        clock: Source of "now" (UTC)
    """

    def __init__(
        self,
        scoped: ScopedClient,
        app_settings: Settings = default_settings,
        clock: Callable[[], datetime] = utc_now
    ):
        self.scoped = scoped
        self.settings = app_settings
        self.coordinator = MutationCoordinator(scoped.store, patient_definition(clock))
        self.planner = PaginatedQueryPlanner(
            scoped.store, patient_listing(app_settings), max_page_size=app_settings.max_page_size
        )

    @property
    def owner_id(self) -> str:
        return self.scoped.owner_id

    async def create(self, request: PatientWriteRequest) -> Result[PatientResponse]:
        """Create a patient; duplicates by name and date of birth are rejected."""
        created = await self.coordinator.create(self.owner_id, request.to_values())
        if created.is_failure():
            return created.propagate()
        logger.info(f"Created patient {created.value.id} for {self.owner_id}")
        return Result.success_result(PatientResponse.from_record(created.value))

    async def list(
        self,
        page: int = 1,
        page_size: Optional[int] = None,
        search: Optional[str] = None,
        sort: Optional[str] = None,
        order: Optional[str] = None
    ) -> Result[PageResponse[PatientListItem]]:
        """List patients with visit count and latest visit date.

        Parameters:
            page: 1-based page number
            page_size: Items per page (default from settings)
            search: Case-insensitive partial match on first or last name
            sort: lastName (default), createdAt or latestVisitDate
            order: asc or desc (default depends on sort)

        Returns:
            Result containing the page of patients
        """
        listed = await self.planner.list(
            self.owner_id,
            page,
            page_size if page_size is not None else self.settings.default_page_size,
            search=search,
            sort=sort,
            order=order,
        )
        if listed.is_failure():
            return listed.propagate()

        result = listed.value
        return Result.success_result(PageResponse[PatientListItem](
            items=result.items,
            page=result.page,
            page_size=result.page_size,
            total_items=result.total_items,
            total_pages=result.total_pages,
        ))

    async def get(
        self,
        patient_id: str,
        include_visits: bool = False,
        visits_limit: int = DEFAULT_VISITS_PREVIEW
    ) -> Result[PatientDetailResponse]:
        """Get one patient with visit metrics and optionally recent visits.

        Parameters:
            patient_id: Patient identifier
            include_visits: Include the most recent visits
            visits_limit: Number of visits to include (1..20)

        Returns:
            Result containing the patient detail
        """
        if include_visits and not 1 <= visits_limit <= MAX_VISITS_PREVIEW:
            return invalid_argument("visits_limit_invalid", visits_limit=visits_limit)

        patient = await self.coordinator.read(self.owner_id, patient_id)
        if patient.is_failure():
            return patient.propagate()

        engine = visit_aggregation(self.scoped.store, self.settings.aggregate_batch_size)
        if include_visits:
            aggregates, visits = await asyncio.gather(
                engine.compute_aggregates([patient.value.id]),
                self._recent_visits(patient.value.id, visits_limit),
            )
        else:
            aggregates = await engine.compute_aggregates([patient.value.id])
            visits = None

        if aggregates.is_failure():
            return aggregates.propagate()
        if visits is not None and visits.is_failure():
            return visits.propagate()

        detail = PatientDetailResponse.from_record(patient.value, aggregates.value.get(patient.value.id))
        if visits is not None:
            detail = detail.model_copy(update={"visits": visits.value})
        return Result.success_result(detail)

    async def update(
        self,
        patient_id: str,
        request: PatientWriteRequest,
        if_match: Optional[str]
    ) -> Result[PatientResponse]:
        """Replace a patient's fields, guarded by the If-Match tag."""
        updated = await self.coordinator.update(self.owner_id, patient_id, request.to_values(), if_match)
        if updated.is_failure():
            return updated.propagate()
        return Result.success_result(PatientResponse.from_record(updated.value))

    async def delete(self, patient_id: str) -> Result[None]:
        """Delete a patient owned by the caller."""
        deleted = await self.coordinator.delete(self.owner_id, patient_id)
        if deleted.is_failure():
            return deleted.propagate()
        logger.info(f"Deleted patient {patient_id} for {self.owner_id}")
        return Result.success_result(None)

    async def _recent_visits(self, patient_id: str, limit: int) -> Result[List[VisitResponse]]:
        fetched = await self.scoped.store.select(
            VISITS_TABLE,
            [QueryFilter.eq("patient_id", patient_id)],
            order=[OrderBy("visit_date", descending=True), OrderBy("id", descending=True)],
            limit=limit,
        )
        if fetched.is_failure():
            logger.error(f"Failed to load visits for patient {patient_id}: {fetched.error}")
            return fetched.propagate()
        visits = parse_rows(VisitRecord, fetched.value)
        if visits.is_failure():
            return visits.propagate()
        return Result.success_result([VisitResponse.from_record(visit) for visit in visits.value])
