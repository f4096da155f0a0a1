"""Visit Service.

Visits are owned through their parent patient: every operation first
confirms that the patient belongs to the caller. Listings and detail views
carry the visit's AI-generation metrics (count and latest generation id).
"""

import logging
from datetime import datetime
from typing import Any, Callable, Mapping, Optional

from physio_records.api.models.common import PageResponse
from physio_records.api.models.visits import RecommendationsRequest, VisitResponse, VisitWriteRequest
from physio_records.api.services.patient_service import (
    PATIENT_OWNERSHIP,
    PATIENTS_TABLE,
    VISITS_TABLE,
    patient_definition,
)
from physio_records.domain.ports import ErrorKind, QueryFilter, RecordStorePort, Result, invalid_argument, not_found
from physio_records.domain.records import VisitAiGenerationRecord, VisitRecord, parse_rows
from physio_records.domain.services.aggregation import AggregationEngine
from physio_records.domain.services.concurrency_token import ConcurrencyToken, format_timestamp, to_utc
from physio_records.domain.services.mutation_coordinator import (
    MISSING_TAG_CODE,
    MutationCoordinator,
    ParentOwnership,
    ResourceDefinition,
)
from physio_records.domain.services.query_planner import ListingDefinition, PaginatedQueryPlanner, SortOption
from physio_records.domain.services.validation import (
    VISIT_CONTENT_FIELDS,
    normalize_visit_date,
    normalize_visit_text,
    require_any_visit_content,
    utc_now,
)
from physio_records.infrastructure.client_provider import ScopedClient
from physio_records.infrastructure.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)

AI_GENERATIONS_TABLE = "visit_ai_generations"

VISIT_OWNERSHIP = ParentOwnership(
    parent_table=PATIENTS_TABLE,
    parent_column="patient_id",
    parent_ownership=PATIENT_OWNERSHIP,
    parent_name="patient",
)

VISIT_TIMESTAMP_FIELDS = frozenset({"visit_date", "recommendations_generated_at"})


def normalize_visit_fields(
    values: Mapping[str, Any],
    now: datetime,
    lookahead_days: int,
    partial: bool
) -> Result[dict]:
    """Normalize visit date and content fields.

    With ``partial`` only the supplied fields are returned; otherwise the
    visit date defaults to now and at least one content field is required.
    """
    normalized: dict = {}

    if not partial or "visit_date" in values:
        visit_date = normalize_visit_date(values.get("visit_date"), now, lookahead_days)
        if visit_date.is_failure():
            return visit_date.propagate()
        normalized["visit_date"] = visit_date.value

    for field in VISIT_CONTENT_FIELDS:
        if partial and field not in values:
            continue
        text = normalize_visit_text(values.get(field), field)
        if text.is_failure():
            return text.propagate()
        normalized[field] = text.value

    if not partial:
        content = require_any_visit_content(normalized)
        if content.is_failure():
            return content.propagate()
        normalized["patient_id"] = values.get("patient_id")
        normalized["recommendations_generated_by_ai"] = False
        normalized["recommendations_generated_at"] = None

    return Result.success_result(normalized)


def normalize_recommendations(values: Mapping[str, Any], now: datetime) -> Result[dict]:
    """Validate a recommendations save and derive the AI provenance columns."""
    text = normalize_visit_text(values.get("recommendations"), "recommendations")
    if text.is_failure():
        return text.propagate()
    if text.value is None:
        return invalid_argument("recommendations_required", field="recommendations")

    ai_generated = bool(values.get("ai_generated"))
    source_generation_id = values.get("source_generation_id")
    if ai_generated and source_generation_id is None:
        return invalid_argument("source_generation_required", field="source_generation_id")
    if not ai_generated and source_generation_id is not None:
        return invalid_argument("source_generation_not_allowed", field="source_generation_id")

    return Result.success_result({
        "recommendations": text.value,
        "recommendations_generated_by_ai": ai_generated,
        "recommendations_generated_at": format_timestamp(now) if ai_generated else None,
    })


def visit_definition(clock: Callable[[], datetime], lookahead_days: int) -> ResourceDefinition:
    return ResourceDefinition(
        name="visit",
        table=VISITS_TABLE,
        model=VisitRecord,
        ownership=VISIT_OWNERSHIP,
        mutable_fields=("visit_date", *VISIT_CONTENT_FIELDS),
        normalize_create=lambda values: normalize_visit_fields(values, clock(), lookahead_days, partial=False),
        normalize_update=lambda values: normalize_visit_fields(values, clock(), lookahead_days, partial=True),
        validate_merged=require_any_visit_content,
        timestamp_fields=VISIT_TIMESTAMP_FIELDS,
    )


def recommendations_definition(clock: Callable[[], datetime]) -> ResourceDefinition:
    return ResourceDefinition(
        name="visit",
        table=VISITS_TABLE,
        model=VisitRecord,
        ownership=VISIT_OWNERSHIP,
        mutable_fields=(
            "recommendations",
            "recommendations_generated_by_ai",
            "recommendations_generated_at",
        ),
        normalize_update=lambda values: normalize_recommendations(values, clock()),
        timestamp_fields=VISIT_TIMESTAMP_FIELDS,
    )


def ai_generation_aggregation(store: RecordStorePort, batch_size: int) -> AggregationEngine:
    """AI generation count and latest generation per visit."""
    return AggregationEngine(
        store,
        child_table=AI_GENERATIONS_TABLE,
        parent_column="visit_id",
        timestamp_column="created_at",
        batch_size=batch_size,
    )


def visit_listing(app_settings: Settings, include_recommendations: bool) -> ListingDefinition:
    return ListingDefinition(
        table=VISITS_TABLE,
        scope_column="patient_id",
        parse_row=VisitRecord.model_validate,
        project=lambda visit, aggregate: VisitResponse.from_record(
            visit, aggregate, include_recommendations=include_recommendations
        ),
        sort_options={
            "visitDate": SortOption(key=lambda visit, _: visit.visit_date, default_descending=True),
        },
        default_sort="visitDate",
        aggregation=lambda store: ai_generation_aggregation(store, app_settings.aggregate_batch_size),
    )


class VisitService:
    """Service for visits of the caller's patients.

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
        self.clock = clock
        self.coordinator = MutationCoordinator(
            scoped.store, visit_definition(clock, app_settings.visit_lookahead_days)
        )
        self.recommendations = MutationCoordinator(scoped.store, recommendations_definition(clock))
        self.patients = MutationCoordinator(scoped.store, patient_definition(clock))

    @property
    def owner_id(self) -> str:
        return self.scoped.owner_id

    async def create(self, patient_id: str, request: VisitWriteRequest) -> Result[VisitResponse]:
        """Record a visit for one of the caller's patients."""
        values = {**request.to_values(), "patient_id": patient_id}
        created = await self.coordinator.create(self.owner_id, values)
        if created.is_failure():
            return created.propagate()
        logger.info(f"Created visit {created.value.id} for patient {patient_id}")
        return Result.success_result(VisitResponse.from_record(created.value))

    async def list(
        self,
        patient_id: str,
        page: int = 1,
        page_size: Optional[int] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        include_recommendations: bool = True,
        order: Optional[str] = None
    ) -> Result[PageResponse[VisitResponse]]:
        """List a patient's visits ordered by visit date.

        Parameters:
            patient_id: Patient identifier
            page: 1-based page number
            page_size: Items per page (default from settings)
            date_from: Only visits on or after this instant
            date_to: Only visits on or before this instant
            include_recommendations: Include recommendation text
            order: asc or desc (default desc)

        Returns:
            Result containing the page of visits
        """
        if date_from is not None:
            date_from = to_utc(date_from)
        if date_to is not None:
            date_to = to_utc(date_to)
        if date_from is not None and date_to is not None and date_to < date_from:
            return invalid_argument("invalid_date_range")

        patient = await self.patients.read(self.owner_id, patient_id)
        if patient.is_failure():
            return patient.propagate()

        filters = []
        if date_from is not None:
            filters.append(QueryFilter.gte("visit_date", format_timestamp(date_from)))
        if date_to is not None:
            filters.append(QueryFilter.lte("visit_date", format_timestamp(date_to)))

        planner = PaginatedQueryPlanner(
            self.scoped.store,
            visit_listing(self.settings, include_recommendations),
            max_page_size=self.settings.max_page_size,
        )
        listed = await planner.list(
            patient.value.id,
            page,
            page_size if page_size is not None else self.settings.default_page_size,
            order=order,
            filters=filters,
        )
        if listed.is_failure():
            return listed.propagate()

        result = listed.value
        return Result.success_result(PageResponse[VisitResponse](
            items=result.items,
            page=result.page,
            page_size=result.page_size,
            total_items=result.total_items,
            total_pages=result.total_pages,
        ))

    async def get(self, visit_id: str) -> Result[VisitResponse]:
        """Get one visit with its AI generation metrics."""
        visit = await self.coordinator.read(self.owner_id, visit_id)
        if visit.is_failure():
            return visit.propagate()
        return await self._with_generations(visit.value)

    async def update(
        self,
        visit_id: str,
        request: VisitWriteRequest,
        if_match: Optional[str]
    ) -> Result[VisitResponse]:
        """Patch a visit, guarded by the If-Match tag.

        Omitted fields keep their value; at least one content field must
        remain after the change.
        """
        updated = await self.coordinator.update(self.owner_id, visit_id, request.to_values(), if_match)
        if updated.is_failure():
            return updated.propagate()
        return await self._with_generations(updated.value)

    async def delete(self, visit_id: str) -> Result[None]:
        """Delete a visit of one of the caller's patients."""
        deleted = await self.coordinator.delete(self.owner_id, visit_id)
        if deleted.is_failure():
            return deleted.propagate()
        logger.info(f"Deleted visit {visit_id} for {self.owner_id}")
        return Result.success_result(None)

    async def save_recommendations(
        self,
        visit_id: str,
        request: RecommendationsRequest,
        if_match: Optional[str]
    ) -> Result[VisitResponse]:
        """Save recommendations, recording whether they came from an AI generation.

        Parameters:
            visit_id: Visit identifier
            request: Recommendation text and provenance
            if_match: Concurrency tag the caller last saw

        Returns:
            Result containing the updated visit
        """
        values = {
            "recommendations": request.recommendations,
            "ai_generated": request.ai_generated,
            "source_generation_id": str(request.source_generation_id) if request.source_generation_id else None,
        }
        checked = normalize_recommendations(values, self.clock())
        if checked.is_failure():
            return checked.propagate()

        if if_match is None or not if_match.strip():
            return Result.failure_result(MISSING_TAG_CODE, ErrorKind.MISSING_PRECONDITION)
        tag = ConcurrencyToken.parse(if_match)
        if tag.is_failure():
            return tag.propagate()

        if values["source_generation_id"] is not None:
            owned = await self._owned_generation(visit_id, values["source_generation_id"])
            if owned.is_failure():
                return owned.propagate()

        updated = await self.recommendations.update(self.owner_id, visit_id, values, if_match)
        if updated.is_failure():
            return updated.propagate()
        return await self._with_generations(updated.value)

    async def _owned_generation(self, visit_id: str, generation_id: str) -> Result[VisitAiGenerationRecord]:
        found = await self.scoped.store.select(
            AI_GENERATIONS_TABLE,
            [
                QueryFilter.eq("id", generation_id),
                QueryFilter.eq("visit_id", visit_id),
                QueryFilter.eq("therapist_id", self.owner_id),
            ],
            limit=1,
        )
        if found.is_failure():
            logger.error(f"Failed to verify AI generation for visit {visit_id}: {found.error}")
            return found.propagate()
        generations = parse_rows(VisitAiGenerationRecord, found.value)
        if generations.is_failure():
            return generations.propagate()
        if not generations.value:
            return not_found("ai_generation_missing")
        return Result.success_result(generations.value[0])

    async def _with_generations(self, visit: VisitRecord) -> Result[VisitResponse]:
        engine = ai_generation_aggregation(self.scoped.store, self.settings.aggregate_batch_size)
        aggregates = await engine.compute_aggregates([visit.id])
        if aggregates.is_failure():
            return aggregates.propagate()
        return Result.success_result(VisitResponse.from_record(visit, aggregates.value.get(visit.id)))
