"""Paginated Query Planner.

Produces sorted, searchable, windowed listings that can be ordered by either
a native column or a metric computed over a child collection.

Two plans exist:

* Aggregate sort: fetch the full filtered set, aggregate over every id,
  sort, then slice the page.
* Native sort: fetch the full filtered set, sort, slice the page, then
  aggregate only the ids on that page.

Every sort ends with a deterministic total order (primary key, name
tie-breakers, ``created_at``, ``id``) so that page boundaries are stable
across repeated calls against unchanged data.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Generic, List, Mapping, Optional, Sequence, TypeVar

from pydantic import ValidationError

from physio_records.domain.ports import (
    ErrorKind,
    OrderBy,
    QueryFilter,
    RecordStorePort,
    Result,
    Row,
    escape_like,
    invalid_argument,
)
from physio_records.domain.services.aggregation import AggregationEngine, ChildAggregate
from physio_records.domain.services.validation import SEARCH_MAX_LENGTH, normalize_search

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100

ItemT = TypeVar("ItemT")

SortKeyFn = Callable[[Any, Optional[ChildAggregate]], Any]
TieBreakerFn = Callable[[Any], Any]


@dataclass(frozen=True)
class Page(Generic[ItemT]):
    """One window of a listing plus totals for the full filtered set."""

    items: list
    page: int
    page_size: int
    total_items: int
    total_pages: int

    @staticmethod
    def count_pages(total_items: int, page_size: int) -> int:
        if page_size <= 0:
            return 0
        return math.ceil(total_items / page_size)


@dataclass(frozen=True)
class SortOption:
    """A sortable field.

    Attributes:
        key: Primary sort key from (record, aggregate)
        uses_aggregate: True when the key depends on a child metric
        default_descending: Direction used when no valid order is supplied
    """

    key: SortKeyFn
    uses_aggregate: bool = False
    default_descending: bool = False


@dataclass(frozen=True)
class ListingDefinition(Generic[ItemT]):
    """Describes one listable collection.

    Attributes:
        table: Store table
        scope_column: Column restricting rows to the scope id (owner or parent)
        parse_row: Converts a store row into a record
        project: Builds the list item from a record and its aggregate
        sort_options: Sort token to SortOption
        default_sort: Token used for unknown or missing sort values
        tie_breakers: Secondary native keys applied after the primary key
        search_columns: Text columns searched with OR'ed ``ilike``
        aggregation: Builds the AggregationEngine for a store, if any
        id_attribute: Strictly unique final tie-break
    """

    table: str
    scope_column: str
    parse_row: Callable[[Row], Any]
    project: Callable[[Any, Optional[ChildAggregate]], ItemT]
    sort_options: Mapping[str, SortOption]
    default_sort: str
    tie_breakers: Sequence[TieBreakerFn] = ()
    search_columns: Sequence[str] = ()
    aggregation: Optional[Callable[[RecordStorePort], AggregationEngine]] = None
    id_attribute: str = "id"
    created_attribute: str = "created_at"
    max_search_length: int = SEARCH_MAX_LENGTH


def nulls_first(value: Any) -> tuple:
    """Sort key placing None before every value."""
    return (value is not None, value)


def casefolded(value: Optional[str]) -> tuple:
    return nulls_first(value.casefold() if value is not None else None)


def resolve_order(order: Optional[str], option: SortOption) -> bool:
    """Return True for descending; unknown values fall back to the field default."""
    if order is not None:
        normalized = order.strip().lower()
        if normalized == "asc":
            return False
        if normalized == "desc":
            return True
    return option.default_descending


class PaginatedQueryPlanner(Generic[ItemT]):
    """Plans and executes one listing request.

    Parameters:
        store: Credential-scoped record store
        definition: Listing definition
        max_page_size: Upper bound for ``page_size``
    """

    def __init__(
        self,
        store: RecordStorePort,
        definition: ListingDefinition,
        max_page_size: int = MAX_PAGE_SIZE
    ):
        self.store = store
        self.definition = definition
        self.max_page_size = max_page_size

    async def list(
        self,
        scope_id: str,
        page: int,
        page_size: int,
        search: Optional[str] = None,
        sort: Optional[str] = None,
        order: Optional[str] = None,
        filters: Sequence[QueryFilter] = ()
    ) -> Result[Page[ItemT]]:
        """List one page of rows in scope.

        Parameters:
            scope_id: Owner id (or parent id for child collections)
            page: 1-based page number
            page_size: Items per page (1..max_page_size)
            search: Optional free-text search term
            sort: Sort token; unknown values use the default sort
            order: "asc" or "desc"; unknown values use the field default
            filters: Extra native filters (e.g. date range)

        Returns:
            Result containing the page; a page past the end has no items
        """
        definition = self.definition

        if page is None or page < 1:
            return invalid_argument("page_invalid", page=page)
        if page_size is None or page_size < 1 or page_size > self.max_page_size:
            return invalid_argument("page_size_invalid", page_size=page_size)

        search_result = normalize_search(search, definition.max_search_length)
        if search_result.is_failure():
            return search_result.propagate()
        term = search_result.value

        sort_token = sort if sort in definition.sort_options else definition.default_sort
        option = definition.sort_options[sort_token]
        descending = resolve_order(order, option)

        any_of = []
        if term and definition.search_columns:
            pattern = f"%{escape_like(term)}%"
            any_of = [QueryFilter.ilike(column, pattern) for column in definition.search_columns]

        fetched = await self.store.select(
            definition.table,
            [QueryFilter.eq(definition.scope_column, scope_id), *filters],
            any_of=any_of,
            order=[OrderBy(definition.id_attribute)]
        )
        if fetched.is_failure():
            logger.error(f"Listing read failed on {definition.table} (scope={scope_id}): {fetched.error}")
            return fetched.propagate()

        try:
            records = [definition.parse_row(row) for row in fetched.value or []]
        except ValidationError:
            logger.error(f"Malformed row in {definition.table} listing (scope={scope_id})")
            return Result.failure_result(
                "malformed_response",
                ErrorKind.UPSTREAM_UNAVAILABLE,
                {"operation": "list", "table": definition.table}
            )

        total_items = len(records)
        start = (page - 1) * page_size
        engine = definition.aggregation(self.store) if definition.aggregation else None

        if option.uses_aggregate and engine is not None:
            aggregates = await self._aggregates(engine, records)
            if aggregates.is_failure():
                return aggregates.propagate()
            ordered = self._sort(records, option, aggregates.value, descending)
            window = ordered[start:start + page_size]
        else:
            ordered = self._sort(records, option, {}, descending)
            window = ordered[start:start + page_size]
            if engine is not None and window:
                aggregates = await self._aggregates(engine, window)
                if aggregates.is_failure():
                    return aggregates.propagate()
            else:
                aggregates = Result.success_result({})

        items = [
            definition.project(record, aggregates.value.get(self._id(record)))
            for record in window
        ]
        return Result.success_result(Page(
            items=items,
            page=page,
            page_size=page_size,
            total_items=total_items,
            total_pages=Page.count_pages(total_items, page_size)
        ))

    async def _aggregates(self, engine: AggregationEngine, records: Sequence[Any]) -> Result[dict]:
        return await engine.compute_aggregates(self._id(record) for record in records)

    def _id(self, record: Any) -> str:
        return str(getattr(record, self.definition.id_attribute))

    def _sort(
        self,
        records: Sequence[Any],
        option: SortOption,
        aggregates: Mapping[str, ChildAggregate],
        descending: bool
    ) -> List[Any]:
        definition = self.definition

        def sort_key(record):
            aggregate = aggregates.get(self._id(record))
            return (
                nulls_first(option.key(record, aggregate)),
                *(breaker(record) for breaker in definition.tie_breakers),
                nulls_first(getattr(record, definition.created_attribute, None)),
                self._id(record),
            )

        return sorted(records, key=sort_key, reverse=descending)
