"""Mutation Coordinator.

Runs the fetch, validate, mutate and reload cycle for single-record
create, read, update and delete operations on owner-scoped tables.

Security Impact:
    - Every read and write carries owner filters in addition to the store's
      row-level security
    - Missing rows and rows owned by someone else are indistinguishable
      (both NOT_FOUND)
    - Logs carry operation, resource, owner and record ids only

Architecture:
    - Resource-specific behaviour (table, ownership, normalization, uniqueness)
      is supplied through a ResourceDefinition
    - Concurrency safety is rebuilt client-side with ConcurrencyToken because
      the store has no compare-and-swap write
    - No operation retries; a retry after a conflict without re-reading would
      reintroduce the race this layer prevents

Known race: the duplicate pre-check and the write are separate remote calls.
The store's unique index is authoritative and its violation is translated to
the same DUPLICATE_CONFLICT outcome as the pre-check.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Generic, Mapping, Optional, Sequence, TypeVar

from pydantic import BaseModel, ValidationError

from physio_records.domain.ports import (
    ErrorKind,
    QueryFilter,
    RecordStorePort,
    Result,
    Row,
    escape_like,
    not_found,
)
from physio_records.domain.services.concurrency_token import (
    ConcurrencyToken,
    parse_timestamp,
    to_utc,
)

logger = logging.getLogger(__name__)

# PostgreSQL SQLSTATE for unique_violation
UNIQUE_VIOLATION_CODE = "23505"

MISSING_TAG_CODE = "missing_if_match"
TAG_MISMATCH_CODE = "etag_mismatch"
NO_CHANGES_CODE = "no_changes_submitted"

RecordT = TypeVar("RecordT", bound=BaseModel)

NormalizeFn = Callable[[Mapping[str, Any]], Result[dict]]
MergedCheckFn = Callable[[Mapping[str, Any]], Result[None]]


# ============================================================================
# Uniqueness
# ============================================================================

@dataclass(frozen=True)
class UniqueConstraint:
    """Owner-scoped uniqueness rule mirrored from a store unique index.

    Attributes:
        name: Index name as reported in constraint-violation messages
        case_insensitive_fields: Fields compared with ``lower()`` in the index
        exact_fields: Fields compared exactly (NULL matches NULL)
    """

    name: str
    case_insensitive_fields: tuple[str, ...] = ()
    exact_fields: tuple[str, ...] = ()

    @property
    def fields(self) -> tuple[str, ...]:
        return self.case_insensitive_fields + self.exact_fields

    def lookup_filters(self, row: Mapping[str, Any]) -> list[QueryFilter]:
        """Filters that find a row colliding with ``row`` on this constraint."""
        filters = []
        for column in self.case_insensitive_fields:
            value = row.get(column)
            if value is None:
                filters.append(QueryFilter.is_null(column))
            else:
                filters.append(QueryFilter.ilike(column, escape_like(str(value))))
        for column in self.exact_fields:
            value = row.get(column)
            if value is None:
                filters.append(QueryFilter.is_null(column))
            else:
                filters.append(QueryFilter.eq(column, value))
        return filters

    def is_violation(self, failure: Result[Any]) -> bool:
        """Check whether a store failure is a violation of this constraint."""
        details = failure.error_details or {}
        if details.get("code") == UNIQUE_VIOLATION_CODE:
            return True
        message = str(details.get("message") or "")
        return self.name in message


# ============================================================================
# Ownership
# ============================================================================

class OwnershipPolicy(ABC):
    """How a resource's rows are tied to the calling principal."""

    @abstractmethod
    async def fetch_owned(
        self,
        store: RecordStorePort,
        table: str,
        id_column: str,
        owner_id: str,
        record_id: str
    ) -> Result[Optional[Row]]:
        """Fetch a row only if it belongs to ``owner_id``.

        Returns:
            Result containing the row, or None when it is absent or not owned
        """
        pass

    @abstractmethod
    async def prepare_insert(self, store: RecordStorePort, owner_id: str, row: Row) -> Result[Row]:
        """Attach or verify ownership on a row about to be inserted."""
        pass

    @abstractmethod
    def scope_filters(self, owner_id: str, row: Mapping[str, Any]) -> list[QueryFilter]:
        """Filters restricting writes and pre-checks to the owner's rows."""
        pass


@dataclass(frozen=True)
class DirectOwnership(OwnershipPolicy):
    """The owner id is stored in a column of the row itself."""

    column: str

    async def fetch_owned(self, store, table, id_column, owner_id, record_id):
        result = await store.select(
            table,
            [QueryFilter.eq(id_column, record_id), QueryFilter.eq(self.column, owner_id)],
            limit=1
        )
        if result.is_failure():
            return result
        rows = result.value or []
        return Result.success_result(rows[0] if rows else None)

    async def prepare_insert(self, store, owner_id, row):
        return Result.success_result({**row, self.column: owner_id})

    def scope_filters(self, owner_id, row):
        return [QueryFilter.eq(self.column, owner_id)]


@dataclass(frozen=True)
class ParentOwnership(OwnershipPolicy):
    """The row belongs to whoever owns its parent row.

    Attributes:
        parent_table: Table holding the parent rows
        parent_column: Column of this row referencing the parent id
        parent_ownership: Ownership policy of the parent table
        parent_name: Parent resource name used in error codes
    """

    parent_table: str
    parent_column: str
    parent_ownership: OwnershipPolicy
    parent_name: str
    parent_id_column: str = "id"

    async def _owned_parent(self, store, owner_id, parent_id) -> Result[Optional[Row]]:
        if parent_id is None or not _is_identifier(parent_id):
            return Result.success_result(None)
        return await self.parent_ownership.fetch_owned(
            store, self.parent_table, self.parent_id_column, owner_id, str(parent_id)
        )

    async def fetch_owned(self, store, table, id_column, owner_id, record_id):
        result = await store.select(table, [QueryFilter.eq(id_column, record_id)], limit=1)
        if result.is_failure():
            return result
        rows = result.value or []
        if not rows:
            return Result.success_result(None)

        row = rows[0]
        parent = await self._owned_parent(store, owner_id, row.get(self.parent_column))
        if parent.is_failure():
            return parent
        return Result.success_result(row if parent.value is not None else None)

    async def prepare_insert(self, store, owner_id, row):
        parent = await self._owned_parent(store, owner_id, row.get(self.parent_column))
        if parent.is_failure():
            return parent.propagate()
        if parent.value is None:
            return not_found(f"{self.parent_name}_missing")
        return Result.success_result(dict(row))

    def scope_filters(self, owner_id, row):
        return [QueryFilter.eq(self.parent_column, row.get(self.parent_column))]


# ============================================================================
# Resource Definition
# ============================================================================

def _pass_through(values: Mapping[str, Any]) -> Result[dict]:
    return Result.success_result(dict(values))


@dataclass(frozen=True)
class ResourceDefinition(Generic[RecordT]):
    """Everything the coordinator needs to know about one table.

    Attributes:
        name: Resource name used in error codes ("patient" -> "patient_missing")
        table: Store table
        model: Row model returned to callers
        ownership: Ownership policy
        mutable_fields: Fields an update may change
        normalize_create: Validates and normalizes create input
        normalize_update: Validates and normalizes update input
        validate_merged: Check on the row as it would look after an update
        unique_constraint: Owner-scoped uniqueness rule, if any
        timestamp_fields: Fields compared as instants in the no-op check
    """

    name: str
    table: str
    model: type
    ownership: OwnershipPolicy
    mutable_fields: tuple[str, ...]
    normalize_create: NormalizeFn = _pass_through
    normalize_update: Optional[NormalizeFn] = None
    validate_merged: Optional[MergedCheckFn] = None
    unique_constraint: Optional[UniqueConstraint] = None
    timestamp_fields: frozenset = field(default_factory=frozenset)
    id_column: str = "id"
    version_column: str = "updated_at"

    @property
    def missing_code(self) -> str:
        return f"{self.name}_missing"

    @property
    def duplicate_code(self) -> str:
        return f"{self.name}_duplicate"


# ============================================================================
# Coordinator
# ============================================================================

class MutationCoordinator(Generic[RecordT]):
    """Owner-scoped create/read/update/delete with optimistic concurrency.

    Parameters:
        store: Credential-scoped record store for the current request
        definition: Resource definition
    """

    def __init__(self, store: RecordStorePort, definition: ResourceDefinition):
        self.store = store
        self.definition = definition

    # ------------------------------------------------------------------ create

    async def create(self, owner_id: str, values: Mapping[str, Any]) -> Result[RecordT]:
        """Create a record owned by ``owner_id``.

        Parameters:
            owner_id: Principal identifier
            values: Raw field values

        Returns:
            Result containing the record as re-read from the store
        """
        definition = self.definition

        normalized = definition.normalize_create(values)
        if normalized.is_failure():
            return normalized.propagate()

        prepared = await definition.ownership.prepare_insert(self.store, owner_id, normalized.value)
        if prepared.is_failure():
            return self._classify_failure(prepared, "create", owner_id, None)
        row = prepared.value

        duplicate = await self._find_duplicate(owner_id, row, exclude_id=None)
        if duplicate.is_failure():
            return self._classify_failure(duplicate, "create", owner_id, None)
        if duplicate.value:
            return Result.failure_result(definition.duplicate_code, ErrorKind.DUPLICATE_CONFLICT)

        inserted = await self.store.insert(definition.table, row)
        if inserted.is_failure():
            return self._classify_failure(inserted, "create", owner_id, None)

        created_rows = inserted.value or []
        if not created_rows or created_rows[0].get(definition.id_column) is None:
            logger.error(
                f"Create on {definition.table} returned no representation (owner={owner_id})"
            )
            return Result.failure_result(
                f"{definition.name}_create_failed",
                ErrorKind.UPSTREAM_UNAVAILABLE,
                {"operation": "create", "resource": definition.name}
            )

        # The write response may not echo trigger-maintained columns reliably.
        return await self.read(owner_id, str(created_rows[0][definition.id_column]))

    # -------------------------------------------------------------------- read

    async def read(self, owner_id: str, record_id: str) -> Result[RecordT]:
        """Fetch a record owned by ``owner_id``; NOT_FOUND otherwise."""
        current = await self._load(owner_id, record_id, "read")
        if current.is_failure():
            return current.propagate()
        return self._to_record(current.value, "read", owner_id, record_id)

    # ------------------------------------------------------------------ update

    async def update(
        self,
        owner_id: str,
        record_id: str,
        values: Mapping[str, Any],
        if_match: Optional[str]
    ) -> Result[RecordT]:
        """Apply a guarded update.

        Parameters:
            owner_id: Principal identifier
            record_id: Record identifier
            values: Fields to change (only supplied fields are compared/written)
            if_match: Concurrency tag the caller last saw

        Returns:
            Result containing the re-read record with its new tag
        """
        definition = self.definition

        if if_match is None or not if_match.strip():
            return Result.failure_result(MISSING_TAG_CODE, ErrorKind.MISSING_PRECONDITION)
        expected = ConcurrencyToken.parse(if_match)
        if expected.is_failure():
            return expected.propagate()

        normalize = definition.normalize_update or definition.normalize_create
        normalized = normalize(values)
        if normalized.is_failure():
            return normalized.propagate()
        changes = {
            column: value for column, value in normalized.value.items()
            if column in definition.mutable_fields
        }

        current = await self._load(owner_id, record_id, "update")
        if current.is_failure():
            return current.propagate()
        current_row = current.value

        current_version = parse_timestamp(str(current_row.get(definition.version_column)))
        if current_version is None:
            return self._malformed("update", owner_id, record_id)
        if not ConcurrencyToken.matches(if_match, current_version):
            logger.warning(
                f"Version conflict on {definition.name} {record_id} (owner={owner_id})"
            )
            return Result.failure_result(
                TAG_MISMATCH_CODE,
                ErrorKind.VERSION_CONFLICT,
                {"current_etag": ConcurrencyToken.format(current_version)}
            )

        merged = {**current_row, **changes}
        if definition.validate_merged is not None:
            merged_check = definition.validate_merged(merged)
            if merged_check.is_failure():
                return merged_check.propagate()

        changed = [
            column for column, value in changes.items()
            if not self._same_value(column, value, current_row.get(column))
        ]
        if not changed:
            return Result.failure_result(NO_CHANGES_CODE, ErrorKind.NO_OP_REJECTED)

        constraint = definition.unique_constraint
        if constraint is not None and any(column in constraint.fields for column in changed):
            duplicate = await self._find_duplicate(owner_id, merged, exclude_id=record_id)
            if duplicate.is_failure():
                return self._classify_failure(duplicate, "update", owner_id, record_id)
            if duplicate.value:
                return Result.failure_result(definition.duplicate_code, ErrorKind.DUPLICATE_CONFLICT)

        written = await self.store.update(
            definition.table,
            changes,
            self._write_filters(owner_id, record_id, current_row)
        )
        if written.is_failure():
            return self._classify_failure(written, "update", owner_id, record_id)
        if not written.value:
            return not_found(definition.missing_code)

        return await self.read(owner_id, record_id)

    # ------------------------------------------------------------------ delete

    async def delete(self, owner_id: str, record_id: str) -> Result[RecordT]:
        """Delete a record after confirming ownership.

        Not guarded by a concurrency tag: the resource is gone either way.

        Returns:
            Result containing the record as it was before deletion
        """
        definition = self.definition

        current = await self._load(owner_id, record_id, "delete")
        if current.is_failure():
            return current.propagate()

        deleted = await self.store.delete(
            definition.table,
            self._write_filters(owner_id, record_id, current.value)
        )
        if deleted.is_failure():
            return self._classify_failure(deleted, "delete", owner_id, record_id)

        return self._to_record(current.value, "delete", owner_id, record_id)

    # ----------------------------------------------------------------- helpers

    async def _load(self, owner_id: str, record_id: str, operation: str) -> Result[Row]:
        definition = self.definition
        if not _is_identifier(record_id):
            return not_found(definition.missing_code)

        fetched = await definition.ownership.fetch_owned(
            self.store, definition.table, definition.id_column, owner_id, str(record_id)
        )
        if fetched.is_failure():
            return self._upstream(fetched, operation, owner_id, record_id)
        if fetched.value is None:
            return not_found(definition.missing_code)
        return Result.success_result(fetched.value)

    async def _find_duplicate(
        self,
        owner_id: str,
        row: Mapping[str, Any],
        exclude_id: Optional[str]
    ) -> Result[bool]:
        constraint = self.definition.unique_constraint
        if constraint is None:
            return Result.success_result(False)

        filters = [
            *self.definition.ownership.scope_filters(owner_id, row),
            *constraint.lookup_filters(row),
        ]
        if exclude_id is not None:
            filters.append(QueryFilter.neq(self.definition.id_column, exclude_id))

        found = await self.store.select(
            self.definition.table,
            filters,
            columns=self.definition.id_column,
            limit=1
        )
        if found.is_failure():
            return found.propagate()
        return Result.success_result(bool(found.value))

    def _write_filters(self, owner_id: str, record_id: str, row: Mapping[str, Any]) -> list[QueryFilter]:
        return [
            QueryFilter.eq(self.definition.id_column, record_id),
            *self.definition.ownership.scope_filters(owner_id, row),
        ]

    def _same_value(self, column: str, new: Any, old: Any) -> bool:
        if column in self.definition.timestamp_fields:
            return _as_instant(new) == _as_instant(old)
        if isinstance(new, (date, datetime)):
            new = new.isoformat()
        if isinstance(old, (date, datetime)):
            old = old.isoformat()
        return new == old

    def _to_record(self, row: Row, operation: str, owner_id: str, record_id: Optional[str]) -> Result[RecordT]:
        try:
            return Result.success_result(self.definition.model.model_validate(row))
        except ValidationError:
            return self._malformed(operation, owner_id, record_id)

    def _malformed(self, operation: str, owner_id: str, record_id: Optional[str]) -> Result[Any]:
        logger.error(
            f"Malformed {self.definition.name} row during {operation} "
            f"(owner={owner_id}, id={record_id})"
        )
        return Result.failure_result(
            "malformed_response",
            ErrorKind.UPSTREAM_UNAVAILABLE,
            {"operation": operation, "resource": self.definition.name}
        )

    def _classify_failure(
        self,
        failure: Result[Any],
        operation: str,
        owner_id: str,
        record_id: Optional[str]
    ) -> Result[Any]:
        """Translate store failures into the coordinator's error vocabulary."""
        if failure.kind is not ErrorKind.UPSTREAM_UNAVAILABLE:
            return failure.propagate()

        constraint = self.definition.unique_constraint
        if constraint is not None and constraint.is_violation(failure):
            return Result.failure_result(self.definition.duplicate_code, ErrorKind.DUPLICATE_CONFLICT)

        return self._upstream(failure, operation, owner_id, record_id)

    def _upstream(
        self,
        failure: Result[Any],
        operation: str,
        owner_id: str,
        record_id: Optional[str]
    ) -> Result[Any]:
        if failure.kind is not ErrorKind.UPSTREAM_UNAVAILABLE:
            return failure.propagate()

        details = dict(failure.error_details or {})
        logger.error(
            f"Store failure during {self.definition.name} {operation} "
            f"(owner={owner_id}, id={record_id}, code={details.get('code')})"
        )
        details.update({"operation": operation, "resource": self.definition.name})
        details.pop("message", None)
        return Result.failure_result(
            failure.error or "upstream_unavailable",
            ErrorKind.UPSTREAM_UNAVAILABLE,
            details
        )


def _as_instant(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_utc(value)
    return parse_timestamp(str(value))


def _is_identifier(value: Any) -> bool:
    try:
        uuid.UUID(str(value))
    except (TypeError, ValueError):
        return False
    return True
