"""Domain Ports - Abstract Contracts for Owned-Record Storage.

This module defines the Port interfaces (abstract contracts) that Adapters must implement.
Following Hexagonal Architecture, the Domain Core defines what it needs, not how it's provided.

Security Impact:
    - Every store instance is bound to exactly one caller's credential
    - Row-level security on the store is the primary tenant boundary; the domain
      adds owner filters on top of it, never instead of it
    - Failures carry machine codes only, never field contents

Architecture:
    - Pure abstract interfaces with zero infrastructure dependencies
    - Adapters (Supabase PostgREST, in-memory fakes) implement these ports
    - The query vocabulary is deliberately restricted to what PostgREST offers:
      single-table reads/writes, point predicates, no joins, no aggregates
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Mapping, Optional, Sequence, TypeVar, Union

from pydantic import BaseModel, Field, SecretStr

# Type variable for Result generic
T = TypeVar('T')


# ============================================================================
# Result Type for Success/Failure Communication
# ============================================================================

class ErrorKind(str, Enum):
    """Enumeration of expected failure outcomes.

    Each kind has exactly one HTTP surface status (see ``api.errors``).
    """
    INVALID_ARGUMENT = "InvalidArgument"
    MISSING_PRECONDITION = "MissingPrecondition"
    INVALID_PRECONDITION = "InvalidPrecondition"
    UNAUTHENTICATED = "Unauthenticated"
    NOT_FOUND = "NotFound"
    DUPLICATE_CONFLICT = "DuplicateConflict"
    VERSION_CONFLICT = "VersionConflict"
    NO_OP_REJECTED = "NoOpRejected"
    UPSTREAM_UNAVAILABLE = "UpstreamUnavailable"


@dataclass(frozen=True)
class Result(Generic[T]):
    """Result type for communicating success or failure without exceptions.

    Duplicates, version conflicts and missing rows are expected business
    outcomes, so they travel as values rather than raised exceptions.

    Attributes:
        success: True if the operation succeeded, False otherwise
        value: The successful result value (only present if success=True)
        error: Machine-readable error code (e.g. "patient_duplicate")
        error_type: ErrorKind of the failure
        error_details: Additional error context (operation, table, store code)

    Example:
        ```python
        result = await coordinator.read(owner_id, patient_id)
        if result.is_success():
            render(result.value)
        elif result.kind is ErrorKind.NOT_FOUND:
            ...
        ```
    """

    success: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    error_details: Optional[dict] = None

    @classmethod
    def success_result(cls, value: T) -> 'Result[T]':
        """Create a successful result.

        Parameters:
            value: The successful result value

        Returns:
            Result: Success result with the value
        """
        return cls(
            success=True,
            value=value,
            error=None,
            error_type=None,
            error_details=None
        )

    @classmethod
    def failure_result(
        cls,
        error: Union[str, Exception],
        error_type: Optional[Union[ErrorKind, str]] = None,
        error_details: Optional[dict] = None
    ) -> 'Result[T]':
        """Create a failure result.

        Parameters:
            error: Error code or exception
            error_type: ErrorKind of the failure
            error_details: Additional context (operation, table, store code)

        Returns:
            Result: Failure result with error information
        """
        error_message = str(error) if isinstance(error, Exception) else error
        if error_type is None:
            error_type = ErrorKind.UPSTREAM_UNAVAILABLE

        return cls(
            success=False,
            value=None,
            error=error_message,
            error_type=ErrorKind(error_type),
            error_details=error_details or {}
        )

    def propagate(self) -> 'Result[Any]':
        """Re-type a failure so it can be returned from a different operation."""
        return Result(
            success=False,
            error=self.error,
            error_type=self.error_type,
            error_details=self.error_details
        )

    @property
    def kind(self) -> Optional[ErrorKind]:
        """ErrorKind of a failure, None on success."""
        return self.error_type

    def is_success(self) -> bool:
        """Check if result is successful."""
        return self.success

    def is_failure(self) -> bool:
        """Check if result is a failure."""
        return not self.success


def invalid_argument(code: str, **details: Any) -> Result[Any]:
    return Result.failure_result(code, ErrorKind.INVALID_ARGUMENT, details)


def not_found(code: str, **details: Any) -> Result[Any]:
    return Result.failure_result(code, ErrorKind.NOT_FOUND, details)


# ============================================================================
# Principal
# ============================================================================

class Principal(BaseModel):
    """The authenticated caller of one request.

    Never persisted. Created when the bearer credential is verified and dropped
    when the request ends.

    Security Impact:
        - access_token is a SecretStr and never appears in logs or reprs
    """

    user_id: str = Field(..., description="Stable identifier (auth.users id)")
    access_token: SecretStr = Field(..., description="Verified bearer credential")
    email: Optional[str] = Field(None, description="Email claim, if present")


# ============================================================================
# Query Vocabulary
# ============================================================================

class FilterOperator(str, Enum):
    """Predicates supported by the remote query protocol."""
    EQ = "eq"
    NEQ = "neq"
    ILIKE = "ilike"
    IN = "in"
    IS = "is"
    GTE = "gte"
    LTE = "lte"


@dataclass(frozen=True)
class QueryFilter:
    """A single column predicate.

    ``IS`` only supports ``None`` (SQL ``IS NULL``).
    """

    column: str
    operator: FilterOperator
    value: Any

    @classmethod
    def eq(cls, column: str, value: Any) -> 'QueryFilter':
        return cls(column, FilterOperator.EQ, value)

    @classmethod
    def neq(cls, column: str, value: Any) -> 'QueryFilter':
        return cls(column, FilterOperator.NEQ, value)

    @classmethod
    def ilike(cls, column: str, pattern: str) -> 'QueryFilter':
        return cls(column, FilterOperator.ILIKE, pattern)

    @classmethod
    def in_(cls, column: str, values: Sequence[Any]) -> 'QueryFilter':
        return cls(column, FilterOperator.IN, tuple(values))

    @classmethod
    def is_null(cls, column: str) -> 'QueryFilter':
        return cls(column, FilterOperator.IS, None)

    @classmethod
    def gte(cls, column: str, value: Any) -> 'QueryFilter':
        return cls(column, FilterOperator.GTE, value)

    @classmethod
    def lte(cls, column: str, value: Any) -> 'QueryFilter':
        return cls(column, FilterOperator.LTE, value)


@dataclass(frozen=True)
class OrderBy:
    """Sort instruction pushed down to the store."""

    column: str
    descending: bool = False


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so user text only matches literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


# ============================================================================
# Ports
# ============================================================================

Row = dict[str, Any]


class RecordStorePort(ABC):
    """Abstract contract for a credential-scoped remote record store.

    Implementations are bound to exactly one principal's credential. Every
    method returns a Result; remote failures are ``UPSTREAM_UNAVAILABLE``
    with ``error_details["code"]`` carrying the store's error code (SQLSTATE
    for PostgreSQL) so callers can classify constraint violations.

    Security Impact:
        - Instances must never be shared across requests
        - No method accepts raw SQL
    """

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: Sequence[QueryFilter] = (),
        *,
        any_of: Sequence[QueryFilter] = (),
        columns: str = "*",
        order: Sequence[OrderBy] = (),
        limit: Optional[int] = None
    ) -> Result[list[Row]]:
        """Read rows from a single table.

        Parameters:
            table: Table name
            filters: Predicates combined with AND
            any_of: Predicates combined with OR (ANDed with ``filters``)
            columns: Column list in PostgREST select syntax
            order: Sort instructions
            limit: Maximum rows; None reads the full filtered set

        Returns:
            Result containing the matching rows
        """
        pass

    @abstractmethod
    async def insert(self, table: str, row: Mapping[str, Any]) -> Result[list[Row]]:
        """Insert one row and return the stored representation."""
        pass

    @abstractmethod
    async def update(
        self,
        table: str,
        values: Mapping[str, Any],
        filters: Sequence[QueryFilter]
    ) -> Result[list[Row]]:
        """Update matching rows and return the affected rows."""
        pass

    @abstractmethod
    async def delete(self, table: str, filters: Sequence[QueryFilter]) -> Result[list[Row]]:
        """Delete matching rows and return the removed rows."""
        pass

    async def close(self) -> None:
        """Release any transport held by this store."""
        return None


class TokenVerifierPort(ABC):
    """Abstract contract for bearer credential verification."""

    @abstractmethod
    def verify(self, token: str) -> Result[Principal]:
        """Verify a bearer token.

        Parameters:
            token: Raw bearer token (without the "Bearer " prefix)

        Returns:
            Result containing the Principal, or ``UNAUTHENTICATED``
        """
        pass
