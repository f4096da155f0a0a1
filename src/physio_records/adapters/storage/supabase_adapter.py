"""Supabase (PostgREST) storage adapter.

This adapter implements RecordStorePort over the supabase-py async client.
It only translates the port's restricted query vocabulary into PostgREST
query-builder calls and converts transport or protocol errors into failure
Results.

Security Impact:
    - The wrapped client carries exactly one caller's access token, so every
      call is evaluated by row-level security as that caller
    - Error messages from the store are kept in error_details for
      classification but are never surfaced to API callers

Architecture:
    - Infrastructure adapter (Hexagonal Architecture outer layer)
    - Unbounded reads are fetched page-at-a-time with ``range`` so that
      server-side max-rows limits never truncate a result silently
    - No retries: callers decide what to do with UPSTREAM_UNAVAILABLE
"""

import logging
from typing import Any, Mapping, Optional, Sequence

import httpx
from postgrest.exceptions import APIError
from supabase import AsyncClient

from physio_records.domain.ports import (
    ErrorKind,
    FilterOperator,
    OrderBy,
    QueryFilter,
    RecordStorePort,
    Result,
    Row,
)

logger = logging.getLogger(__name__)

DEFAULT_STORE_PAGE_SIZE = 1000
STORE_ERROR_CODE = "supabase_error"


def quote_filter_value(value: Any) -> str:
    """Quote a value for use inside a PostgREST logical (``or``) filter."""
    text = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


def or_clause(filters: Sequence[QueryFilter]) -> str:
    """Render predicates as a PostgREST ``or`` expression body."""
    parts = []
    for item in filters:
        if item.operator is FilterOperator.IS:
            parts.append(f"{item.column}.is.null")
        elif item.operator is FilterOperator.IN:
            values = ",".join(quote_filter_value(v) for v in item.value)
            parts.append(f"{item.column}.in.({values})")
        else:
            parts.append(f"{item.column}.{item.operator.value}.{quote_filter_value(item.value)}")
    return ",".join(parts)


def apply_filters(builder: Any, filters: Sequence[QueryFilter]) -> Any:
    """Apply AND-combined predicates to a PostgREST filter builder."""
    for item in filters:
        if item.operator is FilterOperator.EQ:
            builder = builder.eq(item.column, item.value)
        elif item.operator is FilterOperator.NEQ:
            builder = builder.neq(item.column, item.value)
        elif item.operator is FilterOperator.ILIKE:
            builder = builder.ilike(item.column, item.value)
        elif item.operator is FilterOperator.IN:
            builder = builder.in_(item.column, list(item.value))
        elif item.operator is FilterOperator.IS:
            builder = builder.is_(item.column, "null")
        elif item.operator is FilterOperator.GTE:
            builder = builder.gte(item.column, item.value)
        elif item.operator is FilterOperator.LTE:
            builder = builder.lte(item.column, item.value)
        else:
            raise ValueError(f"Unsupported filter operator: {item.operator}")
    return builder


class SupabaseRecordStore(RecordStorePort):
    """RecordStorePort backed by one request-scoped supabase AsyncClient.

    Parameters:
        client: supabase AsyncClient already bound to the caller's token
        page_size: Rows per chunk for unbounded reads
    """

    def __init__(self, client: AsyncClient, page_size: int = DEFAULT_STORE_PAGE_SIZE):
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self.client = client
        self.page_size = page_size

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
        def build():
            builder = apply_filters(self.client.table(table).select(columns), filters)
            if any_of:
                builder = builder.or_(or_clause(any_of))
            for item in order:
                builder = builder.order(item.column, desc=item.descending)
            return builder

        if limit is not None:
            return await self._execute("select", table, build().limit(limit))

        # Chunks need a stable order; id is the primary key of every table.
        if not any(item.column == "id" for item in order):
            order = (*order, OrderBy("id"))

        rows: list[Row] = []
        start = 0
        while True:
            chunk = await self._execute(
                "select", table, build().range(start, start + self.page_size - 1)
            )
            if chunk.is_failure():
                return chunk
            rows.extend(chunk.value)
            if len(chunk.value) < self.page_size:
                return Result.success_result(rows)
            start += self.page_size

    async def insert(self, table: str, row: Mapping[str, Any]) -> Result[list[Row]]:
        return await self._execute("insert", table, self.client.table(table).insert(dict(row)))

    async def update(
        self,
        table: str,
        values: Mapping[str, Any],
        filters: Sequence[QueryFilter]
    ) -> Result[list[Row]]:
        if not filters:
            raise ValueError("Refusing to update without filters")
        builder = apply_filters(self.client.table(table).update(dict(values)), filters)
        return await self._execute("update", table, builder)

    async def delete(self, table: str, filters: Sequence[QueryFilter]) -> Result[list[Row]]:
        if not filters:
            raise ValueError("Refusing to delete without filters")
        builder = apply_filters(self.client.table(table).delete(), filters)
        return await self._execute("delete", table, builder)

    async def close(self) -> None:
        """Close the underlying PostgREST HTTP session."""
        await self.client.postgrest.aclose()

    async def _execute(self, operation: str, table: str, builder: Any) -> Result[list[Row]]:
        try:
            response = await builder.execute()
        except APIError as e:
            logger.warning(f"PostgREST {operation} on {table} failed with code {e.code}")
            return Result.failure_result(
                STORE_ERROR_CODE,
                ErrorKind.UPSTREAM_UNAVAILABLE,
                {"code": e.code, "message": e.message, "table": table, "operation": operation}
            )
        except httpx.HTTPError as e:
            logger.warning(f"Transport error during {operation} on {table}: {type(e).__name__}")
            return Result.failure_result(
                STORE_ERROR_CODE,
                ErrorKind.UPSTREAM_UNAVAILABLE,
                {"code": None, "table": table, "operation": operation, "transport": type(e).__name__}
            )

        data = response.data
        if data is None:
            data = []
        if not isinstance(data, list) or not all(isinstance(row, dict) for row in data):
            logger.warning(f"Malformed PostgREST response for {operation} on {table}")
            return Result.failure_result(
                "malformed_response",
                ErrorKind.UPSTREAM_UNAVAILABLE,
                {"code": None, "table": table, "operation": operation}
            )
        return Result.success_result(data)
