"""Aggregation Engine.

Computes per-parent metrics over a child collection (count, most recent
timestamp, id of the most recent child). PostgREST cannot express aggregate
joins, so child rows are batch-fetched with an ``in`` filter and reduced in
memory.

The batched lookup by parent-id set is the abstraction boundary: if the store
gains aggregate pushdown, only this module changes.

Scaling limit: the full matching child set for the requested parents is held
in memory. Per-owner child counts are bounded, so this is acceptable.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from physio_records.domain.ports import ErrorKind, QueryFilter, RecordStorePort, Result
from physio_records.domain.services.concurrency_token import parse_timestamp

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 200


@dataclass(frozen=True)
class ChildAggregate:
    """Derived metrics for one parent's child rows."""

    latest_child_timestamp: Optional[datetime]
    child_count: int
    latest_child_id: Optional[str] = None


class AggregationEngine:
    """Batch child-metric lookup for a parent/child table pair.

    Parameters:
        store: Credential-scoped record store
        child_table: Table holding the child rows
        parent_column: Child column referencing the parent id
        timestamp_column: Child column whose maximum is reported
        id_column: Child primary key column
        batch_size: Maximum parent ids per ``in`` filter
    """

    def __init__(
        self,
        store: RecordStorePort,
        child_table: str,
        parent_column: str,
        timestamp_column: str,
        id_column: str = "id",
        batch_size: int = DEFAULT_BATCH_SIZE
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.store = store
        self.child_table = child_table
        self.parent_column = parent_column
        self.timestamp_column = timestamp_column
        self.id_column = id_column
        self.batch_size = batch_size

    async def compute_aggregates(self, parent_ids: Iterable[str]) -> Result[dict[str, ChildAggregate]]:
        """Compute child metrics for every parent in ``parent_ids``.

        Parents without children are absent from the returned map; callers
        must treat a missing entry as zero children.

        Parameters:
            parent_ids: Parent identifiers (duplicates are ignored)

        Returns:
            Result containing a map of parent id to ChildAggregate
        """
        unique_ids = sorted({str(parent_id) for parent_id in parent_ids if parent_id is not None})
        if not unique_ids:
            return Result.success_result({})

        batches = [
            unique_ids[start:start + self.batch_size]
            for start in range(0, len(unique_ids), self.batch_size)
        ]
        columns = f"{self.parent_column},{self.timestamp_column},{self.id_column}"
        results = await asyncio.gather(*(
            self.store.select(
                self.child_table,
                [QueryFilter.in_(self.parent_column, batch)],
                columns=columns
            )
            for batch in batches
        ))

        rows = []
        for result in results:
            if result.is_failure():
                logger.error(
                    f"Aggregate read failed on {self.child_table} "
                    f"for {len(unique_ids)} parents: {result.error}"
                )
                return result.propagate()
            rows.extend(result.value or [])

        return self._reduce(rows)

    def _reduce(self, rows: list[dict]) -> Result[dict[str, ChildAggregate]]:
        latest: dict[str, tuple[Optional[datetime], Optional[str]]] = {}
        counts: dict[str, int] = {}

        for row in rows:
            parent_id = row.get(self.parent_column)
            if parent_id is None:
                continue
            parent_id = str(parent_id)

            raw_timestamp = row.get(self.timestamp_column)
            timestamp = parse_timestamp(raw_timestamp) if raw_timestamp is not None else None
            if raw_timestamp is not None and timestamp is None:
                return Result.failure_result(
                    "aggregate_malformed_row",
                    ErrorKind.UPSTREAM_UNAVAILABLE,
                    {"table": self.child_table, "column": self.timestamp_column}
                )

            counts[parent_id] = counts.get(parent_id, 0) + 1
            current_timestamp, _ = latest.get(parent_id, (None, None))
            if timestamp is not None and (current_timestamp is None or timestamp > current_timestamp):
                child_id = row.get(self.id_column)
                latest[parent_id] = (timestamp, str(child_id) if child_id is not None else None)
            elif parent_id not in latest:
                latest[parent_id] = (None, None)

        return Result.success_result({
            parent_id: ChildAggregate(
                latest_child_timestamp=latest[parent_id][0],
                child_count=count,
                latest_child_id=latest[parent_id][1]
            )
            for parent_id, count in counts.items()
        })
