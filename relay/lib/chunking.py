"""Chunking stage: split a table into size-bounded, ordered sub-tables.

The plan is derived from the table's in-memory size (``Table.nbytes``):

    chunk_count    = total_bytes // target_bytes + 1
    rows_per_chunk = ceil(total_rows / chunk_count)

Exactly as many slices as are needed to cover every row are produced, so
no slice is ever empty. When there are fewer rows than ``chunk_count`` the
result simply has fewer chunks.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

import pyarrow as pa

from relay.lib.errors import ChunkingError
from relay.lib.tasks import run_indexed

logger = logging.getLogger(__name__)

__all__ = ["ChunkPlan", "chunk_table", "estimate_table_size", "plan_chunks"]


def estimate_table_size(table: pa.Table) -> int:
    """Estimated in-memory size of a table in bytes."""
    return int(table.nbytes)


@dataclass(frozen=True)
class ChunkPlan:
    """How a table is split into chunks."""

    chunk_count: int
    rows_per_chunk: int
    total_rows: int
    total_bytes: int

    @property
    def slice_count(self) -> int:
        """Number of non-empty slices the plan yields."""
        if self.total_rows == 0:
            return 0
        return math.ceil(self.total_rows / self.rows_per_chunk)

    def slice_bounds(self) -> Iterator[Tuple[int, int, int]]:
        """Yield ``(index, offset, length)`` for every non-empty slice."""
        for index in range(self.slice_count):
            offset = index * self.rows_per_chunk
            length = min(self.rows_per_chunk, self.total_rows - offset)
            yield index, offset, length


def plan_chunks(
    total_bytes: int,
    total_rows: int,
    target_bytes: int,
    max_rows_per_chunk: Optional[int] = None,
) -> ChunkPlan:
    """Compute a chunk plan.

    Args:
        total_bytes: Estimated size of the whole table
        total_rows: Row count of the whole table
        target_bytes: Desired upper bound per chunk (best effort)
        max_rows_per_chunk: Optional hard cap on rows per chunk

    Raises:
        ChunkingError: If ``target_bytes`` or ``max_rows_per_chunk`` is not positive
    """
    if target_bytes <= 0:
        raise ChunkingError(
            "Chunk target size must be positive",
            details={"target_bytes": target_bytes},
        )
    if max_rows_per_chunk is not None and max_rows_per_chunk <= 0:
        raise ChunkingError(
            "max_rows_per_chunk must be positive when set",
            details={"max_rows_per_chunk": max_rows_per_chunk},
        )

    chunk_count = max(0, total_bytes) // target_bytes + 1
    rows_per_chunk = max(1, math.ceil(total_rows / chunk_count))
    if max_rows_per_chunk is not None:
        rows_per_chunk = min(rows_per_chunk, max_rows_per_chunk)

    return ChunkPlan(
        chunk_count=chunk_count,
        rows_per_chunk=rows_per_chunk,
        total_rows=total_rows,
        total_bytes=total_bytes,
    )


def chunk_table(
    table: pa.Table,
    target_bytes: int,
    *,
    max_rows_per_chunk: Optional[int] = None,
    max_workers: int = 4,
) -> List[pa.Table]:
    """Split a table into ordered chunks.

    Concatenating the returned chunks in order reproduces ``table`` exactly.
    A zero-row table yields an empty list.

    Args:
        table: Table to split
        target_bytes: Desired upper bound per chunk (best effort)
        max_rows_per_chunk: Optional hard cap on rows per chunk
        max_workers: Slices computed concurrently

    Raises:
        ChunkingError: If the plan parameters are not positive
    """
    plan = plan_chunks(
        estimate_table_size(table),
        table.num_rows,
        target_bytes,
        max_rows_per_chunk,
    )

    bounds = list(plan.slice_bounds())
    if not bounds:
        logger.info("Table has no rows; nothing to chunk")
        return []

    chunks = run_indexed(
        lambda _idx, bound: table.slice(bound[1], bound[2]),
        bounds,
        max_workers=max_workers,
        label="slice",
    )

    logger.info(
        "Split %d rows (%d bytes) into %d chunk(s) of up to %d rows (planned %d)",
        plan.total_rows,
        plan.total_bytes,
        len(chunks),
        plan.rows_per_chunk,
        plan.chunk_count,
    )
    return chunks
