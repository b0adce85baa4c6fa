"""Fetch-and-merge stage.

Lists the objects under a source prefix, downloads and decodes each one
concurrently, then concatenates the decoded tables in listing order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

import pyarrow as pa

from relay.lib.codec import ParquetCodec, TableCodec
from relay.lib.errors import (
    DecodeError,
    FetchError,
    ListError,
    MalformedDataError,
    MergeError,
    StoreError,
)
from relay.lib.storage.base import ObjectDescriptor, ObjectStore
from relay.lib.tasks import run_indexed

logger = logging.getLogger(__name__)

__all__ = [
    "MergePolicy",
    "MergeResult",
    "fetch_and_merge",
    "fetch_tables",
    "list_source_objects",
    "merge_tables",
]


class MergePolicy(Enum):
    """How differing column sets are reconciled during concatenation."""

    RELAXED = "relaxed"  # union of columns, nulls for absent values
    STRICT = "strict"  # identical column names and types required

    @classmethod
    def choices(cls) -> List[str]:
        return [p.value for p in cls]

    @classmethod
    def normalize(cls, value: "MergePolicy | str") -> "MergePolicy":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(
                f"Invalid merge policy '{value}'. Valid options: {', '.join(cls.choices())}"
            ) from None


@dataclass
class MergeResult:
    """Output of the fetch-and-merge stage.

    ``table`` is None when the listing matched no objects, which is distinct
    from objects that decode to zero rows.
    """

    table: Optional[pa.Table]
    objects: List[ObjectDescriptor] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.table is None

    @property
    def num_rows(self) -> int:
        return 0 if self.table is None else self.table.num_rows

    @classmethod
    def empty(cls) -> "MergeResult":
        return cls(table=None, objects=[])


def list_source_objects(
    store: ObjectStore,
    bucket: str,
    prefix: str = "",
    pattern: Optional[str] = None,
) -> List[ObjectDescriptor]:
    """List phase: every matching object, in key order."""
    try:
        objects = store.list_objects(bucket, prefix=prefix, pattern=pattern)
    except StoreError as e:
        raise ListError(
            f"Failed to list source objects: {e.message}",
            bucket=bucket,
            prefix=prefix,
            cause=e,
        ) from e
    logger.info("Found %d object(s) under %s://%s/%s", len(objects), store.scheme, bucket, prefix)
    return objects


def _fetch_one(store: ObjectStore, codec: TableCodec, descriptor: ObjectDescriptor) -> pa.Table:
    try:
        data = store.get_object(descriptor.bucket, descriptor.key)
    except StoreError as e:
        raise FetchError(
            f"Failed to download {descriptor.uri(store.scheme)}",
            bucket=descriptor.bucket,
            key=descriptor.key,
            cause=e,
        ) from e

    try:
        table = codec.decode(data)
    except MalformedDataError as e:
        raise DecodeError(
            f"Failed to decode {descriptor.uri(store.scheme)}",
            bucket=descriptor.bucket,
            key=descriptor.key,
            cause=e,
        ) from e

    logger.debug("Decoded %s: %d rows", descriptor.key, table.num_rows)
    return table


def fetch_tables(
    store: ObjectStore,
    objects: Sequence[ObjectDescriptor],
    codec: Optional[TableCodec] = None,
    max_workers: int = 8,
) -> List[pa.Table]:
    """Fetch phase: download and decode every object concurrently.

    Returns:
        Decoded tables in the same order as ``objects``

    Raises:
        FetchError: If a download fails
        DecodeError: If a payload is not a readable table
    """
    codec = codec or ParquetCodec()
    return run_indexed(
        lambda _idx, descriptor: _fetch_one(store, codec, descriptor),
        objects,
        max_workers=max_workers,
        label="fetch",
    )


def merge_tables(
    tables: Sequence[pa.Table],
    policy: "MergePolicy | str" = MergePolicy.RELAXED,
) -> pa.Table:
    """Join phase: concatenate tables in order under a merge policy.

    Raises:
        MergeError: If the tables cannot be combined under the policy
    """
    policy = MergePolicy.normalize(policy)
    if not tables:
        raise MergeError("No tables to merge", policy=policy.value)
    if len(tables) == 1:
        return tables[0]

    if policy is MergePolicy.STRICT:
        aligned = _align_strict(tables)
        promote = "none"
    else:
        aligned = list(tables)
        promote = "permissive"

    try:
        return pa.concat_tables(aligned, promote_options=promote)
    except (pa.ArrowInvalid, pa.ArrowTypeError) as e:
        raise MergeError(
            f"Cannot concatenate {len(tables)} tables: {e}",
            policy=policy.value,
            cause=e,
        ) from e


def _align_strict(tables: Sequence[pa.Table]) -> List[pa.Table]:
    """Reorder columns to match the first table; names must be identical."""
    reference = tables[0].column_names
    expected = set(reference)
    aligned = [tables[0]]
    for position, table in enumerate(tables[1:], start=1):
        names = set(table.column_names)
        if names != expected:
            missing = sorted(expected - names)
            extra = sorted(names - expected)
            raise MergeError(
                f"Table {position} has a different column set",
                policy=MergePolicy.STRICT.value,
                details={"missing": missing, "unexpected": extra},
            )
        aligned.append(table.select(reference))
    return aligned


def fetch_and_merge(
    store: ObjectStore,
    bucket: str,
    prefix: str = "",
    *,
    pattern: Optional[str] = None,
    codec: Optional[TableCodec] = None,
    policy: "MergePolicy | str" = MergePolicy.RELAXED,
    max_workers: int = 8,
) -> MergeResult:
    """List, fetch and merge every object under ``bucket/prefix``.

    Args:
        store: Object store holding the source bucket
        bucket: Source bucket
        prefix: Key prefix to list
        pattern: Optional basename glob (e.g. ``*.parquet``)
        codec: Payload decoder (parquet by default)
        policy: Merge policy for differing column sets
        max_workers: Concurrent downloads

    Returns:
        MergeResult; ``is_empty`` when nothing matched the listing
    """
    objects = list_source_objects(store, bucket, prefix, pattern)
    if not objects:
        logger.warning("No source objects under %s://%s/%s", store.scheme, bucket, prefix)
        return MergeResult.empty()

    tables = fetch_tables(store, objects, codec=codec, max_workers=max_workers)
    merged = merge_tables(tables, policy)
    del tables

    logger.info("Merged %d rows from %d object(s)", merged.num_rows, len(objects))
    return MergeResult(table=merged, objects=list(objects))
