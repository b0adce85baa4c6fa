"""Relay pipeline: fetch/merge -> (persist) -> query -> chunk -> upload.

Each stage hands its table to the next and drops its own reference, so
only one stage holds a given table at a time.

Example:
    config = RelayConfig(source_bucket="raw", prefix="events/", destination_bucket="curated")
    summary = RelayPipeline(config).run()
    print(summary.to_dict())
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import pyarrow as pa

from relay.lib.chunking import chunk_table
from relay.lib.codec import ParquetCodec, TableCodec
from relay.lib.config import RelayConfig
from relay.lib.errors import RelayError
from relay.lib.fetch import fetch_and_merge
from relay.lib.logging import RunLogger
from relay.lib.query import IbisQueryEngine, QueryEngine
from relay.lib.storage import ObjectStore, get_object_store
from relay.lib.upload import KeyTemplate, UploadReceipt, upload_chunks

logger = logging.getLogger(__name__)

__all__ = ["RelayPipeline", "RunSummary", "run_relay"]


@dataclass
class RunSummary:
    """What a relay run did."""

    source_objects: int = 0
    source_rows: int = 0
    result_rows: int = 0
    chunk_count: int = 0
    uploads: List[UploadReceipt] = field(default_factory=list)
    local_path: Optional[str] = None
    duration_seconds: float = 0.0
    empty_source: bool = False

    @property
    def bytes_uploaded(self) -> int:
        return sum(r.bytes_written for r in self.uploads)

    @property
    def uploaded_keys(self) -> List[str]:
        return [r.key for r in self.uploads]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_objects": self.source_objects,
            "source_rows": self.source_rows,
            "result_rows": self.result_rows,
            "chunk_count": self.chunk_count,
            "uploads": [r.to_dict() for r in self.uploads],
            "bytes_uploaded": self.bytes_uploaded,
            "local_path": self.local_path,
            "duration_seconds": round(self.duration_seconds, 3),
            "empty_source": self.empty_source,
        }


class RelayPipeline:
    """Run one relay from a source prefix to a destination bucket.

    Collaborators default to the real implementations (S3 or local store,
    parquet codec, Ibis/DuckDB engine) and may be injected for tests or
    alternative backends.
    """

    def __init__(
        self,
        config: RelayConfig,
        *,
        store: Optional[ObjectStore] = None,
        destination_store: Optional[ObjectStore] = None,
        codec: Optional[TableCodec] = None,
        engine: Optional[QueryEngine] = None,
    ) -> None:
        self.config = config.validate()
        self.store = store or get_object_store(
            local_root=config.local_root,
            endpoint_url=config.endpoint_url,
            region=config.region,
            max_pool_connections=config.max_workers,
        )
        self.destination_store = destination_store or self.store
        self.codec = codec or ParquetCodec()
        self._engine = engine
        self._owns_engine = engine is None
        self.log = RunLogger.for_module(
            __name__,
            source_bucket=config.source_bucket,
            destination_bucket=config.destination_bucket,
        )

    @property
    def engine(self) -> QueryEngine:
        if self._engine is None:
            self._engine = IbisQueryEngine()
        return self._engine

    def run(self) -> RunSummary:
        """Execute every stage and return a summary.

        Raises:
            RelayError: Any stage failure aborts the run. Objects uploaded
                before the failure are not removed.
        """
        started = time.perf_counter()
        summary = RunSummary()
        cfg = self.config

        self.log.info(
            "Starting relay from %s://%s/%s",
            self.store.scheme,
            cfg.source_bucket,
            cfg.prefix,
        )

        try:
            merged = fetch_and_merge(
                self.store,
                cfg.source_bucket,
                cfg.prefix,
                pattern=cfg.pattern,
                codec=self.codec,
                policy=cfg.merge_policy,
                max_workers=cfg.max_workers,
            )
            summary.source_objects = len(merged.objects)

            if merged.is_empty:
                summary.empty_source = True
                self.log.warning("Source prefix is empty; nothing to relay")
                return summary

            table = merged.table
            merged.table = None
            summary.source_rows = table.num_rows
            self.log.metric("rows_merged", summary.source_rows, unit="rows")

            if cfg.save_local:
                summary.local_path = str(self._persist_local(table))

            result = self._query(table)
            del table
            summary.result_rows = result.num_rows
            self.log.metric("rows_selected", summary.result_rows, unit="rows")

            chunks = chunk_table(
                result,
                cfg.chunk_target_bytes,
                max_rows_per_chunk=cfg.max_rows_per_chunk,
                max_workers=cfg.max_workers,
            )
            del result
            summary.chunk_count = len(chunks)

            if cfg.destination_bucket:
                summary.uploads = upload_chunks(
                    self.destination_store,
                    chunks,
                    cfg.destination_bucket,
                    keys=KeyTemplate(
                        prefix=cfg.key_prefix,
                        stem=cfg.file_stem,
                        compression=cfg.compression,
                    ),
                    codec=self.codec,
                    max_workers=cfg.max_workers,
                )
                self.log.metric("bytes_uploaded", summary.bytes_uploaded, unit="bytes")
            else:
                self.log.info("No destination bucket configured; skipping upload of %d chunk(s)", len(chunks))
        except RelayError as e:
            self.log.error("Relay failed: %s", e.message, extra={"error": e.to_dict()})
            raise
        finally:
            summary.duration_seconds = time.perf_counter() - started

        self.log.info(
            "Relay complete: %d object(s), %d row(s) in, %d row(s) out, %d chunk(s) uploaded in %.2fs",
            summary.source_objects,
            summary.source_rows,
            summary.result_rows,
            len(summary.uploads),
            summary.duration_seconds,
        )
        return summary

    def _persist_local(self, table: pa.Table) -> Path:
        return self.codec.write_file(table, self.config.local_output_path, self.config.compression)

    def _query(self, table: pa.Table) -> pa.Table:
        engine = self.engine
        try:
            engine.register_table(self.config.table_name, table)
            return engine.execute(self.config.query)
        finally:
            if self._owns_engine:
                self.close()

    def close(self) -> None:
        """Release the query engine if this pipeline created it."""
        if self._owns_engine and self._engine is not None:
            self._engine.close()
            self._engine = None


def run_relay(config: RelayConfig, **collaborators: Any) -> RunSummary:
    """Convenience wrapper: build a RelayPipeline and run it once."""
    pipeline = RelayPipeline(config, **collaborators)
    try:
        return pipeline.run()
    finally:
        pipeline.close()
