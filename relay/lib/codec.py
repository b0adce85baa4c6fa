"""Parquet codec: bytes to Arrow tables and back."""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Optional, Union

import pyarrow as pa
import pyarrow.parquet as pq

from relay.lib.errors import ConfigurationError, EncodeError, MalformedDataError, PersistError

logger = logging.getLogger(__name__)

__all__ = [
    "SUPPORTED_COMPRESSIONS",
    "ParquetCodec",
    "TableCodec",
    "file_extension",
    "normalize_compression",
]

SUPPORTED_COMPRESSIONS = ("snappy", "zstd", "gzip", "lz4", "brotli", "none")


def normalize_compression(compression: Optional[str]) -> str:
    """Lower-case a compression name and map None/"uncompressed" to "none"."""
    value = (compression or "none").strip().lower()
    if value in ("uncompressed", ""):
        value = "none"
    if value not in SUPPORTED_COMPRESSIONS:
        raise ConfigurationError(
            f"Unsupported parquet compression '{compression}'",
            field="compression",
            value=compression,
            suggestion=f"Use one of: {', '.join(SUPPORTED_COMPRESSIONS)}",
        )
    return value


def file_extension(compression: str) -> str:
    """Object key extension for a compression, e.g. ``.snappy.parquet``."""
    codec = normalize_compression(compression)
    if codec == "none":
        return ".parquet"
    return f".{codec}.parquet"


class TableCodec:
    """Interface for turning object payloads into tables and back."""

    def decode(self, data: bytes) -> pa.Table:
        raise NotImplementedError

    def encode(self, table: pa.Table, compression: str = "snappy") -> bytes:
        raise NotImplementedError

    def write_file(
        self,
        table: pa.Table,
        path: Union[str, Path],
        compression: str = "snappy",
    ) -> Path:
        """Persist a table to a local file.

        Raises:
            PersistError: If the directory or file cannot be written
        """
        out_path = Path(path)
        payload = self.encode(table, compression)
        try:
            out_path.parent.mkdir(parents=True, exist_ok=True)
            out_path.write_bytes(payload)
        except OSError as e:
            raise PersistError(
                f"Failed to write {table.num_rows} rows to {out_path}",
                path=str(out_path),
                cause=e,
            ) from e
        logger.info("Wrote %d rows to %s", table.num_rows, out_path)
        return out_path


class ParquetCodec(TableCodec):
    """Parquet codec backed by pyarrow.

    pyarrow releases the GIL while reading and writing, so decode and
    encode calls made from worker threads run in parallel.
    """

    def decode(self, data: bytes) -> pa.Table:
        try:
            return pq.read_table(pa.BufferReader(data))
        except (pa.ArrowException, OSError) as e:
            raise MalformedDataError(
                f"Payload is not a readable parquet file ({len(data)} bytes)",
                cause=e,
            ) from e

    def encode(self, table: pa.Table, compression: str = "snappy") -> bytes:
        codec = normalize_compression(compression)
        sink = io.BytesIO()
        try:
            pq.write_table(table, sink, compression=codec)
        except (pa.ArrowException, OSError) as e:
            raise EncodeError(
                f"Failed to encode {table.num_rows} rows as parquet ({codec})",
                cause=e,
            ) from e
        return sink.getvalue()
