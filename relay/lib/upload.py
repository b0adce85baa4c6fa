"""Upload stage: encode chunks and put them under deterministic keys."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import pyarrow as pa

from relay.lib.codec import ParquetCodec, TableCodec, file_extension, normalize_compression
from relay.lib.errors import EncodeError, StoreError, UploadError
from relay.lib.storage.base import ObjectStore
from relay.lib.tasks import run_indexed

logger = logging.getLogger(__name__)

__all__ = ["KeyTemplate", "UploadReceipt", "upload_chunks"]


@dataclass(frozen=True)
class KeyTemplate:
    """Builds destination keys ``{prefix}/{stem}{index}{extension}``.

    Keys depend only on the chunk index, so they are distinct for distinct
    chunks whatever order the uploads finish in.
    """

    prefix: str = "processed"
    stem: str = "file"
    compression: str = "snappy"

    def key_for(self, index: int) -> str:
        name = f"{self.stem}{index}{file_extension(self.compression)}"
        prefix = self.prefix.strip("/")
        return f"{prefix}/{name}" if prefix else name


@dataclass(frozen=True)
class UploadReceipt:
    """One uploaded chunk."""

    index: int
    bucket: str
    key: str
    rows: int
    bytes_written: int
    etag: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "bucket": self.bucket,
            "key": self.key,
            "rows": self.rows,
            "bytes_written": self.bytes_written,
            "etag": self.etag,
        }


class _LandedKeys:
    """Keys that reached the store, for reporting partial writes."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._keys: List[str] = []

    def add(self, key: str) -> None:
        with self._lock:
            self._keys.append(key)

    def snapshot(self) -> List[str]:
        with self._lock:
            return sorted(self._keys)


def upload_chunks(
    store: ObjectStore,
    chunks: Sequence[pa.Table],
    bucket: str,
    *,
    keys: Optional[KeyTemplate] = None,
    codec: Optional[TableCodec] = None,
    max_workers: int = 4,
) -> List[UploadReceipt]:
    """Encode and upload every chunk concurrently.

    Args:
        store: Destination object store
        chunks: Ordered chunks; chunk ``i`` is written to ``keys.key_for(i)``
        bucket: Destination bucket
        keys: Key template (``processed/file{i}.snappy.parquet`` by default)
        codec: Payload encoder (parquet by default)
        max_workers: Concurrent uploads

    Returns:
        One receipt per chunk, ordered by chunk index

    Raises:
        EncodeError: If a chunk cannot be encoded
        UploadError: If a put fails. Chunks that were already written stay
            in the bucket; their keys are listed on the error.
    """
    keys = keys or KeyTemplate()
    codec = codec or ParquetCodec()
    compression = normalize_compression(keys.compression)
    landed = _LandedKeys()

    if not chunks:
        logger.info("No chunks to upload")
        return []

    def _upload_one(index: int, chunk: pa.Table) -> UploadReceipt:
        key = keys.key_for(index)
        try:
            payload = codec.encode(chunk, compression)
        except EncodeError as e:
            raise EncodeError(
                f"Failed to encode chunk {index}",
                index=index,
                bucket=bucket,
                key=key,
                cause=e.cause or e,
            ) from e

        try:
            ack = store.put_object(bucket, key, payload)
        except StoreError as e:
            raise UploadError(
                f"Failed to upload chunk {index} to {store.scheme}://{bucket}/{key}",
                index=index,
                bucket=bucket,
                key=key,
                cause=e,
            ) from e

        landed.add(key)
        return UploadReceipt(
            index=index,
            bucket=bucket,
            key=key,
            rows=chunk.num_rows,
            bytes_written=ack.bytes_written,
            etag=ack.etag,
        )

    try:
        receipts = run_indexed(_upload_one, chunks, max_workers=max_workers, label="upload")
    except (EncodeError, UploadError) as e:
        written = landed.snapshot()
        if written:
            logger.error(
                "Upload batch failed after %d of %d chunk(s) were written; "
                "written objects are left in place: %s",
                len(written),
                len(chunks),
                ", ".join(written),
            )
        if isinstance(e, UploadError) and written:
            raise UploadError(
                e.message,
                index=e.index,
                bucket=e.bucket,
                key=e.key,
                uploaded_keys=written,
                cause=e.cause,
            ) from e
        raise

    total_bytes = sum(r.bytes_written for r in receipts)
    logger.info(
        "Uploaded %d chunk(s), %d bytes to %s://%s/%s",
        len(receipts),
        total_bytes,
        store.scheme,
        bucket,
        keys.prefix.strip("/"),
    )
    return receipts
