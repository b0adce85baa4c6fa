"""Local filesystem object store.

Treats each sub-directory of a root directory as a bucket and each file
path below it as a key. Useful for development runs and for persisting a
result table next to the remote upload.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import List, Optional

from relay.lib.errors import AccessDeniedError, ObjectNotFoundError, StoreUnavailableError
from relay.lib.storage.base import (
    ObjectDescriptor,
    ObjectStore,
    PutAck,
    filter_descriptors,
)

logger = logging.getLogger(__name__)

__all__ = ["LocalObjectStore"]


class LocalObjectStore(ObjectStore):
    """Local filesystem object store.

    Example:
        >>> store = LocalObjectStore("./data")
        >>> store.put_object("curated", "processed/file0.snappy.parquet", payload)
        >>> [d.key for d in store.list_objects("curated", prefix="processed/")]
        ['processed/file0.snappy.parquet']
    """

    def __init__(self, root: str | os.PathLike[str]) -> None:
        self.root = Path(root).resolve()

    @property
    def scheme(self) -> str:
        return "file"

    def _bucket_dir(self, bucket: str) -> Path:
        return self.root / bucket

    def _object_path(self, bucket: str, key: str) -> Path:
        bucket_dir = self._bucket_dir(bucket)
        path = (bucket_dir / key).resolve()
        if bucket_dir.resolve() not in path.parents:
            raise AccessDeniedError(
                f"Key escapes bucket directory: {key}",
                bucket=bucket,
                key=key,
            )
        return path

    def list_objects(
        self,
        bucket: str,
        prefix: str = "",
        pattern: Optional[str] = None,
    ) -> List[ObjectDescriptor]:
        bucket_dir = self._bucket_dir(bucket)
        if not bucket_dir.is_dir():
            raise ObjectNotFoundError(
                f"Bucket directory not found: {bucket_dir}",
                bucket=bucket,
                operation="list",
            )

        descriptors: List[ObjectDescriptor] = []
        for path in bucket_dir.rglob("*"):
            if not path.is_file():
                continue
            key = path.relative_to(bucket_dir).as_posix()
            if prefix and not key.startswith(prefix):
                continue
            descriptors.append(ObjectDescriptor(bucket=bucket, key=key, size=path.stat().st_size))

        logger.debug("Listed %d files under %s/%s", len(descriptors), bucket_dir, prefix)
        return filter_descriptors(descriptors, pattern)

    def get_object(self, bucket: str, key: str) -> bytes:
        path = self._object_path(bucket, key)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise ObjectNotFoundError(
                f"File not found: {path}", bucket=bucket, key=key, operation="get", cause=e
            ) from e
        except PermissionError as e:
            raise AccessDeniedError(
                f"Permission denied reading {path}", bucket=bucket, key=key, operation="get", cause=e
            ) from e
        except OSError as e:
            raise StoreUnavailableError(
                f"Failed to read {path}: {e}", bucket=bucket, key=key, operation="get", cause=e
            ) from e

    def put_object(self, bucket: str, key: str, data: bytes) -> PutAck:
        path = self._object_path(bucket, key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            # Write to a sibling temp file then rename so readers never see a partial file
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, path)
        except PermissionError as e:
            raise AccessDeniedError(
                f"Permission denied writing {path}", bucket=bucket, key=key, operation="put", cause=e
            ) from e
        except OSError as e:
            raise StoreUnavailableError(
                f"Failed to write {path}: {e}", bucket=bucket, key=key, operation="put", cause=e
            ) from e

        logger.info("Wrote %d bytes to %s", len(data), path)
        return PutAck(bucket=bucket, key=key, bytes_written=len(data))
