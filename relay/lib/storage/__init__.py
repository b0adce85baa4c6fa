"""Object store backends.

Provides a unified list/get/put interface over S3 and the local filesystem.

Usage:
    from relay.lib.storage import get_object_store

    store = get_object_store()                      # S3 via boto3
    store = get_object_store(local_root="./data")   # directories as buckets
"""

from __future__ import annotations

from typing import Optional

from relay.lib.resilience import RetryConfig
from relay.lib.storage.base import ObjectDescriptor, ObjectStore, PutAck, filter_descriptors
from relay.lib.storage.local import LocalObjectStore
from relay.lib.storage.s3 import S3ObjectStore

__all__ = [
    "ObjectDescriptor",
    "ObjectStore",
    "PutAck",
    "LocalObjectStore",
    "S3ObjectStore",
    "filter_descriptors",
    "get_object_store",
]


def get_object_store(
    *,
    local_root: Optional[str] = None,
    endpoint_url: Optional[str] = None,
    region: Optional[str] = None,
    max_pool_connections: int = 10,
    retry: Optional[RetryConfig] = None,
) -> ObjectStore:
    """Create the object store a run should use.

    Args:
        local_root: When set, buckets are sub-directories of this path
        endpoint_url: Custom S3 endpoint (MinIO, LocalStack)
        region: AWS region
        max_pool_connections: HTTP connection pool size for S3
        retry: Retry policy for transient S3 failures

    Returns:
        LocalObjectStore when ``local_root`` is given, else S3ObjectStore
    """
    if local_root:
        return LocalObjectStore(local_root)
    return S3ObjectStore(
        endpoint_url=endpoint_url,
        region=region,
        max_pool_connections=max_pool_connections,
        retry=retry,
    )
