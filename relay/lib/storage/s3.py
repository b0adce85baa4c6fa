"""S3-compatible object store using boto3.

Supports AWS S3, MinIO, LocalStack and any S3-compatible object storage.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from relay.lib.errors import (
    AccessDeniedError,
    ObjectNotFoundError,
    StoreError,
    StoreUnavailableError,
)
from relay.lib.resilience import RetryConfig, retry_store_call
from relay.lib.storage.base import (
    ObjectDescriptor,
    ObjectStore,
    PutAck,
    filter_descriptors,
)

logger = logging.getLogger(__name__)

__all__ = ["S3ObjectStore", "translate_boto_error"]

_NOT_FOUND_CODES = frozenset({"NoSuchBucket", "NoSuchKey", "NotFound", "404"})
_ACCESS_DENIED_CODES = frozenset(
    {
        "AccessDenied",
        "AllAccessDisabled",
        "InvalidAccessKeyId",
        "SignatureDoesNotMatch",
        "403",
    }
)


def translate_boto_error(
    error: Exception,
    *,
    bucket: str,
    key: Optional[str] = None,
    operation: str,
) -> StoreError:
    """Map a boto3/botocore exception onto the store error kinds.

    Args:
        error: Exception raised by the boto3 client
        bucket: Bucket involved in the call
        key: Key involved in the call, if any
        operation: Operation name ("list", "get", "put")

    Returns:
        The matching StoreError subclass instance (not raised)
    """
    target = f"s3://{bucket}/{key}" if key else f"s3://{bucket}"
    context: Dict[str, Any] = {
        "bucket": bucket,
        "key": key,
        "operation": operation,
        "cause": error,
    }

    if isinstance(error, ClientError):
        code = str(error.response.get("Error", {}).get("Code", ""))
        if code in _NOT_FOUND_CODES:
            return ObjectNotFoundError(f"{operation} failed: {target} not found", **context)
        if code in _ACCESS_DENIED_CODES:
            return AccessDeniedError(f"{operation} denied for {target}", **context)
        return StoreUnavailableError(
            f"{operation} failed for {target} with error code {code or 'unknown'}",
            **context,
        )

    if isinstance(error, NoCredentialsError):
        return AccessDeniedError(f"No AWS credentials available to {operation} {target}", **context)

    return StoreUnavailableError(f"{operation} failed for {target}: {error}", **context)


class S3ObjectStore(ObjectStore):
    """S3 object store backed by a boto3 client.

    boto3 clients are thread-safe, so a single client is shared by every
    concurrent fetch and upload task. The connection pool is sized to the
    worker count so tasks do not queue on connections.

    Environment Variables:
        AWS_ACCESS_KEY_ID: AWS access key
        AWS_SECRET_ACCESS_KEY: AWS secret key
        AWS_REGION / AWS_DEFAULT_REGION: AWS region
        AWS_ENDPOINT_URL: Custom S3 endpoint (for MinIO, LocalStack, etc.)

    Example:
        >>> store = S3ObjectStore(region="us-east-1")
        >>> [d.key for d in store.list_objects("raw", prefix="events/")]
        ['events/part-0.parquet', 'events/part-1.parquet']
    """

    def __init__(
        self,
        *,
        client: Any = None,
        endpoint_url: Optional[str] = None,
        region: Optional[str] = None,
        max_pool_connections: int = 10,
        retry: Optional[RetryConfig] = None,
    ) -> None:
        self.retry = retry or RetryConfig()
        self.endpoint_url = endpoint_url or os.environ.get("AWS_ENDPOINT_URL")
        self.region = region or os.environ.get("AWS_REGION") or os.environ.get("AWS_DEFAULT_REGION")

        if client is not None:
            self.client = client
            return

        client_kwargs: Dict[str, Any] = {
            "config": Config(
                max_pool_connections=max(1, max_pool_connections),
                retries={"max_attempts": 2, "mode": "standard"},
            ),
        }
        if self.endpoint_url:
            client_kwargs["endpoint_url"] = self.endpoint_url
        if self.region:
            client_kwargs["region_name"] = self.region

        try:
            self.client = boto3.client("s3", **client_kwargs)
        except (BotoCoreError, ValueError) as e:
            raise StoreUnavailableError(
                f"Failed to create S3 client: {e}",
                operation="connect",
                cause=e,
            ) from e
        logger.debug("Created S3 client with endpoint: %s", self.endpoint_url or "default")

    @property
    def scheme(self) -> str:
        return "s3"

    def list_objects(
        self,
        bucket: str,
        prefix: str = "",
        pattern: Optional[str] = None,
    ) -> List[ObjectDescriptor]:
        """List every object under a prefix, following continuation tokens."""

        def _list() -> List[ObjectDescriptor]:
            descriptors: List[ObjectDescriptor] = []
            paginator = self.client.get_paginator("list_objects_v2")
            pages = 0
            try:
                for page in paginator.paginate(Bucket=bucket, Prefix=prefix or ""):
                    pages += 1
                    for obj in page.get("Contents", []):
                        descriptors.append(
                            ObjectDescriptor(bucket=bucket, key=obj["Key"], size=int(obj.get("Size", 0)))
                        )
            except (BotoCoreError, ClientError) as e:
                raise translate_boto_error(e, bucket=bucket, key=prefix or None, operation="list") from e
            logger.debug(
                "Listed %d objects in %d page(s) under s3://%s/%s",
                len(descriptors),
                pages,
                bucket,
                prefix,
            )
            return descriptors

        listed = retry_store_call(_list, self.retry, f"list s3://{bucket}/{prefix}")
        return filter_descriptors(listed, pattern)

    def get_object(self, bucket: str, key: str) -> bytes:
        def _get() -> bytes:
            try:
                response = self.client.get_object(Bucket=bucket, Key=key)
                return response["Body"].read()
            except (BotoCoreError, ClientError) as e:
                raise translate_boto_error(e, bucket=bucket, key=key, operation="get") from e

        data = retry_store_call(_get, self.retry, f"get s3://{bucket}/{key}")
        logger.debug("Downloaded %d bytes from s3://%s/%s", len(data), bucket, key)
        return data

    def put_object(self, bucket: str, key: str, data: bytes) -> PutAck:
        def _put() -> PutAck:
            try:
                response = self.client.put_object(Bucket=bucket, Key=key, Body=data)
            except (BotoCoreError, ClientError) as e:
                raise translate_boto_error(e, bucket=bucket, key=key, operation="put") from e
            return PutAck(
                bucket=bucket,
                key=key,
                bytes_written=len(data),
                etag=str(response.get("ETag", "")).strip('"') or None,
            )

        ack = retry_store_call(_put, self.retry, f"put s3://{bucket}/{key}")
        logger.info("Uploaded %d bytes to s3://%s/%s", ack.bytes_written, bucket, key)
        return ack
