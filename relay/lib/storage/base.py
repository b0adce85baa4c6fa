"""Abstract base class for object stores.

Defines the narrow interface the relay stages use to reach a bucket:
list objects under a prefix, get one object, put one object.
"""

from __future__ import annotations

import fnmatch
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)

__all__ = ["ObjectStore", "ObjectDescriptor", "PutAck", "filter_descriptors"]


@dataclass(frozen=True)
class ObjectDescriptor:
    """One object in a bucket."""

    bucket: str
    key: str
    size: int = 0

    @property
    def name(self) -> str:
        return self.key.rsplit("/", 1)[-1]

    def uri(self, scheme: str = "s3") -> str:
        return f"{scheme}://{self.bucket}/{self.key}"


@dataclass(frozen=True)
class PutAck:
    """Acknowledgment returned by a successful put."""

    bucket: str
    key: str
    bytes_written: int
    etag: Optional[str] = None


def filter_descriptors(
    descriptors: Iterable[ObjectDescriptor],
    pattern: Optional[str] = None,
) -> List[ObjectDescriptor]:
    """Drop folder markers, apply a basename glob, and sort by key.

    Args:
        descriptors: Raw listing output
        pattern: Optional glob matched against the key's basename

    Returns:
        Matching descriptors in lexicographic key order
    """
    kept: List[ObjectDescriptor] = []
    for descriptor in descriptors:
        if descriptor.key.endswith("/"):
            continue
        if pattern and not fnmatch.fnmatch(descriptor.name, pattern):
            continue
        kept.append(descriptor)
    return sorted(kept, key=lambda d: d.key)


class ObjectStore(ABC):
    """Abstract base class for object stores.

    Implementations raise the StoreError subclasses from
    ``relay.lib.errors``:

    - StoreUnavailableError: endpoint unreachable or transient failure
    - ObjectNotFoundError: bucket or key missing
    - AccessDeniedError: credentials lack permission
    """

    @property
    @abstractmethod
    def scheme(self) -> str:
        """Return the URI scheme for this store (e.g., 's3', 'file')."""

    @abstractmethod
    def list_objects(
        self,
        bucket: str,
        prefix: str = "",
        pattern: Optional[str] = None,
    ) -> List[ObjectDescriptor]:
        """List every object under a prefix.

        Args:
            bucket: Bucket to list
            prefix: Key prefix ("" lists the whole bucket)
            pattern: Optional glob matched against each key's basename

        Returns:
            Descriptors sorted by key, folder markers excluded
        """

    @abstractmethod
    def get_object(self, bucket: str, key: str) -> bytes:
        """Read one object's contents."""

    @abstractmethod
    def put_object(self, bucket: str, key: str, data: bytes) -> PutAck:
        """Write one object, replacing any existing object at the key."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(scheme={self.scheme!r})"
