"""Table builders and an in-memory object store for relay tests."""

from __future__ import annotations

import random
import threading
import time
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq

from relay.lib.errors import ObjectNotFoundError
from relay.lib.storage.base import ObjectDescriptor, ObjectStore, PutAck, filter_descriptors


def make_table(**columns: List[Any]) -> pa.Table:
    """Build an Arrow table from column lists via pandas."""
    return pa.Table.from_pandas(pd.DataFrame(columns), preserve_index=False)


def parquet_bytes(table: pa.Table, compression: str = "snappy") -> bytes:
    sink = pa.BufferOutputStream()
    pq.write_table(table, sink, compression=compression)
    return sink.getvalue().to_pybytes()


def read_parquet(data: bytes) -> pa.Table:
    return pq.read_table(pa.BufferReader(data))


class InMemoryStore(ObjectStore):
    """Dict-backed store with injectable failures and random latency.

    ``fail_get`` / ``fail_put`` map keys to the exception raised for them.
    ``max_delay`` adds a random sleep to every get/put so concurrent tasks
    finish out of submission order.
    """

    def __init__(self, max_delay: float = 0.0, seed: int = 7) -> None:
        self.objects: Dict[Tuple[str, str], bytes] = {}
        self.fail_get: Dict[str, BaseException] = {}
        self.fail_put: Dict[str, BaseException] = {}
        self.fail_list: Optional[BaseException] = None
        self.max_delay = max_delay
        self.put_log: List[str] = []
        self.get_log: List[str] = []
        self._lock = threading.Lock()
        self._random = random.Random(seed)

    @property
    def scheme(self) -> str:
        return "mem"

    def add(self, bucket: str, key: str, data: bytes) -> None:
        self.objects[(bucket, key)] = data

    def add_table(self, bucket: str, key: str, table: pa.Table) -> None:
        self.add(bucket, key, parquet_bytes(table))

    def keys(self, bucket: str) -> List[str]:
        return sorted(key for b, key in self.objects if b == bucket)

    def table_at(self, bucket: str, key: str) -> pa.Table:
        return read_parquet(self.objects[(bucket, key)])

    def _sleep(self) -> None:
        if self.max_delay:
            with self._lock:
                delay = self._random.uniform(0, self.max_delay)
            time.sleep(delay)

    def list_objects(
        self,
        bucket: str,
        prefix: str = "",
        pattern: Optional[str] = None,
    ) -> List[ObjectDescriptor]:
        if self.fail_list is not None:
            raise self.fail_list
        found = [
            ObjectDescriptor(bucket=b, key=key, size=len(data))
            for (b, key), data in self.objects.items()
            if b == bucket and key.startswith(prefix)
        ]
        return filter_descriptors(found, pattern)

    def get_object(self, bucket: str, key: str) -> bytes:
        self._sleep()
        with self._lock:
            self.get_log.append(key)
        if key in self.fail_get:
            raise self.fail_get[key]
        try:
            return self.objects[(bucket, key)]
        except KeyError:
            raise ObjectNotFoundError("missing", bucket=bucket, key=key, operation="get") from None

    def put_object(self, bucket: str, key: str, data: bytes) -> PutAck:
        self._sleep()
        if key in self.fail_put:
            raise self.fail_put[key]
        with self._lock:
            self.objects[(bucket, key)] = data
            self.put_log.append(key)
        return PutAck(bucket=bucket, key=key, bytes_written=len(data), etag=f"etag-{key}")
