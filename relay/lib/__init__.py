"""Relay library modules.

This package contains the stages of a relay run (fetch/merge, chunking,
upload), the collaborators they call (object stores, the parquet codec,
the Ibis/DuckDB query engine) and the ambient pieces (config, errors,
logging, retry).
"""

from relay.lib.chunking import ChunkPlan, chunk_table, estimate_table_size, plan_chunks
from relay.lib.codec import ParquetCodec, TableCodec, file_extension
from relay.lib.config import RelayConfig, load_config, load_env_file
from relay.lib.errors import (
    AccessDeniedError,
    ChunkingError,
    ConfigurationError,
    DecodeError,
    EncodeError,
    FetchError,
    ListError,
    MalformedDataError,
    MergeError,
    PersistError,
    ObjectNotFoundError,
    QueryError,
    QuerySyntaxError,
    RelayError,
    SchemaMismatchError,
    StoreError,
    StoreUnavailableError,
    UploadError,
)
from relay.lib.fetch import MergePolicy, MergeResult, fetch_and_merge, merge_tables
from relay.lib.pipeline import RelayPipeline, RunSummary, run_relay
from relay.lib.query import IbisQueryEngine, QueryEngine
from relay.lib.storage import (
    LocalObjectStore,
    ObjectDescriptor,
    ObjectStore,
    PutAck,
    S3ObjectStore,
    get_object_store,
)
from relay.lib.tasks import TaskResult, run_indexed
from relay.lib.upload import KeyTemplate, UploadReceipt, upload_chunks

__all__ = [
    # Stages
    "fetch_and_merge",
    "merge_tables",
    "MergePolicy",
    "MergeResult",
    "chunk_table",
    "plan_chunks",
    "estimate_table_size",
    "ChunkPlan",
    "upload_chunks",
    "KeyTemplate",
    "UploadReceipt",
    # Pipeline
    "RelayPipeline",
    "RunSummary",
    "run_relay",
    # Collaborators
    "ObjectStore",
    "ObjectDescriptor",
    "PutAck",
    "S3ObjectStore",
    "LocalObjectStore",
    "get_object_store",
    "TableCodec",
    "ParquetCodec",
    "file_extension",
    "QueryEngine",
    "IbisQueryEngine",
    # Concurrency
    "TaskResult",
    "run_indexed",
    # Config
    "RelayConfig",
    "load_config",
    "load_env_file",
    # Errors
    "RelayError",
    "ConfigurationError",
    "StoreError",
    "StoreUnavailableError",
    "ObjectNotFoundError",
    "AccessDeniedError",
    "MalformedDataError",
    "ListError",
    "FetchError",
    "DecodeError",
    "MergeError",
    "PersistError",
    "QueryError",
    "QuerySyntaxError",
    "SchemaMismatchError",
    "ChunkingError",
    "EncodeError",
    "UploadError",
]
