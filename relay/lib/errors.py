"""Structured exception hierarchy for relay runs.

Provides specific exception types for each stage of a relay run,
with rich context for debugging and troubleshooting.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

__all__ = [
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


class RelayError(Exception):
    """Base exception for all relay errors.

    Provides structured error information for debugging.
    """

    def __init__(
        self,
        message: str,
        *,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        self.message = message
        self.details = details or {}
        self.suggestion = suggestion
        self.cause = cause

        if cause is not None:
            cause_text = cause.message if isinstance(cause, RelayError) else str(cause)
            self.details.setdefault("cause", cause_text)
            self.details.setdefault("cause_type", type(cause).__name__)

        parts = [message]

        if self.details:
            detail_lines = [f"  {k}: {v}" for k, v in self.details.items()]
            parts.append("\nDetails:")
            parts.extend(detail_lines)

        if suggestion:
            parts.append(f"\nSuggestion: {suggestion}")

        super().__init__("\n".join(parts) if len(parts) > 1 else message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "suggestion": self.suggestion,
        }


class ConfigurationError(RelayError):
    """Error in relay configuration.

    Raised when configuration is invalid or incomplete.
    """

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Any = None,
        issues: Optional[List[str]] = None,
        **kwargs: Any,
    ) -> None:
        self.field = field
        self.value = value
        self.issues = issues or []

        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)

        if self.issues:
            issue_lines = "\n".join(f"  - {issue}" for issue in self.issues)
            message = f"{message}\n\nIssues found:\n{issue_lines}"

        super().__init__(message, details=details, **kwargs)


# ---------------------------------------------------------------------------
# Object store failures
# ---------------------------------------------------------------------------


class StoreError(RelayError):
    """Error talking to an object store.

    Base class for the failure kinds an ObjectStore may raise.
    """

    def __init__(
        self,
        message: str,
        *,
        bucket: Optional[str] = None,
        key: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        self.bucket = bucket
        self.key = key
        self.operation = operation

        details = kwargs.pop("details", {})
        if bucket:
            details["bucket"] = bucket
        if key:
            details["key"] = key
        if operation:
            details["operation"] = operation

        super().__init__(message, details=details, **kwargs)


class StoreUnavailableError(StoreError):
    """The store could not be reached or returned a transient failure."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault(
            "suggestion",
            "Check network connectivity and the endpoint URL, then retry.",
        )
        super().__init__(message, **kwargs)


class ObjectNotFoundError(StoreError):
    """The bucket or key does not exist."""


class AccessDeniedError(StoreError):
    """The credentials in use may not perform the operation."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault(
            "suggestion",
            "Verify AWS credentials and the bucket policy for this operation.",
        )
        super().__init__(message, **kwargs)


class MalformedDataError(RelayError):
    """Bytes could not be decoded into a table."""


# ---------------------------------------------------------------------------
# Stage failures
# ---------------------------------------------------------------------------


class ListError(RelayError):
    """Listing the source prefix failed."""

    def __init__(
        self,
        message: str,
        *,
        bucket: Optional[str] = None,
        prefix: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        self.bucket = bucket
        self.prefix = prefix

        details = kwargs.pop("details", {})
        if bucket:
            details["bucket"] = bucket
        if prefix:
            details["prefix"] = prefix

        super().__init__(message, details=details, **kwargs)


class _ObjectStageError(RelayError):
    """Failure tied to one source object."""

    def __init__(
        self,
        message: str,
        *,
        bucket: Optional[str] = None,
        key: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        self.bucket = bucket
        self.key = key

        details = kwargs.pop("details", {})
        if bucket:
            details["bucket"] = bucket
        if key:
            details["key"] = key

        super().__init__(message, details=details, **kwargs)


class FetchError(_ObjectStageError):
    """Downloading one source object failed."""


class DecodeError(_ObjectStageError):
    """Decoding one source object failed."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault(
            "suggestion",
            "Ensure every object under the prefix is a Parquet file, "
            "or narrow the listing with --pattern.",
        )
        super().__init__(message, **kwargs)


class MergeError(RelayError):
    """Decoded tables could not be concatenated under the merge policy."""

    def __init__(
        self,
        message: str,
        *,
        policy: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        self.policy = policy

        details = kwargs.pop("details", {})
        if policy:
            details["policy"] = policy

        suggestion = kwargs.pop("suggestion", None)
        if not suggestion and policy == "strict":
            suggestion = "Use the relaxed merge policy to union differing column sets."

        super().__init__(message, details=details, suggestion=suggestion, **kwargs)


class QueryError(RelayError):
    """Executing the user query failed."""

    def __init__(
        self,
        message: str,
        *,
        query: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        self.query = query

        details = kwargs.pop("details", {})
        if query:
            details["query"] = query

        super().__init__(message, details=details, **kwargs)


class QuerySyntaxError(QueryError):
    """The query could not be parsed."""


class SchemaMismatchError(QueryError):
    """The query references tables or columns that do not exist."""


class ChunkingError(RelayError):
    """The chunk plan is degenerate (non-positive target or row cap)."""


class _ChunkStageError(RelayError):
    """Failure tied to one output chunk."""

    def __init__(
        self,
        message: str,
        *,
        index: Optional[int] = None,
        bucket: Optional[str] = None,
        key: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        self.index = index
        self.bucket = bucket
        self.key = key

        details = kwargs.pop("details", {})
        if index is not None:
            details["chunk_index"] = index
        if bucket:
            details["bucket"] = bucket
        if key:
            details["key"] = key

        super().__init__(message, details=details, **kwargs)


class EncodeError(_ChunkStageError):
    """Encoding one chunk failed."""


class UploadError(_ChunkStageError):
    """Uploading one chunk failed."""

    def __init__(
        self,
        message: str,
        *,
        uploaded_keys: Optional[List[str]] = None,
        **kwargs: Any,
    ) -> None:
        self.uploaded_keys = list(uploaded_keys or [])

        details = kwargs.pop("details", {})
        if self.uploaded_keys:
            details["already_uploaded"] = len(self.uploaded_keys)

        super().__init__(message, details=details, **kwargs)


class PersistError(RelayError):
    """Writing the merged table to a local file failed."""

    def __init__(self, message: str, *, path: Optional[str] = None, **kwargs: Any) -> None:
        self.path = path

        details = kwargs.pop("details", {})
        if path:
            details["path"] = path
        kwargs.setdefault(
            "suggestion",
            "Check that the output directory is writable and that no file sits where a directory is expected",
        )

        super().__init__(message, details=details, **kwargs)
