"""Relay configuration: YAML files, environment expansion and validation.

Example YAML (relay.yaml):
    relay:
      source_bucket: ${RAW_BUCKET}
      prefix: events/2025-01-15/
      pattern: "*.parquet"
      destination_bucket: curated
      query: "SELECT * FROM df WHERE amount > 0"
      chunk_target_bytes: 1000000
      compression: snappy
      save_local: true
      local_output_path: ./out/result.parquet

Usage:
    # Command line
    bucket-relay --config relay.yaml --destination-bucket curated-dev

    # Python API
    from relay.lib.config import load_config
    config = load_config("relay.yaml")
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml
from dotenv import load_dotenv

from relay.lib.codec import SUPPORTED_COMPRESSIONS
from relay.lib.errors import ConfigurationError
from relay.lib.fetch import MergePolicy
from relay.lib.query import DEFAULT_QUERY, DEFAULT_TABLE_NAME

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_CHUNK_TARGET_BYTES",
    "RelayConfig",
    "expand_env_vars",
    "load_config",
    "load_env_file",
]

DEFAULT_CHUNK_TARGET_BYTES = 1_000_000

# Pattern for ${VAR_NAME} or $VAR_NAME
ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)")

_PATH_FIELDS = ("local_output_path", "local_root")


@dataclass(frozen=True)
class RelayConfig:
    """Every setting a relay run needs.

    Attributes:
        source_bucket: Bucket to read from (required)
        prefix: Key prefix to list in the source bucket
        pattern: Optional basename glob applied to listed keys
        destination_bucket: Bucket to upload chunks to; upload is skipped when unset
        query: SQL run against the merged table
        table_name: Name the merged table is registered under
        save_local: Persist the merged table to ``local_output_path``
        local_output_path: Where ``save_local`` writes the parquet file
        chunk_target_bytes: Target in-memory size per uploaded chunk
        max_rows_per_chunk: Optional hard cap on rows per chunk
        compression: Parquet compression for uploaded chunks
        key_prefix: Destination key prefix
        file_stem: Destination file name stem (index is appended)
        merge_policy: "relaxed" (union columns) or "strict"
        max_workers: Thread pool size for fetch/slice/upload batches
        local_root: Use directories under this path as buckets instead of S3
        endpoint_url: Custom S3 endpoint
        region: AWS region
    """

    source_bucket: str = ""
    prefix: str = ""
    pattern: Optional[str] = None
    destination_bucket: Optional[str] = None
    query: str = DEFAULT_QUERY
    table_name: str = DEFAULT_TABLE_NAME
    save_local: bool = False
    local_output_path: str = "output/result.parquet"
    chunk_target_bytes: int = DEFAULT_CHUNK_TARGET_BYTES
    max_rows_per_chunk: Optional[int] = None
    compression: str = "snappy"
    key_prefix: str = "processed"
    file_stem: str = "file"
    merge_policy: str = MergePolicy.RELAXED.value
    max_workers: int = 8
    local_root: Optional[str] = None
    endpoint_url: Optional[str] = None
    region: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def field_names(cls) -> List[str]:
        return [f.name for f in fields(cls) if f.name != "extra"]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RelayConfig":
        """Build a config from a mapping, keeping unknown keys in ``extra``."""
        known = set(cls.field_names())
        values = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        if extra:
            logger.warning("Ignoring unknown relay config keys: %s", ", ".join(sorted(extra)))
        return cls(**values, extra=extra)

    def merged_with(self, overrides: Mapping[str, Any]) -> "RelayConfig":
        """Return a copy with non-None overrides applied (CLI over file)."""
        changes = {
            k: v
            for k, v in overrides.items()
            if v is not None and k in self.field_names()
        }
        return replace(self, **changes)

    def issues(self) -> List[str]:
        """Collect every validation problem."""
        problems: List[str] = []

        if not self.source_bucket or not self.source_bucket.strip():
            problems.append("source_bucket is required and must be non-empty")
        if self.destination_bucket is not None and not self.destination_bucket.strip():
            problems.append("destination_bucket must be non-empty when set")
        if not self.query or not self.query.strip():
            problems.append("query must be non-empty")
        if not self.table_name or not self.table_name.isidentifier():
            problems.append(f"table_name must be a SQL identifier (got '{self.table_name}')")
        if not isinstance(self.chunk_target_bytes, int) or self.chunk_target_bytes <= 0:
            problems.append("chunk_target_bytes must be a positive integer")
        if self.max_rows_per_chunk is not None and (
            not isinstance(self.max_rows_per_chunk, int) or self.max_rows_per_chunk <= 0
        ):
            problems.append("max_rows_per_chunk must be a positive integer when set")
        if str(self.compression).lower() not in SUPPORTED_COMPRESSIONS + ("uncompressed",):
            problems.append(
                f"compression must be one of {', '.join(SUPPORTED_COMPRESSIONS)} "
                f"(got '{self.compression}')"
            )
        if str(self.merge_policy).lower() not in MergePolicy.choices():
            problems.append(
                f"merge_policy must be one of {', '.join(MergePolicy.choices())} "
                f"(got '{self.merge_policy}')"
            )
        if not isinstance(self.max_workers, int) or self.max_workers < 1:
            problems.append("max_workers must be a positive integer (1 or greater)")
        if self.save_local and not self.local_output_path:
            problems.append("local_output_path is required when save_local is enabled")

        return problems

    def validate(self) -> "RelayConfig":
        """Raise ConfigurationError listing every issue, else return self."""
        problems = self.issues()
        if problems:
            raise ConfigurationError("Invalid relay configuration", issues=problems)
        if self.max_workers > 32:
            logger.warning(
                "max_workers=%d is very high and may exhaust connections or memory",
                self.max_workers,
            )
        return self

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("extra", None)
        return data


def load_env_file(
    path: Optional[Union[str, Path]] = None,
    *,
    override: bool = False,
) -> bool:
    """Load environment variables from a .env file.

    Returns:
        True if a .env file was found and loaded, False otherwise.
    """
    loaded = load_dotenv(dotenv_path=path, override=override)
    if path and not loaded:
        logger.warning("No variables loaded from env file %s", path)
    return loaded


def expand_env_vars(value: Any, *, strict: bool = False) -> Any:
    """Expand ${VAR} / $VAR references in strings, recursing into dicts and lists.

    Args:
        value: Parsed YAML value
        strict: If True, raise ConfigurationError for unset variables

    Example:
        >>> os.environ["RAW_BUCKET"] = "raw-events"
        >>> expand_env_vars({"source_bucket": "${RAW_BUCKET}"})
        {'source_bucket': 'raw-events'}
    """
    if isinstance(value, dict):
        return {k: expand_env_vars(v, strict=strict) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env_vars(v, strict=strict) for v in value]
    if not isinstance(value, str):
        return value

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1) or match.group(2)
        env_value = os.environ.get(var_name)
        if env_value is None:
            if strict:
                raise ConfigurationError(
                    f"Environment variable not set: {var_name}",
                    field=var_name,
                    suggestion="Export the variable or add it to the .env file.",
                )
            logger.warning("Environment variable %s is not set; leaving %s unexpanded", var_name, match.group(0))
            return str(match.group(0))
        return env_value

    return ENV_VAR_PATTERN.sub(replacer, value)


def _resolve_path(path: Optional[str], config_dir: Path) -> Optional[str]:
    """Resolve ./ and ../ paths relative to the config file's directory."""
    if not path or os.path.isabs(path):
        return path
    if path.startswith(("./", "../")):
        return str((config_dir / path).resolve())
    return path


def load_config(
    path: Union[str, Path],
    *,
    strict_env: bool = False,
) -> RelayConfig:
    """Load a relay config from YAML.

    The file may hold the settings at top level or under a ``relay:`` key.
    Values are not validated here; call ``RelayConfig.validate()`` after
    applying any overrides.

    Raises:
        ConfigurationError: If the file is missing or is not a YAML mapping
    """
    config_path = Path(path)
    logger.info("Loading config from %s", config_path)

    if not config_path.exists():
        raise ConfigurationError(f"Config file not found: {config_path}", field="config")

    try:
        with config_path.open("r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in config file {config_path}", cause=e) from e

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigurationError("Config must be a YAML mapping", field="config")

    section = raw.get("relay", raw)
    if not isinstance(section, dict):
        raise ConfigurationError("'relay' section must be a mapping", field="relay")

    expanded = expand_env_vars(section, strict=strict_env)
    config_dir = config_path.parent.resolve()
    for name in _PATH_FIELDS:
        if name in expanded:
            expanded[name] = _resolve_path(expanded[name], config_dir)

    return RelayConfig.from_dict(expanded)
