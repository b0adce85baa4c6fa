"""CLI entrypoint for bucket-relay.

Usage:
    bucket-relay --source-bucket raw --prefix events/ --destination-bucket curated
    bucket-relay --source-bucket raw --query "SELECT id, amount FROM df WHERE amount > 0"
    bucket-relay --config relay.yaml --save-local --local-output ./out/result.parquet
    python -m relay --source-bucket raw --local-root ./data --destination-bucket curated

This file wires together:

- Config loading (YAML file, .env, flag overrides) and validation
- Logging setup
- The relay pipeline run and its summary
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from relay import __version__
from relay.lib.codec import SUPPORTED_COMPRESSIONS
from relay.lib.config import RelayConfig, load_config, load_env_file
from relay.lib.errors import RelayError
from relay.lib.fetch import MergePolicy
from relay.lib.logging import setup_logging
from relay.lib.pipeline import run_relay
from relay.lib.query import DEFAULT_QUERY

logger = logging.getLogger(__name__)

# argparse dest -> RelayConfig field
_FLAG_FIELDS = {
    "source_bucket": "source_bucket",
    "prefix": "prefix",
    "pattern": "pattern",
    "destination_bucket": "destination_bucket",
    "query": "query",
    "table_name": "table_name",
    "save_local": "save_local",
    "local_output": "local_output_path",
    "chunk_size": "chunk_target_bytes",
    "max_rows_per_chunk": "max_rows_per_chunk",
    "compression": "compression",
    "key_prefix": "key_prefix",
    "file_stem": "file_stem",
    "merge_policy": "merge_policy",
    "workers": "max_workers",
    "local_root": "local_root",
    "endpoint_url": "endpoint_url",
    "region": "region",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bucket-relay",
        description=(
            "Merge the Parquet objects under a bucket prefix, run a SQL query over "
            "the result, and upload it to another bucket in size-bounded chunks."
        ),
    )

    source = parser.add_argument_group("source")
    source.add_argument("--source-bucket", "-s", help="Bucket to read Parquet objects from")
    source.add_argument("--prefix", "-p", help="Key prefix to list in the source bucket")
    source.add_argument("--pattern", help="Glob on object names, e.g. '*.parquet'")
    source.add_argument(
        "--merge-policy",
        choices=MergePolicy.choices(),
        help="How differing column sets are merged (default: relaxed)",
    )

    transform = parser.add_argument_group("query")
    transform.add_argument(
        "--query",
        "-q",
        help=f"SQL to run over the merged table (default: '{DEFAULT_QUERY}')",
    )
    transform.add_argument("--table-name", help="Name the merged table is registered under (default: df)")

    output = parser.add_argument_group("output")
    output.add_argument("--destination-bucket", "-d", help="Bucket to upload chunks to (upload skipped when omitted)")
    output.add_argument("--key-prefix", help="Destination key prefix (default: processed)")
    output.add_argument("--file-stem", help="Destination file stem (default: file)")
    output.add_argument(
        "--chunk-size",
        type=int,
        help="Target in-memory bytes per uploaded chunk (default: 1000000)",
    )
    output.add_argument("--max-rows-per-chunk", type=int, help="Hard cap on rows per chunk")
    output.add_argument("--compression", choices=SUPPORTED_COMPRESSIONS, help="Parquet compression (default: snappy)")
    output.add_argument(
        "--save-local",
        action="store_true",
        default=None,
        help="Also save the merged table to a local Parquet file",
    )
    output.add_argument("--local-output", help="Path for --save-local (default: output/result.parquet)")

    runtime = parser.add_argument_group("runtime")
    runtime.add_argument("--config", "-c", help="YAML config file; flags override its values")
    runtime.add_argument("--env-file", help="Load environment variables from this .env file first")
    runtime.add_argument(
        "--strict-env",
        action="store_true",
        help="Fail when the config file references an unset environment variable",
    )
    runtime.add_argument("--workers", "-w", type=int, help="Concurrent fetch/upload tasks (default: 8)")
    runtime.add_argument("--local-root", help="Treat sub-directories of this path as buckets instead of S3")
    runtime.add_argument("--endpoint-url", help="Custom S3 endpoint (MinIO, LocalStack)")
    runtime.add_argument("--region", help="AWS region")
    runtime.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    runtime.add_argument("--json-logs", action="store_true", help="Emit logs as JSON")
    runtime.add_argument("--log-file", help="Also write logs to this file")
    runtime.add_argument("--summary-json", action="store_true", help="Print the run summary as JSON")
    runtime.add_argument("--version", action="version", version=f"bucket-relay {__version__}")

    return parser


def config_from_args(args: argparse.Namespace) -> RelayConfig:
    """Build the run config: file values first, then flag overrides."""
    base = load_config(args.config, strict_env=args.strict_env) if args.config else RelayConfig()
    overrides: Dict[str, Any] = {
        field_name: getattr(args, dest, None) for dest, field_name in _FLAG_FIELDS.items()
    }
    return base.merged_with(overrides).validate()


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(verbose=args.verbose, json_format=args.json_logs, log_file=args.log_file)

    if args.env_file:
        load_env_file(args.env_file)

    try:
        config = config_from_args(args)
        summary = run_relay(config)
    except RelayError as e:
        logger.error("%s", e)
        return 1

    if args.summary_json:
        print(json.dumps(summary.to_dict(), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
