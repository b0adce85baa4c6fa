"""bucket-relay: merge, query and re-chunk Parquet objects between buckets."""

__version__ = "1.0.0"
