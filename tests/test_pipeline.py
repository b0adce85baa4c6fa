"""End-to-end tests for the relay pipeline."""

import pyarrow as pa
import pyarrow.parquet as pq
import pytest

from relay.lib.config import RelayConfig
from relay.lib.errors import ConfigurationError, DecodeError, QueryError, StoreUnavailableError, UploadError
from relay.lib.pipeline import RelayPipeline, RunSummary, run_relay
from relay.lib.query import IbisQueryEngine
from tests.helpers import InMemoryStore, make_table, parquet_bytes, read_parquet


def _config(**overrides):
    values = {"source_bucket": "raw", "prefix": "events/", "destination_bucket": "curated"}
    values.update(overrides)
    return RelayConfig(**values)


def _seed_three_plus_two(store):
    store.add_table("raw", "events/part-0.parquet", make_table(id=[1, 2, 3], amount=[10.0, -1.0, 5.0]))
    store.add_table("raw", "events/part-1.parquet", make_table(id=[4, 5], amount=[2.5, 0.0]))


def _uploaded_rows(store, summary):
    tables = [store.table_at("curated", key) for key in summary.uploaded_keys]
    return pa.concat_tables(tables).to_pylist() if tables else []


class _RecordingEngine(IbisQueryEngine):
    closed = False

    def close(self):
        self.closed = True
        super().close()


class TestRelayPipeline:
    def test_three_plus_two_rows_single_chunk(self, memory_store):
        _seed_three_plus_two(memory_store)

        summary = run_relay(_config(), store=memory_store)

        assert summary.source_objects == 2
        assert summary.source_rows == 5
        assert summary.result_rows == 5
        assert summary.chunk_count == 1
        assert summary.uploaded_keys == ["processed/file0.snappy.parquet"]
        assert memory_store.keys("curated") == ["processed/file0.snappy.parquet"]
        assert [row["id"] for row in _uploaded_rows(memory_store, summary)] == [1, 2, 3, 4, 5]

    def test_query_filters_rows(self, memory_store):
        _seed_three_plus_two(memory_store)

        summary = run_relay(
            _config(query="SELECT id FROM df WHERE amount > 0 ORDER BY id"),
            store=memory_store,
        )

        assert summary.result_rows == 3
        assert _uploaded_rows(memory_store, summary) == [{"id": 1}, {"id": 3}, {"id": 4}]

    def test_small_target_splits_into_ordered_chunks(self, slow_memory_store):
        slow_memory_store.add_table("raw", "events/a.parquet", make_table(id=list(range(60))))
        slow_memory_store.add_table("raw", "events/b.parquet", make_table(id=list(range(60, 100))))

        summary = run_relay(_config(chunk_target_bytes=200, max_workers=4), store=slow_memory_store)

        assert summary.chunk_count > 1
        assert summary.uploaded_keys == [
            f"processed/file{i}.snappy.parquet" for i in range(summary.chunk_count)
        ]
        assert [row["id"] for row in _uploaded_rows(slow_memory_store, summary)] == list(range(100))
        assert summary.bytes_uploaded == sum(
            len(slow_memory_store.objects[("curated", key)]) for key in summary.uploaded_keys
        )

    def test_row_cap_and_key_template(self, memory_store):
        memory_store.add_table("raw", "events/a.parquet", make_table(id=list(range(10))))

        summary = run_relay(
            _config(max_rows_per_chunk=4, key_prefix="out/daily", file_stem="part-", compression="zstd"),
            store=memory_store,
        )

        assert summary.uploaded_keys == [
            "out/daily/part-0.zstd.parquet",
            "out/daily/part-1.zstd.parquet",
            "out/daily/part-2.zstd.parquet",
        ]
        assert [r.rows for r in summary.uploads] == [4, 4, 2]

    def test_empty_source_prefix(self, memory_store):
        summary = run_relay(_config(), store=memory_store)

        assert summary.empty_source is True
        assert summary.source_objects == 0
        assert summary.uploads == []
        assert memory_store.put_log == []

    def test_zero_row_result_uploads_nothing(self, memory_store):
        _seed_three_plus_two(memory_store)

        summary = run_relay(_config(query="SELECT * FROM df WHERE amount > 100"), store=memory_store)

        assert summary.result_rows == 0
        assert summary.chunk_count == 0
        assert summary.uploads == []
        assert memory_store.keys("curated") == []

    def test_no_destination_skips_upload(self, memory_store):
        _seed_three_plus_two(memory_store)

        summary = run_relay(_config(destination_bucket=None), store=memory_store)

        assert summary.chunk_count == 1
        assert summary.uploads == []
        assert memory_store.put_log == []

    def test_save_local_writes_merged_table(self, memory_store, tmp_path):
        _seed_three_plus_two(memory_store)
        out = tmp_path / "output" / "result.parquet"

        summary = run_relay(
            _config(save_local=True, local_output_path=str(out), query="SELECT id FROM df WHERE id > 3"),
            store=memory_store,
        )

        assert summary.local_path == str(out)
        # The local copy is the merged table before the query runs
        assert pq.read_table(out).column("id").to_pylist() == [1, 2, 3, 4, 5]
        assert summary.result_rows == 2

    def test_relaxed_merge_of_differing_columns(self, memory_store):
        memory_store.add_table("raw", "events/a.parquet", make_table(id=[1], name=["a"]))
        memory_store.add_table("raw", "events/b.parquet", make_table(id=[2], score=[0.5]))

        summary = run_relay(_config(query="SELECT id, name, score FROM df ORDER BY id"), store=memory_store)

        assert _uploaded_rows(memory_store, summary) == [
            {"id": 1, "name": "a", "score": None},
            {"id": 2, "name": None, "score": 0.5},
        ]

    def test_separate_destination_store(self, memory_store):
        _seed_three_plus_two(memory_store)
        destination = InMemoryStore()

        summary = run_relay(_config(), store=memory_store, destination_store=destination)

        assert destination.keys("curated") == summary.uploaded_keys
        assert memory_store.keys("curated") == []

    def test_decode_failure_aborts_before_upload(self, memory_store):
        memory_store.add_table("raw", "events/a.parquet", make_table(id=[1]))
        memory_store.add("raw", "events/b.parquet", b"corrupt")

        with pytest.raises(DecodeError):
            run_relay(_config(), store=memory_store)
        assert memory_store.put_log == []

    def test_query_failure_aborts_before_upload(self, memory_store):
        _seed_three_plus_two(memory_store)

        with pytest.raises(QueryError):
            run_relay(_config(query="SELECT missing_column FROM df"), store=memory_store)
        assert memory_store.put_log == []

    def test_upload_failure_propagates(self, memory_store):
        _seed_three_plus_two(memory_store)
        key = "processed/file0.snappy.parquet"
        memory_store.fail_put[key] = StoreUnavailableError("down", bucket="curated", key=key)

        with pytest.raises(UploadError) as exc_info:
            run_relay(_config(), store=memory_store)
        assert exc_info.value.key == key

    def test_invalid_config_rejected(self, memory_store):
        with pytest.raises(ConfigurationError):
            RelayPipeline(_config(chunk_target_bytes=0), store=memory_store)

    def test_injected_engine_left_open(self, memory_store):
        _seed_three_plus_two(memory_store)
        engine = _RecordingEngine()

        run_relay(_config(), store=memory_store, engine=engine)

        assert engine.closed is False
        engine.close()

    def test_local_root_store_from_config(self, tmp_path):
        (tmp_path / "raw" / "events").mkdir(parents=True)
        (tmp_path / "raw" / "events" / "a.parquet").write_bytes(parquet_bytes(make_table(id=[1, 2])))

        summary = run_relay(_config(local_root=str(tmp_path)))

        written = tmp_path / "curated" / "processed" / "file0.snappy.parquet"
        assert summary.uploaded_keys == ["processed/file0.snappy.parquet"]
        assert read_parquet(written.read_bytes()).column("id").to_pylist() == [1, 2]


def test_relay_through_moto(s3_client, s3_store):
    s3_client.put_object(
        Bucket="raw", Key="events/part-0.parquet", Body=parquet_bytes(make_table(id=[1, 2, 3]))
    )
    s3_client.put_object(
        Bucket="raw", Key="events/part-1.parquet", Body=parquet_bytes(make_table(id=[4, 5]))
    )

    summary = run_relay(_config(), store=s3_store)

    body = s3_client.get_object(Bucket="curated", Key="processed/file0.snappy.parquet")["Body"].read()
    assert read_parquet(body).column("id").to_pylist() == [1, 2, 3, 4, 5]
    assert summary.uploads[0].etag


def test_run_summary_to_dict():
    summary = RunSummary(source_objects=2, source_rows=5, result_rows=5, chunk_count=1, duration_seconds=0.12345)
    data = summary.to_dict()
    assert data["source_rows"] == 5
    assert data["bytes_uploaded"] == 0
    assert data["uploads"] == []
    assert data["duration_seconds"] == 0.123
