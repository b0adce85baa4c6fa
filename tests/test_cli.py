"""Tests for the bucket-relay command line."""

import json

import pytest

from relay.cli import build_parser, config_from_args, main
from tests.helpers import make_table, parquet_bytes, read_parquet

# main() reconfigures the root logger
pytestmark = pytest.mark.usefixtures("restore_root_logging")


@pytest.fixture
def buckets(tmp_path):
    events = tmp_path / "raw" / "events"
    events.mkdir(parents=True)
    (events / "part-0.parquet").write_bytes(parquet_bytes(make_table(id=[1, 2, 3], amount=[1.0, -2.0, 3.0])))
    (events / "part-1.parquet").write_bytes(parquet_bytes(make_table(id=[4, 5], amount=[4.0, 5.0])))
    return tmp_path


def _summary_from(stdout):
    return json.loads(stdout[stdout.index("{\n"):])


def test_relay_between_local_buckets(buckets, capsys):
    code = main(
        [
            "--local-root", str(buckets),
            "--source-bucket", "raw",
            "--prefix", "events/",
            "--destination-bucket", "curated",
            "--summary-json",
        ]
    )

    assert code == 0
    written = buckets / "curated" / "processed" / "file0.snappy.parquet"
    assert read_parquet(written.read_bytes()).column("id").to_pylist() == [1, 2, 3, 4, 5]
    summary = _summary_from(capsys.readouterr().out)
    assert summary["source_rows"] == 5
    assert summary["uploads"][0]["key"] == "processed/file0.snappy.parquet"


def test_query_and_save_local(buckets):
    local_out = buckets / "out" / "merged.parquet"

    code = main(
        [
            "--local-root", str(buckets),
            "-s", "raw",
            "-p", "events/",
            "-d", "curated",
            "-q", "SELECT id FROM df WHERE amount > 0 ORDER BY id",
            "--save-local",
            "--local-output", str(local_out),
            "--compression", "none",
        ]
    )

    assert code == 0
    assert local_out.exists()
    written = buckets / "curated" / "processed" / "file0.parquet"
    assert read_parquet(written.read_bytes()).column("id").to_pylist() == [1, 3, 4, 5]


def test_missing_source_bucket_returns_error(buckets):
    assert main(["--local-root", str(buckets)]) == 1


def test_query_error_returns_error(buckets):
    code = main(["--local-root", str(buckets), "-s", "raw", "-p", "events/", "-q", "SELECT nope FROM df"])
    assert code == 1


def test_invalid_choice_is_usage_error():
    with pytest.raises(SystemExit) as exc_info:
        main(["--source-bucket", "raw", "--merge-policy", "loose"])
    assert exc_info.value.code == 2


def test_flags_override_config_file(tmp_path):
    config_file = tmp_path / "relay.yaml"
    config_file.write_text(
        "relay:\n  source_bucket: from-file\n  prefix: events/\n  max_workers: 3\n",
        encoding="utf-8",
    )
    args = build_parser().parse_args(["--config", str(config_file), "--source-bucket", "from-flag"])

    config = config_from_args(args)

    assert config.source_bucket == "from-flag"
    assert config.prefix == "events/"
    assert config.max_workers == 3
    assert config.save_local is False


def test_env_file_feeds_config(tmp_path, monkeypatch, buckets):
    monkeypatch.setenv("RELAY_CLI_SOURCE", "placeholder")
    monkeypatch.delenv("RELAY_CLI_SOURCE")
    env_file = tmp_path / ".env"
    env_file.write_text("RELAY_CLI_SOURCE=raw\n", encoding="utf-8")
    config_file = tmp_path / "relay.yaml"
    config_file.write_text(
        f"source_bucket: ${{RELAY_CLI_SOURCE}}\nprefix: events/\nlocal_root: {buckets}\n",
        encoding="utf-8",
    )

    code = main(["--env-file", str(env_file), "--config", str(config_file), "-d", "curated"])

    assert code == 0
    assert (buckets / "curated" / "processed" / "file0.snappy.parquet").exists()


def test_parser_defaults_are_unset():
    args = build_parser().parse_args([])
    assert args.save_local is None
    assert args.workers is None
    assert args.compression is None


def test_unwritable_local_output_returns_error(buckets):
    blocker = buckets / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")

    code = main(
        [
            "--local-root", str(buckets),
            "-s", "raw",
            "-p", "events/",
            "--save-local",
            "--local-output", str(blocker / "out.parquet"),
        ]
    )

    assert code == 1


def test_strict_env_rejects_unset_variable(tmp_path, monkeypatch, buckets):
    monkeypatch.delenv("RELAY_CLI_UNSET", raising=False)
    config_file = tmp_path / "relay.yaml"
    config_file.write_text(
        f"source_bucket: ${{RELAY_CLI_UNSET}}\nprefix: events/\nlocal_root: {buckets}\n",
        encoding="utf-8",
    )

    assert main(["--config", str(config_file), "--strict-env"]) == 1
