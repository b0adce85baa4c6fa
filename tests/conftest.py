"""Pytest configuration and fixtures."""

import logging

import boto3
import pytest
from moto import mock_aws

from relay.lib.resilience import RetryConfig
from relay.lib.storage.s3 import S3ObjectStore
from tests.helpers import InMemoryStore


@pytest.fixture
def aws_credentials(monkeypatch):
    """Mock AWS credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    monkeypatch.delenv("AWS_ENDPOINT_URL", raising=False)
    monkeypatch.delenv("AWS_REGION", raising=False)


@pytest.fixture
def s3_client(aws_credentials):
    """Create a mocked S3 client with source and destination buckets."""
    with mock_aws():
        client = boto3.client("s3", region_name="us-east-1")
        client.create_bucket(Bucket="raw")
        client.create_bucket(Bucket="curated")
        yield client


@pytest.fixture
def s3_store(s3_client):
    """S3ObjectStore sharing the mocked client, with fast retries."""
    return S3ObjectStore(
        client=s3_client,
        retry=RetryConfig(max_attempts=2, backoff_seconds=0.0, max_backoff_seconds=0.0, jitter=False),
    )


@pytest.fixture
def memory_store():
    return InMemoryStore()


@pytest.fixture
def slow_memory_store():
    """In-memory store whose calls finish in random order."""
    return InMemoryStore(max_delay=0.02)


@pytest.fixture
def fast_retry():
    return RetryConfig(max_attempts=3, backoff_seconds=0.0, max_backoff_seconds=0.0, jitter=False)


@pytest.fixture
def restore_root_logging():
    """Undo setup_logging(): drop the handlers it added and reset the level."""
    root = logging.getLogger()
    level = root.level
    yield root
    for handler in root.handlers[:]:
        if type(handler) in (logging.StreamHandler, logging.FileHandler):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)
