"""bucket-relay test suite.

Test organization:
- test_storage_*.py: object store backends (moto-backed S3, local directories)
- test_fetch.py / test_chunking.py / test_upload.py: the relay stages
- test_pipeline.py: end-to-end runs against the in-memory and moto stores
- test_cli.py / test_config.py: command line and configuration

Shared fakes and table builders live in helpers.py.
"""
