"""Setup configuration for bucket-relay package."""

from setuptools import setup, find_packages
from pathlib import Path

# Read the README file
readme_file = Path(__file__).parent / "README.md"
long_description = (
    readme_file.read_text(encoding="utf-8") if readme_file.exists() else ""
)

setup(
    name="bucket-relay",
    version="1.0.0",
    description="Merge Parquet objects under an S3 prefix, query them with SQL, and re-upload the result in size-bounded chunks",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["relay", "relay.*"]),
    python_requires=">=3.10",
    install_requires=[
        "boto3>=1.26.0",
        "botocore>=1.29.0",
        "pyarrow>=14.0.0",  # promote_options in concat_tables
        "ibis-framework[duckdb]>=9.0.0",
        "sqlglot<28",  # newer releases break ibis create_table on DuckDB
        "duckdb>=0.10.0",
        "pyyaml>=6.0",
        "python-dotenv>=1.0.0",
        "tenacity>=8.0.0",  # For retry logic
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "moto[s3]>=5.0.0",
            "pandas>=1.5.0",
            "black>=22.0.0",
            "flake8>=5.0.0",
            "mypy>=0.990",
        ],
        "test": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "moto[s3]>=5.0.0",
            "pandas>=1.5.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "bucket-relay=relay.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
    ],
    keywords="data-engineering s3 parquet duckdb ibis etl data-pipeline",
)
