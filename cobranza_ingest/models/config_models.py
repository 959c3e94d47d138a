from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

"""Config dataclasses for the ingestion pipeline.

Built by ``cobranza_ingest.config.loader.load_config`` after schema validation
and environment overrides. Every section has working defaults so an empty
config file (or none at all) yields a usable configuration.
"""

DEFAULT_CHUNK_SIZE = 2 * 1024 * 1024
DEFAULT_MAX_FILE_SIZE = 512 * 1024 * 1024
DEFAULT_UPLOAD_TTL_MINUTES = 60
DEFAULT_CONVERTER_BINARY = "/usr/local/bin/excel_streaming"
DEFAULT_CONVERTER_TIMEOUT = 600
DEFAULT_BATCH_SIZE = 1000
DEFAULT_PROGRESS_EVERY = 25


@dataclass(frozen=True)
class StorageConfig:
    """Filesystem layout: uploads live under ``root`` (pending/ and completed/)."""
    root: Path = Path("storage")


@dataclass(frozen=True)
class UploadConfig:
    chunk_size: int = DEFAULT_CHUNK_SIZE  # max bytes per chunk
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    ttl_minutes: int = DEFAULT_UPLOAD_TTL_MINUTES  # <= 0 disables the sweep


@dataclass(frozen=True)
class ConverterConfig:
    binary_path: str = DEFAULT_CONVERTER_BINARY
    timeout_seconds: int = DEFAULT_CONVERTER_TIMEOUT
    prefer_native: bool = True


@dataclass(frozen=True)
class ImportSettings:
    batch_size: int = DEFAULT_BATCH_SIZE
    progress_every: int = DEFAULT_PROGRESS_EVERY  # batches between progress lines
    delimiter: str = ";"
    strategy: str = "resilient"  # resilient | copy


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration.

    Used as fallback when environment variables are not set.
    Environment variables take precedence over these values.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class IngestConfig:
    """Root configuration object."""
    storage: StorageConfig = field(default_factory=StorageConfig)
    uploads: UploadConfig = field(default_factory=UploadConfig)
    converter: ConverterConfig = field(default_factory=ConverterConfig)
    imports: ImportSettings = field(default_factory=ImportSettings)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    # data source code -> header columns every file of that source must carry
    required_columns: dict[str, list[str]] = field(default_factory=dict)
