"""Domain models for the collection notice ingestion pipeline."""

from .config_models import (
    ConverterConfig,
    DatabaseConfig,
    ImportSettings,
    IngestConfig,
    StorageConfig,
    UploadConfig,
)
from .data_source import STAGING_TABLES, DataSourceCode, UnknownDataSourceError
from .error_record import ImportErrorRecord
from .import_result import CopyImportResult, ResilientImportResult, RowInsertOutcome
from .run import (
    CollectionRun,
    DataSourceFile,
    DataSourceLoad,
    NoticeType,
    RunResult,
    RunStatus,
    SourceCsv,
)
from .sheet_extraction import SanitizedCsvResult, SheetExtractionResult
from .upload import AssembledFile, ChunkAppendResult, ChunkMetadata, UploadedFileMetadata

__all__ = [
    # Configuration models
    "ConverterConfig",
    "DatabaseConfig",
    "ImportSettings",
    "IngestConfig",
    "StorageConfig",
    "UploadConfig",
    # Data sources
    "STAGING_TABLES",
    "DataSourceCode",
    "UnknownDataSourceError",
    # Uploads
    "AssembledFile",
    "ChunkAppendResult",
    "ChunkMetadata",
    "UploadedFileMetadata",
    # Processing models
    "SanitizedCsvResult",
    "SheetExtractionResult",
    "CopyImportResult",
    "ResilientImportResult",
    "RowInsertOutcome",
    "ImportErrorRecord",
    # Runs
    "CollectionRun",
    "DataSourceFile",
    "DataSourceLoad",
    "NoticeType",
    "RunResult",
    "RunStatus",
    "SourceCsv",
]
