from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..excel.converter import SheetConverter, build_sheet_converter
from ..logging.error_log import DatabaseErrorLog, ErrorLogBuffer
from ..models.config_models import IngestConfig
from ..uploads.validator import UploadValidator
from .sanitizer import RowSanitizer

"""Explicit service context handed to every pipeline step.

Steps never look anything up globally: storage root, database cursor,
logger and collaborators all come from here.
"""

__all__ = [
    "IngestServices",
    "WORK_DIR_NAME",
]

WORK_DIR_NAME = "work"


@dataclass
class IngestServices:
    config: IngestConfig
    storage_root: Path
    validator: UploadValidator
    converter: SheetConverter
    sanitizer: RowSanitizer
    cursor: Any = None
    error_log: DatabaseErrorLog | None = None
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("cobranza_ingest.run"))

    @property
    def work_dir(self) -> Path:
        return self.storage_root / WORK_DIR_NAME

    def run_work_dir(self, run_id: int) -> Path:
        return self.work_dir / str(run_id)

    @classmethod
    def build(
        cls,
        config: IngestConfig,
        cursor: Any = None,
        *,
        converter: SheetConverter | None = None,
        fallback_log: ErrorLogBuffer | None = None,
    ) -> IngestServices:
        root = config.storage.root
        return cls(
            config=config,
            storage_root=root,
            validator=UploadValidator(root, config.uploads.max_file_size),
            converter=converter or build_sheet_converter(config.converter),
            sanitizer=RowSanitizer(config.imports.delimiter),
            cursor=cursor,
            error_log=DatabaseErrorLog(cursor, fallback_log) if cursor is not None else None,
        )
