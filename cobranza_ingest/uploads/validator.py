from __future__ import annotations

import logging
import math
import re
from pathlib import Path

from ..models.config_models import DEFAULT_MAX_FILE_SIZE
from ..models.upload import UploadedFileMetadata
from .errors import (
    BinaryContentError,
    DangerousContentError,
    ExtensionNotAllowedError,
    FileEmptyError,
    FileMissingError,
    FileTooLargeError,
    MagicBytesMismatchError,
    MimeExtensionMismatchError,
    SizeMismatchError,
)
from .mime import BINARY_BYTES, MIME_EXTENSIONS, OLE2_MAGIC, ZIP_MAGICS

"""Upload validator.

Checks run in a fixed order and the first failure wins:

1. the file exists under the storage root
2. actual size within 1% (rounded up) of the declared size, not above the
   maximum, not empty
3. declared MIME and extension agree (unknown MIME is not checked)
4. the extension satisfies the required one (with aliases)
5. content: text files must be free of control bytes and script snippets,
   workbooks must start with their container signature
"""

__all__ = [
    "UploadValidator",
    "REQUIRED_EXTENSION_ALIASES",
    "TEXT_SAMPLE_SIZE",
]

logger = logging.getLogger(__name__)

TEXT_SAMPLE_SIZE = 8192
SIZE_TOLERANCE = 0.01

REQUIRED_EXTENSION_ALIASES: dict[str, tuple[str, ...]] = {
    "csv": ("csv", "txt", "xls", "xlsx"),
    "xls": ("xls",),
    "xlsx": ("xlsx", "xls"),
    "txt": ("txt", "csv"),
}

MAGIC_BYTES: dict[str, tuple[bytes, ...]] = {
    "xls": (OLE2_MAGIC,),
    "xlsx": ZIP_MAGICS,
}

DANGEROUS_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        rb"<\?php",
        rb"<script",
        rb"<\?=",
        rb"eval\s*\(",
        rb"exec\s*\(",
        rb"system\s*\(",
        rb"passthru\s*\(",
        rb"shell_exec\s*\(",
        rb"base64_decode\s*\(",
    )
]


class UploadValidator:
    def __init__(self, root: Path, max_file_size: int = DEFAULT_MAX_FILE_SIZE) -> None:
        self.root = Path(root)
        self.max_file_size = max_file_size

    def resolve(self, metadata: UploadedFileMetadata) -> Path:
        return self.root / metadata.path

    def validate(
        self, metadata: UploadedFileMetadata, required_extension: str | None = None
    ) -> Path:
        """Validate the stored file behind ``metadata``; returns its absolute path.

        Raises:
            UploadValidationError: subclass naming the first failed check
        """
        path = self.resolve(metadata)
        if not path.is_file():
            raise FileMissingError("file does not exist in temporary storage")
        self._check_size(path, metadata)
        self._check_mime_extension(metadata)
        if required_extension is not None:
            self._check_required_extension(metadata, required_extension)
        self._check_content(path, metadata)
        logger.debug(f"upload validated path={metadata.path}")
        return path

    def _check_size(self, path: Path, metadata: UploadedFileMetadata) -> None:
        actual = path.stat().st_size
        tolerance = math.ceil(metadata.size * SIZE_TOLERANCE)
        if abs(actual - metadata.size) > tolerance:
            raise SizeMismatchError(
                f"file size mismatch. Declared: {metadata.size} bytes, actual: {actual} bytes"
            )
        if actual > self.max_file_size:
            raise FileTooLargeError("file exceeds the maximum allowed size")
        if actual == 0:
            raise FileEmptyError("file is empty")

    @staticmethod
    def _check_mime_extension(metadata: UploadedFileMetadata) -> None:
        if metadata.mime is None or metadata.extension is None:
            return
        allowed = MIME_EXTENSIONS.get(metadata.mime)
        if not allowed:
            return
        if metadata.extension not in allowed:
            raise MimeExtensionMismatchError(
                f'extension "{metadata.extension}" does not match MIME type "{metadata.mime}"'
            )

    @staticmethod
    def _check_required_extension(metadata: UploadedFileMetadata, required_extension: str) -> None:
        required = required_extension.strip().lower()
        allowed = REQUIRED_EXTENSION_ALIASES.get(required, (required,))
        if metadata.extension is None:
            raise ExtensionNotAllowedError(f"file must have extension {required}")
        if metadata.extension not in allowed:
            raise ExtensionNotAllowedError(
                f"file must have extension {required}. Received: {metadata.extension}"
            )

    def _check_content(self, path: Path, metadata: UploadedFileMetadata) -> None:
        ext = metadata.extension
        if ext is None:
            return
        if ext in ("csv", "txt"):
            self._check_text_content(path)
            return
        expected = MAGIC_BYTES.get(ext)
        if not expected:
            return
        with path.open("rb") as f:
            header = f.read(8)
        if not header.startswith(expected):
            raise MagicBytesMismatchError(
                f"file content is not a valid {ext.upper()} file"
            )

    @staticmethod
    def _check_text_content(path: Path) -> None:
        with path.open("rb") as f:
            sample = f.read(TEXT_SAMPLE_SIZE)
        if BINARY_BYTES.search(sample):
            raise BinaryContentError(
                "file contains binary characters and cannot be processed as text"
            )
        for pattern in DANGEROUS_PATTERNS:
            if pattern.search(sample):
                raise DangerousContentError(
                    "file contains potentially dangerous code and cannot be processed"
                )
