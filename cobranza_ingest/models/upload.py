from __future__ import annotations

import json
import re
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from ..uploads.errors import InvalidFileMetadataError

"""Upload domain models.

- ``ChunkMetadata``: what the client declared alongside chunk 0 (persisted in
  ``meta.json`` next to the parts).
- ``AssembledFile``: the file produced once every chunk arrived.
- ``UploadedFileMetadata``: the reference a client later submits to attach an
  assembled file to a run. ``from_dict`` is the only way in and rejects
  anything outside the upload namespaces or the spreadsheet whitelist.
"""

__all__ = [
    "ChunkMetadata",
    "AssembledFile",
    "ChunkAppendResult",
    "UploadedFileMetadata",
    "ALLOWED_MIME_TYPES",
    "ALLOWED_EXTENSIONS",
    "DANGEROUS_EXTENSIONS",
    "MAX_METADATA_FILE_SIZE",
]

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

ALLOWED_MIME_TYPES = frozenset(
    {
        "text/csv",
        "text/plain",
        "application/vnd.ms-excel",
        XLSX_MIME,
        "application/csv",
        "text/x-csv",
    }
)
ALLOWED_EXTENSIONS = ("csv", "txt", "xls", "xlsx")
DANGEROUS_EXTENSIONS = frozenset(
    {
        "php", "phtml", "php3", "php4", "php5", "php7", "phps",
        "exe", "bat", "cmd", "com", "pif", "scr",
        "js", "vbs", "wsf", "sh", "bash",
    }
)

MAX_FILENAME_LENGTH = 255
MAX_METADATA_FILE_SIZE = 512 * 1024 * 1024
MIN_METADATA_FILE_SIZE = 1

_PATH_FORBIDDEN = re.compile(r'[<>:"|?*]')
_NAME_PATTERN = re.compile(r"^[\w\s.\-()]+\.[a-zA-Z0-9]{1,10}$")
_MIME_PATTERN = re.compile(r"^[a-z0-9]+/[a-z0-9\-+.]+$")
_UPLOAD_PREFIXES = ("completed/", "pending/")


@dataclass(frozen=True)
class ChunkMetadata:
    """Declared file properties sent with the first chunk."""
    original_name: str | None = None
    size: int | None = None
    mime: str | None = None
    extension: str | None = None

    def to_json(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)

    @staticmethod
    def from_json(text: str) -> ChunkMetadata:
        raw = json.loads(text)
        if not isinstance(raw, dict):
            raise ValueError("chunk metadata must be a JSON object")
        size = raw.get("size")
        return ChunkMetadata(
            original_name=raw.get("original_name"),
            size=int(size) if size is not None else None,
            mime=raw.get("mime"),
            extension=raw.get("extension"),
        )


@dataclass(frozen=True)
class AssembledFile:
    path: str  # relative to the storage root: completed/<upload_id>/<name>
    absolute_path: Path
    original_name: str
    size: int  # actual bytes on disk
    declared_size: int | None
    mime: str | None  # detected from content
    extension: str | None  # declared (or from the original name)
    detected_extension: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "original_name": self.original_name,
            "size": self.size,
            "mime": self.mime,
            "extension": self.extension,
        }


@dataclass(frozen=True)
class ChunkAppendResult:
    completed: bool
    file: AssembledFile | None = None


@dataclass(frozen=True)
class UploadedFileMetadata:
    path: str
    original_name: str
    size: int
    mime: str | None = None
    extension: str | None = None

    @staticmethod
    def from_dict(data: dict[str, Any] | None) -> UploadedFileMetadata:
        """Validate client supplied metadata.

        Raises:
            InvalidFileMetadataError: on any rejected field
        """
        if not data:
            raise InvalidFileMetadataError("file metadata cannot be empty")
        return UploadedFileMetadata(
            path=_validate_path(data.get("path")),
            original_name=_validate_name(data.get("original_name")),
            size=_validate_size(data.get("size")),
            mime=_validate_mime(data.get("mime")),
            extension=_validate_extension(data.get("extension")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def is_csv_or_text(self) -> bool:
        return self.extension in ("csv", "txt")

    def is_excel(self) -> bool:
        return self.extension in ("xls", "xlsx")


def _validate_path(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidFileMetadataError("file path is required")
    path = value.strip()
    if ".." in path or "\0" in path:
        raise InvalidFileMetadataError("invalid file path: forbidden sequence")
    if _PATH_FORBIDDEN.search(path):
        raise InvalidFileMetadataError("file path contains forbidden characters")
    if not path.startswith(_UPLOAD_PREFIXES):
        raise InvalidFileMetadataError("file path must start with completed/ or pending/")
    return path


def _validate_name(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidFileMetadataError("original file name is required")
    name = value.strip()
    if len(name) > MAX_FILENAME_LENGTH:
        raise InvalidFileMetadataError(
            f"file name exceeds {MAX_FILENAME_LENGTH} characters"
        )
    if "\0" in name or ".." in name:
        raise InvalidFileMetadataError("invalid file name: forbidden sequence")
    if not _NAME_PATTERN.match(name):
        raise InvalidFileMetadataError("file name contains forbidden characters")
    return name


def _validate_size(value: Any) -> int:
    if value is None or isinstance(value, bool):
        raise InvalidFileMetadataError("file size is required")
    try:
        size = int(float(value))
    except (TypeError, ValueError) as e:
        raise InvalidFileMetadataError("file size must be numeric") from e
    if size < MIN_METADATA_FILE_SIZE:
        raise InvalidFileMetadataError("file is empty")
    if size > MAX_METADATA_FILE_SIZE:
        raise InvalidFileMetadataError(
            f"file exceeds the maximum size of {MAX_METADATA_FILE_SIZE} bytes"
        )
    return size


def _validate_mime(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    mime = value.strip().lower()
    # malformed strings are treated as unknown
    if not mime or not _MIME_PATTERN.match(mime):
        return None
    if mime not in ALLOWED_MIME_TYPES:
        raise InvalidFileMetadataError(f"MIME type not allowed: {mime}")
    return mime


def _validate_extension(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    ext = value.strip().lower().lstrip(".")
    if not ext:
        return None
    if ext in DANGEROUS_EXTENSIONS:
        raise InvalidFileMetadataError("file extension not allowed for security reasons")
    if ext not in ALLOWED_EXTENSIONS:
        raise InvalidFileMetadataError(
            f"extension not allowed: {ext}. Allowed: {', '.join(ALLOWED_EXTENSIONS)}"
        )
    return ext
