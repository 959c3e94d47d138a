from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..models.data_source import DataSourceCode
from ..models.run import NoticeType
from ..models.upload import UploadedFileMetadata
from ..uploads.errors import InvalidFileMetadataError
from .loader import ConfigError, load_yaml_document, validate_document

"""Run manifest loader.

A manifest names the run, its notice type and one uploaded file per data
source. File entries are either a path relative to the storage root
(``completed/<upload_id>/<name>``) or the full metadata mapping a client
would submit. Missing size / name / extension are read from the stored file.
"""

__all__ = [
    "RunManifest",
    "load_manifest",
    "MANIFEST_SCHEMA_PATH",
]

MANIFEST_SCHEMA_PATH = Path(__file__).with_name("manifest_schema.json")


@dataclass(frozen=True)
class RunManifest:
    run_id: int
    notice_type: NoticeType
    files: dict[DataSourceCode, UploadedFileMetadata]
    period: str | None = None
    strategy: str | None = None


def _file_metadata(entry: str | dict[str, Any], storage_root: Path) -> UploadedFileMetadata:
    raw: dict[str, Any] = {"path": entry} if isinstance(entry, str) else dict(entry)
    stored = storage_root / str(raw["path"])
    if stored.is_file():
        raw.setdefault("original_name", stored.name)
        raw.setdefault("size", stored.stat().st_size)
        raw.setdefault("extension", stored.suffix.lstrip(".") or None)
    else:
        raw.setdefault("original_name", Path(str(raw["path"])).name)
        # size 0 is rejected by the metadata checks; the validator reports the missing file
        raw.setdefault("size", 1)
        raw.setdefault("extension", Path(str(raw["path"])).suffix.lstrip(".") or None)
    return UploadedFileMetadata.from_dict(raw)


def load_manifest(path: Path, storage_root: Path) -> RunManifest:
    """Read and validate a run manifest.

    Raises:
        ConfigError: unreadable or invalid manifest, or rejected file metadata
    """
    if not path.exists():
        raise ConfigError(f"manifest not found: {path}")
    data = load_yaml_document(path)
    try:
        validate_document(data, MANIFEST_SCHEMA_PATH)
    except ConfigError as e:
        raise ConfigError(f"manifest {path}: {e}") from e

    files: dict[DataSourceCode, UploadedFileMetadata] = {}
    for code, entry in data["files"].items():
        try:
            files[DataSourceCode.parse(code)] = _file_metadata(entry, storage_root)
        except InvalidFileMetadataError as e:
            raise ConfigError(f"manifest {path}: file {code}: {e}") from e

    return RunManifest(
        run_id=int(data["run_id"]),
        notice_type=NoticeType(data["notice_type"]),
        files=files,
        period=data.get("period"),
        strategy=data.get("strategy"),
    )
