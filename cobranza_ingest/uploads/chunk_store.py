from __future__ import annotations

import logging
import os
import re
import shutil
import unicodedata
from pathlib import Path

from ..models.config_models import StorageConfig, UploadConfig
from ..models.upload import AssembledFile, ChunkAppendResult, ChunkMetadata
from .errors import (
    ChunkEmptyError,
    ChunkTooLargeError,
    FileTooLargeError,
    InvalidChunkRangeError,
    InvalidUploadIdError,
)
from .mime import detect_mime, extension_for_mime

"""Chunked upload store.

Layout under the storage root::

    pending/<upload_id>/000000.part, 000001.part, ..., meta.json
    completed/<upload_id>/<slug>.<ext>

Chunks may arrive in any order. The chunk that completes the set
``0..total-1`` triggers assembly: parts are streamed in index order into the
final file and the pending directory is removed.
"""

__all__ = [
    "ChunkStore",
    "PENDING_DIR",
    "COMPLETED_DIR",
    "UPLOAD_ID_PATTERN",
    "slugify",
]

PENDING_DIR = "pending"
COMPLETED_DIR = "completed"
META_FILE = "meta.json"
PART_SUFFIX = ".part"
UPLOAD_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{10,191}$")
_COPY_BUFFER = 1024 * 1024

logger = logging.getLogger(__name__)


def slugify(value: str) -> str:
    folded = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    return re.sub(r"[^a-z0-9]+", "-", folded.lower()).strip("-")


def _part_name(index: int) -> str:
    return f"{index:06d}{PART_SUFFIX}"


class ChunkStore:
    def __init__(self, root: Path, *, chunk_size: int, max_file_size: int) -> None:
        self.root = Path(root)
        self.chunk_size = chunk_size
        self.max_file_size = max_file_size

    @classmethod
    def from_config(cls, storage: StorageConfig, uploads: UploadConfig) -> ChunkStore:
        return cls(storage.root, chunk_size=uploads.chunk_size, max_file_size=uploads.max_file_size)

    def pending_path(self, upload_id: str) -> Path:
        return self.root / PENDING_DIR / upload_id

    def completed_path(self, upload_id: str) -> Path:
        return self.root / COMPLETED_DIR / upload_id

    def append_chunk(
        self,
        upload_id: str,
        chunk_index: int,
        total_chunks: int,
        chunk: bytes,
        metadata: ChunkMetadata | None = None,
    ) -> ChunkAppendResult:
        """Persist one chunk; assemble when it completes the set.

        Raises:
            InvalidUploadIdError, InvalidChunkRangeError, ChunkEmptyError,
            ChunkTooLargeError: the chunk was rejected and nothing was stored
            FileTooLargeError: the assembled file exceeded the maximum size
                (the file is deleted)
        """
        self._check_upload_id(upload_id)
        if total_chunks < 1 or chunk_index < 0 or chunk_index >= total_chunks:
            raise InvalidChunkRangeError(
                f"invalid chunk range: index={chunk_index} total={total_chunks}"
            )
        if not chunk:
            raise ChunkEmptyError("received chunk is empty")
        if len(chunk) > self.chunk_size:
            raise ChunkTooLargeError(
                f"chunk of {len(chunk)} bytes exceeds the limit of {self.chunk_size} bytes"
            )

        base = self.pending_path(upload_id)
        base.mkdir(parents=True, exist_ok=True)
        if chunk_index == 0:
            self._write_atomic(base / META_FILE, (metadata or ChunkMetadata()).to_json().encode("utf-8"))
        self._write_atomic(base / _part_name(chunk_index), chunk)
        logger.debug(f"chunk stored upload={upload_id} index={chunk_index}/{total_chunks}")

        received = self.received_chunks(upload_id)
        if not set(range(total_chunks)).issubset(received):
            return ChunkAppendResult(completed=False)
        return ChunkAppendResult(completed=True, file=self._assemble(upload_id, total_chunks))

    def received_chunks(self, upload_id: str) -> set[int]:
        self._check_upload_id(upload_id)
        base = self.pending_path(upload_id)
        if not base.is_dir():
            return set()
        indices = set()
        for part in base.glob(f"*{PART_SUFFIX}"):
            if part.stem.isdigit():
                indices.add(int(part.stem))
        return indices

    def discard_upload(self, upload_id: str) -> None:
        """Remove everything stored for ``upload_id``; missing directories are fine."""
        self._check_upload_id(upload_id)
        for path in (self.pending_path(upload_id), self.completed_path(upload_id)):
            if path.exists():
                shutil.rmtree(path)
                logger.info(f"upload discarded path={path.relative_to(self.root)}")

    def _assemble(self, upload_id: str, total_chunks: int) -> AssembledFile:
        base = self.pending_path(upload_id)
        meta = self._read_metadata(base)
        original_name = meta.original_name or upload_id
        stem, dot, suffix = original_name.rpartition(".")
        if not dot:
            stem, suffix = original_name, ""
        extension = (meta.extension or suffix or "").lower().lstrip(".") or None
        final_name = (slugify(stem) or upload_id) + (f".{extension}" if extension else "")

        target_dir = self.completed_path(upload_id)
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / final_name
        parts = [base / _part_name(i) for i in range(total_chunks)]
        with target.open("wb") as out:
            for part in parts:
                with part.open("rb") as src:
                    shutil.copyfileobj(src, out, _COPY_BUFFER)
        shutil.rmtree(base)

        size = target.stat().st_size
        if size > self.max_file_size:
            shutil.rmtree(target_dir)
            raise FileTooLargeError(
                f"assembled file of {size} bytes exceeds the maximum of {self.max_file_size} bytes"
            )

        mime = detect_mime(target, extension)
        relative = f"{COMPLETED_DIR}/{upload_id}/{final_name}"
        logger.info(
            f"upload assembled upload={upload_id} chunks={total_chunks} size={size} mime={mime}"
        )
        return AssembledFile(
            path=relative,
            absolute_path=target,
            original_name=original_name,
            size=size,
            declared_size=meta.size,
            mime=mime,
            extension=extension,
            detected_extension=extension_for_mime(mime),
        )

    def _read_metadata(self, base: Path) -> ChunkMetadata:
        meta_path = base / META_FILE
        if not meta_path.exists():
            return ChunkMetadata()
        try:
            return ChunkMetadata.from_json(meta_path.read_text(encoding="utf-8"))
        except (ValueError, TypeError) as e:
            logger.warning(f"unreadable upload metadata path={meta_path}: {e}")
            return ChunkMetadata()

    @staticmethod
    def _write_atomic(path: Path, data: bytes) -> None:
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_bytes(data)
        os.replace(tmp, path)

    @staticmethod
    def _check_upload_id(upload_id: str) -> None:
        if not isinstance(upload_id, str) or not UPLOAD_ID_PATTERN.match(upload_id):
            raise InvalidUploadIdError("invalid upload identifier")
