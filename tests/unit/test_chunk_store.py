from __future__ import annotations

from pathlib import Path

import pytest

from cobranza_ingest.models.upload import ChunkMetadata
from cobranza_ingest.uploads.chunk_store import ChunkStore, slugify
from cobranza_ingest.uploads.errors import (
    ChunkEmptyError,
    ChunkTooLargeError,
    FileTooLargeError,
    InvalidChunkRangeError,
    InvalidUploadIdError,
)

UPLOAD_ID = "upload_0001-abc"


@pytest.fixture()
def store(storage_root: Path) -> ChunkStore:
    return ChunkStore(storage_root, chunk_size=16, max_file_size=1024)


def _meta(name: str = "Base Cartera.csv", size: int | None = None) -> ChunkMetadata:
    return ChunkMetadata(original_name=name, size=size, mime="text/csv", extension="csv")


def test_in_order_chunks_assemble_on_last(store: ChunkStore, storage_root: Path):
    parts = [b"A;B\n1;2\n", b"3;4\n5;6\n", b"7;8\n"]
    r0 = store.append_chunk(UPLOAD_ID, 0, 3, parts[0], _meta(size=20))
    r1 = store.append_chunk(UPLOAD_ID, 1, 3, parts[1])
    assert not r0.completed and r0.file is None
    assert not r1.completed

    r2 = store.append_chunk(UPLOAD_ID, 2, 3, parts[2])
    assert r2.completed
    f = r2.file
    assert f.path == f"completed/{UPLOAD_ID}/base-cartera.csv"
    assert f.absolute_path.read_bytes() == b"".join(parts)
    assert f.size == 20
    assert f.declared_size == 20
    assert f.mime == "text/csv"
    assert f.extension == "csv"
    assert f.original_name == "Base Cartera.csv"
    # pending session is gone once assembled
    assert not (storage_root / "pending" / UPLOAD_ID).exists()


def test_out_of_order_chunks_give_same_file(store: ChunkStore):
    parts = [b"h1;h2\n", b"a;b\n", b"c;d\n"]
    assert not store.append_chunk(UPLOAD_ID, 2, 3, parts[2]).completed
    assert not store.append_chunk(UPLOAD_ID, 0, 3, parts[0], _meta()).completed
    result = store.append_chunk(UPLOAD_ID, 1, 3, parts[1])
    assert result.completed
    assert result.file.absolute_path.read_bytes() == b"h1;h2\na;b\nc;d\n"


def test_received_chunks_tracks_indices(store: ChunkStore):
    store.append_chunk(UPLOAD_ID, 0, 4, b"x", _meta())
    store.append_chunk(UPLOAD_ID, 3, 4, b"y")
    assert store.received_chunks(UPLOAD_ID) == {0, 3}


def test_missing_metadata_names_file_after_upload_id_slug(store: ChunkStore):
    result = store.append_chunk(UPLOAD_ID, 0, 1, b"plain text\n")
    assert result.completed
    assert result.file.path == f"completed/{UPLOAD_ID}/upload-0001-abc"
    assert result.file.extension is None


@pytest.mark.parametrize(
    "upload_id",
    ["short", "has space in id", "bad/slash/0001", "x" * 192, "ümlaut-upload-id"],
)
def test_invalid_upload_id_rejected(store: ChunkStore, upload_id: str):
    with pytest.raises(InvalidUploadIdError):
        store.append_chunk(upload_id, 0, 1, b"data")


@pytest.mark.parametrize("index,total", [(-1, 2), (2, 2), (0, 0), (5, 3)])
def test_invalid_chunk_range(store: ChunkStore, index: int, total: int):
    with pytest.raises(InvalidChunkRangeError):
        store.append_chunk(UPLOAD_ID, index, total, b"data")


def test_empty_chunk_rejected(store: ChunkStore, storage_root: Path):
    with pytest.raises(ChunkEmptyError):
        store.append_chunk(UPLOAD_ID, 0, 1, b"")
    assert not (storage_root / "pending" / UPLOAD_ID).exists()


def test_chunk_over_limit_rejected(store: ChunkStore):
    with pytest.raises(ChunkTooLargeError):
        store.append_chunk(UPLOAD_ID, 0, 1, b"x" * 17)


def test_assembled_file_over_max_is_deleted(storage_root: Path):
    store = ChunkStore(storage_root, chunk_size=16, max_file_size=20)
    store.append_chunk(UPLOAD_ID, 0, 2, b"x" * 16, _meta())
    with pytest.raises(FileTooLargeError):
        store.append_chunk(UPLOAD_ID, 1, 2, b"y" * 16)
    assert not (storage_root / "completed" / UPLOAD_ID).exists()
    assert not (storage_root / "pending" / UPLOAD_ID).exists()


def test_corrupt_metadata_is_ignored(store: ChunkStore, storage_root: Path, caplog):
    store.append_chunk(UPLOAD_ID, 0, 2, b"abc", _meta())
    (storage_root / "pending" / UPLOAD_ID / "meta.json").write_text("{not json", encoding="utf-8")
    with caplog.at_level("WARNING"):
        result = store.append_chunk(UPLOAD_ID, 1, 2, b"def")
    assert result.completed
    assert result.file.original_name == UPLOAD_ID
    assert "unreadable upload metadata" in caplog.text


def test_discard_is_idempotent(store: ChunkStore, storage_root: Path):
    store.append_chunk(UPLOAD_ID, 0, 2, b"abc", _meta())
    store.discard_upload(UPLOAD_ID)
    assert not (storage_root / "pending" / UPLOAD_ID).exists()
    # second call on a missing upload is fine
    store.discard_upload(UPLOAD_ID)


def test_discard_removes_completed_upload(store: ChunkStore, storage_root: Path):
    store.append_chunk(UPLOAD_ID, 0, 1, b"abc\n", _meta())
    assert (storage_root / "completed" / UPLOAD_ID).exists()
    store.discard_upload(UPLOAD_ID)
    assert not (storage_root / "completed" / UPLOAD_ID).exists()


@pytest.mark.parametrize(
    "value,expected",
    [
        ("Base Cartera", "base-cartera"),
        ("PAGAPL  2024 (v2)", "pagapl-2024-v2"),
        ("Año_Ñandú", "ano-nandu"),
        ("---", ""),
    ],
)
def test_slugify(value: str, expected: str):
    assert slugify(value) == expected
