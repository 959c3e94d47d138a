from __future__ import annotations

import re
from pathlib import Path

import filetype

"""Content based MIME detection for assembled uploads.

``filetype`` recognises the binary spreadsheet containers. Plain text has no
signature, so when nothing matches a leading sample is checked for control
bytes: clean text is reported as CSV/plain text, anything else as
``application/octet-stream``.
"""

__all__ = [
    "XLS_MIME",
    "XLSX_MIME",
    "OLE2_MAGIC",
    "ZIP_MAGICS",
    "MIME_EXTENSIONS",
    "BINARY_BYTES",
    "detect_mime",
    "extension_for_mime",
]

XLS_MIME = "application/vnd.ms-excel"
XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
OCTET_STREAM = "application/octet-stream"

OLE2_MAGIC = bytes.fromhex("d0cf11e0a1b11ae1")
ZIP_MAGICS = (b"PK\x03\x04", b"PK\x05\x06", b"PK\x07\x08")

# MIME -> extensions it may legitimately carry (first one is the canonical)
MIME_EXTENSIONS: dict[str, tuple[str, ...]] = {
    "text/csv": ("csv", "txt"),
    "text/plain": ("txt", "csv"),
    "application/csv": ("csv",),
    "text/x-csv": ("csv",),
    XLS_MIME: ("xls", "csv"),
    XLSX_MIME: ("xlsx",),
}

BINARY_BYTES = re.compile(rb"[\x00-\x08\x0B\x0C\x0E-\x1F]")
SNIFF_SIZE = 8192


def detect_mime(path: Path, extension: str | None = None) -> str:
    path = Path(path)
    ext = (extension or path.suffix.lstrip(".")).lower()
    kind = filetype.guess(str(path))
    with path.open("rb") as f:
        head = f.read(SNIFF_SIZE)

    if kind is not None:
        mime = kind.mime
        if mime in (XLS_MIME, XLSX_MIME):
            return mime
        # OOXML written by some tools is only seen as a generic zip
        if mime == "application/zip" and ext == "xlsx":
            return XLSX_MIME
        return mime
    if head.startswith(OLE2_MAGIC):
        return XLS_MIME
    if head.startswith(ZIP_MAGICS) and ext == "xlsx":
        return XLSX_MIME
    if BINARY_BYTES.search(head):
        return OCTET_STREAM
    return "text/csv" if ext == "csv" else "text/plain"


def extension_for_mime(mime: str | None) -> str | None:
    if mime is None:
        return None
    candidates = MIME_EXTENSIONS.get(mime)
    return candidates[0] if candidates else None
