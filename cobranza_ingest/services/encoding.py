from __future__ import annotations

import codecs
import logging
from pathlib import Path

"""Encoding helpers for uploaded CSV files.

Uploads come either as UTF-8 (exported by the converter) or as Latin-1
(legacy exports). Detection looks at a leading sample only; a multi-byte
sequence cut at the sample boundary is not treated as invalid.
"""

__all__ = [
    "UTF8_SAMPLE_SIZE",
    "is_utf8_sample",
    "transcode_latin1_to_utf8",
    "ensure_utf8",
    "detect_text_encoding",
]

UTF8_SAMPLE_SIZE = 8192
UTF8_SUFFIX = ".utf8.csv"

logger = logging.getLogger(__name__)


def is_utf8_sample(path: Path, sample_size: int = UTF8_SAMPLE_SIZE) -> bool:
    with Path(path).open("rb") as f:
        sample = f.read(sample_size)
    decoder = codecs.getincrementaldecoder("utf-8")()
    try:
        decoder.decode(sample, final=False)
    except UnicodeDecodeError:
        return False
    return True


def detect_text_encoding(path: Path) -> str:
    """``utf-8-sig`` when the sample decodes as UTF-8 (BOM tolerated), else ``latin-1``."""
    return "utf-8-sig" if is_utf8_sample(path) else "latin-1"


def transcode_latin1_to_utf8(source: Path, target: Path) -> int:
    """Rewrite ``source`` as UTF-8 into ``target`` line by line; returns lines written."""
    lines = 0
    with Path(source).open("r", encoding="latin-1", newline="") as src, Path(target).open(
        "w", encoding="utf-8", newline=""
    ) as dst:
        for line in src:
            dst.write(line)
            lines += 1
    return lines


def ensure_utf8(path: Path, label: str = "") -> tuple[Path, bool]:
    """Return a UTF-8 readable path for ``path``.

    The second element is True when a temporary ``<path>.utf8.csv`` copy was
    written; the caller removes it when done.
    """
    path = Path(path)
    if is_utf8_sample(path):
        logger.debug(f"already UTF-8 source={label} path={path}")
        return path, False
    target = path.with_name(path.name + UTF8_SUFFIX)
    logger.warning(f"Latin-1 CSV detected, converting to UTF-8 source={label} path={path}")
    lines = transcode_latin1_to_utf8(path, target)
    logger.info(f"UTF-8 conversion done source={label} lines={lines} output={target.name}")
    return target, True
