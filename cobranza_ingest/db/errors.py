from __future__ import annotations

"""Errors shared by the two CSV loaders."""

__all__ = [
    "CsvImportError",
    "CsvNotFoundError",
    "CopyImportError",
]


class CsvImportError(Exception):
    """Base class for whole-file load failures."""


class CsvNotFoundError(CsvImportError):
    pass


class CopyImportError(CsvImportError):
    """COPY failed; nothing was committed. The message carries the server text."""
