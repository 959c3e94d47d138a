from __future__ import annotations

"""Exception hierarchy for chunked uploads and upload validation.

Callers at the boundary catch ``UploadError`` (or ``UploadValidationError``
for the validator alone) and report ``str(exc)`` to the user.
"""

__all__ = [
    "UploadError",
    "InvalidUploadIdError",
    "InvalidChunkRangeError",
    "ChunkEmptyError",
    "ChunkTooLargeError",
    "UploadValidationError",
    "InvalidFileMetadataError",
    "FileMissingError",
    "SizeMismatchError",
    "FileTooLargeError",
    "FileEmptyError",
    "MimeExtensionMismatchError",
    "ExtensionNotAllowedError",
    "BinaryContentError",
    "DangerousContentError",
    "MagicBytesMismatchError",
]


class UploadError(Exception):
    """Base class for every upload failure."""


class InvalidUploadIdError(UploadError):
    pass


class InvalidChunkRangeError(UploadError):
    pass


class ChunkEmptyError(UploadError):
    pass


class ChunkTooLargeError(UploadError):
    pass


class UploadValidationError(UploadError):
    """Raised by the validator; the message is safe to show to users."""


class InvalidFileMetadataError(UploadValidationError):
    pass


class FileMissingError(UploadValidationError):
    pass


class SizeMismatchError(UploadValidationError):
    pass


class FileTooLargeError(UploadValidationError):
    pass


class FileEmptyError(UploadValidationError):
    pass


class MimeExtensionMismatchError(UploadValidationError):
    pass


class ExtensionNotAllowedError(UploadValidationError):
    pass


class BinaryContentError(UploadValidationError):
    pass


class DangerousContentError(UploadValidationError):
    pass


class MagicBytesMismatchError(UploadValidationError):
    pass
