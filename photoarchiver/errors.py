# photoarchiver/errors.py
# Exception hierarchy shared by the upload and download pipelines.
# Storage backends translate SDK errors into these types so callers never
# inspect provider error codes.

from __future__ import annotations

from typing import Optional

__all__ = [
    "PhotoArchiverError",
    "ConfigError",
    "StorageError",
    "ContainerNotFoundError",
    "BlobNotFoundError",
    "BlobArchivedError",
    "BlobRehydratingError",
    "UnsupportedBlobError",
    "VerificationFailedError",
]


class PhotoArchiverError(RuntimeError):
    """Base exception for archive and retrieval failures."""


class ConfigError(PhotoArchiverError):
    """Raised when photoarchiver.toml or CLI options hold invalid values."""


class StorageError(PhotoArchiverError):
    """Raised when the blob store rejects or fails an operation."""

    def __init__(self, message: str, *, container: Optional[str] = None, key: Optional[str] = None) -> None:
        super().__init__(message)
        self.container = container
        self.key = key


class ContainerNotFoundError(StorageError):
    """The destination container (bucket) does not exist yet."""


class BlobNotFoundError(StorageError):
    """No blob exists at the requested key."""


class BlobArchivedError(StorageError):
    """The blob sits in the archive tier and must be rehydrated before reading."""


class BlobRehydratingError(StorageError):
    """A rehydration request is in flight; the blob is not readable yet."""


class UnsupportedBlobError(StorageError):
    """The blob was written in a format this version cannot read."""


class VerificationFailedError(PhotoArchiverError):
    """Stored content hash is missing or differs from the local digest."""

    def __init__(self, path: str, location: str) -> None:
        super().__init__(f"Verification failed for '{path}' against '{location}'")
        self.path = path
        self.location = location
