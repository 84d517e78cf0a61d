# photoarchiver/schemas/results.py
# Per-file and per-blob outcomes returned by the archive and retrieval runs.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from photoarchiver.services.files import LocalFile


class UploadResult(str, Enum):
    UPLOADED = "Uploaded"
    ALREADY_EXISTS = "AlreadyExists"
    CONFLICT = "Conflict"
    DATE_MISSING = "DateMissing"
    ERROR = "Error"

    def is_successful(self) -> bool:
        return self in (UploadResult.UPLOADED, UploadResult.ALREADY_EXISTS)

    @property
    def log_level(self) -> int:
        return _UPLOAD_LOG_LEVELS[self]

    def __str__(self) -> str:
        return self.value


_UPLOAD_LOG_LEVELS = {
    UploadResult.UPLOADED: logging.INFO,
    UploadResult.ALREADY_EXISTS: logging.INFO,
    UploadResult.CONFLICT: logging.WARNING,
    UploadResult.DATE_MISSING: logging.WARNING,
    UploadResult.ERROR: logging.ERROR,
}


@dataclass(frozen=True)
class FileUploadResult:
    file: LocalFile
    result: UploadResult
    error: Optional[BaseException] = None


@dataclass
class ArchiveResult:
    results: List[FileUploadResult] = field(default_factory=list)
    cancelled: bool = False

    @property
    def succeeded(self) -> List[FileUploadResult]:
        return [r for r in self.results if r.result.is_successful()]

    @property
    def failed(self) -> List[FileUploadResult]:
        return [r for r in self.results if not r.result.is_successful()]

    @property
    def has_errors(self) -> bool:
        return any(r.result is UploadResult.ERROR for r in self.results)


class DownloadResult(str, Enum):
    SUCCEEDED = "Succeeded"
    PENDING = "Pending"
    CONFLICT = "Conflict"
    FAILED = "Failed"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class BlobDownloadResult:
    blob_name: str
    result: DownloadResult
    local_path: Optional[str] = None
    error: Optional[BaseException] = None


@dataclass
class RetrieveResult:
    results: List[BlobDownloadResult] = field(default_factory=list)
    cancelled: bool = False

    @property
    def succeeded(self) -> List[BlobDownloadResult]:
        return [r for r in self.results if r.result is DownloadResult.SUCCEEDED]

    @property
    def pending(self) -> List[BlobDownloadResult]:
        return [r for r in self.results if r.result is DownloadResult.PENDING]

    @property
    def failed(self) -> List[BlobDownloadResult]:
        return [r for r in self.results if r.result in (DownloadResult.FAILED, DownloadResult.CONFLICT)]

    @property
    def has_errors(self) -> bool:
        return any(r.result is DownloadResult.FAILED for r in self.results)
