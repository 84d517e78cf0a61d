# photoarchiver/services/files.py
# Local file source for uploads, download targets, and the per-file upload
# item that owns a file's bytes while it is being processed.

from __future__ import annotations

import base64
import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional

from photoarchiver.utils.media_types import is_ignored

LOGGER = logging.getLogger("photoarchiver.files")

ORIGINAL_MD5_KEY = "OriginalMd5"


@dataclass(frozen=True)
class LocalFile:
    path: Path
    size: int

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def extension(self) -> str:
        return self.path.suffix.lower()

    def open_read(self) -> BinaryIO:
        return self.path.open("rb")

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()

    def delete(self) -> None:
        self.path.unlink()

    def __str__(self) -> str:
        return str(self.path)


class LocalDirectory:
    """A directory on disk: source of upload candidates or target of downloads."""

    def __init__(self, path) -> None:
        self.path = Path(path).expanduser()

    def list_files(self, search_pattern: str = "**/*") -> List[LocalFile]:
        """Files matching the glob pattern, minus junk (Thumbs.db, .thm, ...)."""
        if not self.path.is_dir():
            raise NotADirectoryError(f"not a directory: {self.path}")
        out: List[LocalFile] = []
        for p in self.path.glob(search_pattern):
            if not p.is_file():
                continue
            if is_ignored(p.name, p.suffix):
                LOGGER.debug("Ignoring %s", p)
                continue
            out.append(LocalFile(path=p, size=p.stat().st_size))
        return out

    def create_file(self, name: str) -> BinaryIO:
        """Open a new file for writing; raises FileExistsError if it exists."""
        self.path.mkdir(parents=True, exist_ok=True)
        return (self.path / name).open("xb")


class UploadItem:
    """
    One candidate file while it moves through the pipeline.
    Bytes are read at most once and shared by every consumer (date readers,
    hashing, enrichment, upload); the MD5 is computed at most once.
    Use as a context manager so the buffer is released when the file is done.
    """

    def __init__(self, file: LocalFile) -> None:
        self.file = file
        self.metadata: Dict[str, str] = {}
        self._buffer: Optional[bytes] = None
        self._hash: Optional[bytes] = None

    @property
    def data(self) -> bytes:
        if self._buffer is None:
            self._buffer = self.file.read_bytes()
        return self._buffer

    @property
    def loaded(self) -> bool:
        return self._buffer is not None

    def compute_hash(self) -> bytes:
        """MD5 of the content; also records OriginalMd5 (base64) in the metadata."""
        if self._hash is None:
            self._hash = hashlib.md5(self.data).digest()
            self.metadata[ORIGINAL_MD5_KEY] = base64.b64encode(self._hash).decode("ascii")
        return self._hash

    def release(self) -> None:
        self._buffer = None

    def __enter__(self) -> "UploadItem":
        return self

    def __exit__(self, *exc) -> None:
        self.release()
