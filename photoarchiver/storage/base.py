# photoarchiver/storage/base.py
# Blob store abstraction consumed by the archive and retrieval pipelines.
# The pipelines only talk to BlobStore; the S3 backend (storage/s3.py) and the
# in-memory fake used by the tests both implement it.

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import BinaryIO, Callable, Dict, Iterator, Optional, Protocol, runtime_checkable

# Called with the number of bytes transferred since the previous call.
ProgressCallback = Callable[[int], None]


class AccessTier(str, Enum):
    HOT = "Hot"
    COOL = "Cool"
    ARCHIVE = "Archive"

    @classmethod
    def parse(cls, value: str) -> "AccessTier":
        """Case-insensitive lookup by value ('cool', 'Archive', ...)."""
        for tier in cls:
            if tier.value.lower() == str(value).strip().lower():
                return tier
        raise ValueError(f"unknown access tier '{value}'")


@dataclass(frozen=True)
class BlobProperties:
    """Properties of a stored blob.

    Attributes:
        size: Content length in bytes
        content_hash: 16-byte MD5 digest, None if the store has none recorded
        tier: Storage tier, None if the backend does not report one
        metadata: User metadata attached at upload time
        rehydrating: True while an archive-tier rehydration is in progress
    """

    size: int
    content_hash: Optional[bytes]
    tier: Optional[AccessTier] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    rehydrating: bool = False


@dataclass(frozen=True)
class BlobItem:
    """One blob returned by :meth:`BlobStore.list_blobs`."""

    name: str
    size: int
    content_hash: Optional[bytes]
    tier: Optional[AccessTier] = None
    metadata: Dict[str, str] = field(default_factory=dict)


@runtime_checkable
class BlobStore(Protocol):
    """Contract for blob storage backends.

    Keys are full blob names inside a container ("2019/05/25/IMG_1.jpg").
    Backends raise the :mod:`photoarchiver.errors` storage exceptions rather
    than SDK-specific ones.
    """

    def exists(self, container: str, key: str) -> bool:
        """Return True if a blob exists at ``key``."""
        ...

    def get_properties(self, container: str, key: str) -> BlobProperties:
        """Return size, stored MD5 and tier.

        Raises:
            BlobNotFoundError: If no blob exists at ``key``
        """
        ...

    def upload(
        self,
        container: str,
        key: str,
        data: bytes,
        *,
        metadata: Dict[str, str],
        content_type: str,
        tier: Optional[AccessTier] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> None:
        """Write ``data`` to ``key``, replacing any existing blob.

        Raises:
            ContainerNotFoundError: If the container does not exist
        """
        ...

    def create_snapshot(self, container: str, key: str) -> str:
        """Create a point-in-time copy of ``key`` and return its identifier."""
        ...

    def delete(self, container: str, key: str) -> None:
        ...

    def list_blobs(self, container: str, prefix: str, *, include_metadata: bool = False) -> Iterator[BlobItem]:
        """Yield every blob whose key starts with ``prefix`` (full listing).

        Raises:
            ContainerNotFoundError: If the container does not exist
        """
        ...

    def create_container_if_not_exists(self, container: str) -> bool:
        """Create the container; return True if it was created by this call."""
        ...

    def set_access_tier(self, container: str, key: str, tier: AccessTier) -> None:
        """Move a blob to ``tier``; from Archive this starts a rehydration."""
        ...

    def download(self, container: str, key: str, fileobj: BinaryIO) -> int:
        """Stream the blob into ``fileobj`` and return the number of bytes.

        Raises:
            BlobArchivedError: If the blob is archived and not rehydrated
            BlobRehydratingError: If a rehydration is still in progress
        """
        ...
