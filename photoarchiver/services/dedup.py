# photoarchiver/services/dedup.py
# Per-directory set of content hashes already present in the store.
# One instance lives for one archive run and is owned by the Archiver.

from __future__ import annotations

import logging
from typing import Dict, Optional, Set

from photoarchiver.errors import ContainerNotFoundError
from photoarchiver.services.costs import CostEstimator
from photoarchiver.storage.base import BlobStore

LOGGER = logging.getLogger("photoarchiver.dedup")


class DeduplicationIndex:
    """
    Lazily lists each destination directory once, then answers membership
    from memory. Digests are 16-byte MD5 values compared byte for byte.

    ``add`` requires a prior ``contains`` for the same directory and raises
    KeyError otherwise: the set must have been loaded from the store first,
    or later lookups would miss the remote hashes.
    """

    def __init__(self, store: BlobStore, costs: Optional[CostEstimator] = None) -> None:
        self.store = store
        self.costs = costs or CostEstimator()
        self._sets: Dict[str, Set[bytes]] = {}

    def contains(self, container: str, directory: str, digest: bytes) -> bool:
        hashes = self._sets.get(directory)
        if hashes is None:
            hashes = self._load(container, directory)
            self._sets[directory] = hashes
        return bytes(digest) in hashes

    def add(self, directory: str, digest: bytes) -> None:
        self._sets[directory].add(bytes(digest))

    def _load(self, container: str, directory: str) -> Set[bytes]:
        prefix = directory.rstrip("/") + "/"
        LOGGER.info("Gathering hashes from '%s/%s'...", container, prefix)
        self.costs.add_list_or_create_container()
        try:
            return {b.content_hash for b in self.store.list_blobs(container, prefix) if b.content_hash is not None}
        except ContainerNotFoundError:
            # nothing uploaded yet; the container is created on first upload
            return set()
