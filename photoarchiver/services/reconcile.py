# photoarchiver/services/reconcile.py
# Decide, per file, whether to upload, skip, rename, snapshot or overwrite
# against what the blob store already holds at the destination key.

from __future__ import annotations

import logging
import os
from enum import Enum
from typing import Optional, Tuple

from photoarchiver.errors import ContainerNotFoundError, VerificationFailedError
from photoarchiver.schemas.results import UploadResult
from photoarchiver.services.costs import CostEstimator
from photoarchiver.services.dedup import DeduplicationIndex
from photoarchiver.services.files import UploadItem
from photoarchiver.storage.base import AccessTier, BlobStore, ProgressCallback
from photoarchiver.utils.media_types import content_type_for

LOGGER = logging.getLogger("photoarchiver.reconcile")


class ConflictResolution(str, Enum):
    SKIP = "Skip"
    KEEP_BOTH = "KeepBoth"
    SNAPSHOT_AND_OVERWRITE = "SnapshotAndOverwrite"
    OVERWRITE = "Overwrite"

    @classmethod
    def parse(cls, value: str) -> "ConflictResolution":
        wanted = str(value).strip().lower().replace("-", "").replace("_", "")
        for policy in cls:
            if policy.value.lower() == wanted:
                return policy
        raise ValueError(f"unknown conflict resolution '{value}'")


def blob_key(directory: str, name: str) -> str:
    return directory.rstrip("/") + "/" + name


def keep_both_name(name: str, digest: bytes) -> str:
    """'IMG_1.jpg' -> 'IMG_1.<UPPERCASE HEX MD5>.jpg'."""
    stem, ext = os.path.splitext(name)
    return f"{stem}.{digest.hex().upper()}{ext}"


class UploadReconciler:
    """
    Compare-then-act against one container.

    exists_and_compare returns a tri-state:
      None   nothing stored at the key
      True   stored blob has the same size and MD5
      False  stored blob differs, or has no MD5 recorded

    A mismatch is handled by the conflict policy:
      Skip                  -> Conflict
      KeepBoth              -> upload under keep_both_name(); a second mismatch is Error
      SnapshotAndOverwrite  -> snapshot then upload; Error if the blob is archived
      Overwrite             -> upload; an archived blob is deleted first

    After a successful outcome the stored MD5 is re-read when verify is on,
    and the digest is recorded in the dedup index when one is given.
    """

    def __init__(
        self,
        store: BlobStore,
        container: str,
        *,
        conflict_resolution: ConflictResolution = ConflictResolution.SKIP,
        verify: bool = True,
        access_tier: Optional[AccessTier] = AccessTier.COOL,
        dedup: Optional[DeduplicationIndex] = None,
        costs: Optional[CostEstimator] = None,
    ) -> None:
        self.store = store
        self.container = container
        self.conflict_resolution = conflict_resolution
        self.verify = verify
        self.access_tier = access_tier
        self.dedup = dedup
        self.costs = costs or CostEstimator()

    def reconcile(
        self,
        item: UploadItem,
        directory: str,
        progress: Optional[ProgressCallback] = None,
    ) -> Tuple[UploadResult, str]:
        """Return the outcome and the key the file now lives under (or was compared to)."""
        key = blob_key(directory, item.file.name)
        state = self.exists_and_compare(key, item)

        if state is None:
            result = self.upload_core(key, item, progress)
        elif state:
            result = UploadResult.ALREADY_EXISTS
        else:
            result, key = self._resolve_conflict(key, item, directory, progress)

        if result.is_successful():
            if self.verify:
                self._verify(key, item)
            if self.dedup is not None:
                self.dedup.add(directory, item.compute_hash())
        return result, key

    def exists_and_compare(self, key: str, item: UploadItem) -> Optional[bool]:
        LOGGER.debug("Checking for %s/%s", self.container, key)
        self.costs.add_other()
        if not self.store.exists(self.container, key):
            return None

        props = self.store.get_properties(self.container, key)
        self.costs.add_other()
        if props.size != item.file.size:
            return False
        if props.content_hash is None:
            LOGGER.warning("Blob %s/%s has no hash stored", self.container, key)
            return False
        return bytes(props.content_hash) == item.compute_hash()

    def upload_core(self, key: str, item: UploadItem, progress: Optional[ProgressCallback] = None) -> UploadResult:
        LOGGER.debug("Uploading %s to %s/%s", item.file, self.container, key)
        kwargs = dict(
            metadata=dict(item.metadata),
            content_type=content_type_for(item.file.extension),
            tier=self.access_tier,
            progress=progress,
        )
        try:
            self.store.upload(self.container, key, item.data, **kwargs)
        except ContainerNotFoundError:
            self.store.create_container_if_not_exists(self.container)
            self.costs.add_list_or_create_container()
            self.store.upload(self.container, key, item.data, **kwargs)
        self.costs.add_write(item.file.size)
        return UploadResult.UPLOADED

    # ---------- conflict policies ----------

    def _resolve_conflict(
        self, key: str, item: UploadItem, directory: str, progress: Optional[ProgressCallback]
    ) -> Tuple[UploadResult, str]:
        policy = self.conflict_resolution

        if policy is ConflictResolution.KEEP_BOTH:
            renamed = blob_key(directory, keep_both_name(item.file.name, item.compute_hash()))
            state = self.exists_and_compare(renamed, item)
            if state is None:
                return self.upload_core(renamed, item, progress), renamed
            if state:
                return UploadResult.ALREADY_EXISTS, renamed
            LOGGER.warning("Renamed blob %s/%s exists with different content", self.container, renamed)
            return UploadResult.ERROR, renamed

        if policy is ConflictResolution.SNAPSHOT_AND_OVERWRITE:
            props = self.store.get_properties(self.container, key)
            if props.tier is AccessTier.ARCHIVE:
                LOGGER.info("Can't snapshot %s/%s, because blob is in Archive tier", self.container, key)
                return UploadResult.ERROR, key
            snapshot = self.store.create_snapshot(self.container, key)
            LOGGER.debug("Snapshot of %s/%s created: %s", self.container, key, snapshot)
            return self.upload_core(key, item, progress), key

        if policy is ConflictResolution.OVERWRITE:
            props = self.store.get_properties(self.container, key)
            if props.tier is AccessTier.ARCHIVE:
                LOGGER.debug("Deleting archived %s/%s", self.container, key)
                self.store.delete(self.container, key)
            return self.upload_core(key, item, progress), key

        return UploadResult.CONFLICT, key

    def _verify(self, key: str, item: UploadItem) -> None:
        props = self.store.get_properties(self.container, key)
        stored = props.content_hash
        if stored is None or bytes(stored) != item.compute_hash():
            raise VerificationFailedError(str(item.file), f"{self.container}/{key}")
