# photoarchiver/storage/s3.py
# Amazon S3 blob store backend.
# - container = bucket; tiers map to storage classes (Hot=STANDARD,
#   Cool=STANDARD_IA, Archive=GLACIER; DEEP_ARCHIVE reads back as Archive)
# - snapshots are server-side copies under .snapshots/<key>/<timestamp>
# - rehydration is restore_object on an archived object
# - the content hash is the base64 MD5 this tool writes to the "content-md5"
#   user metadata; a single-part ETag is only used when that is absent, since
#   SSE-KMS/SSE-C ETags look like an MD5 but are not one
# Large uploads go through boto3's managed transfer; parallel_block_count
# sets how many parts are in flight for a single file.

from __future__ import annotations

import base64
import hashlib
import io
import logging
from datetime import datetime, timezone
from typing import BinaryIO, Dict, Iterator, Optional

import boto3
from boto3.exceptions import S3UploadFailedError
from boto3.s3.transfer import TransferConfig
from botocore.exceptions import ClientError

from photoarchiver.errors import (
    BlobArchivedError,
    BlobNotFoundError,
    BlobRehydratingError,
    ContainerNotFoundError,
    StorageError,
)
from photoarchiver.storage.base import AccessTier, BlobItem, BlobProperties, ProgressCallback

LOGGER = logging.getLogger("photoarchiver.s3")

HASH_METADATA_KEY = "content-md5"
SNAPSHOT_PREFIX = ".snapshots/"

_TIER_TO_STORAGE_CLASS = {
    AccessTier.HOT: "STANDARD",
    AccessTier.COOL: "STANDARD_IA",
    AccessTier.ARCHIVE: "GLACIER",
}

_STORAGE_CLASS_TO_TIER = {
    "STANDARD": AccessTier.HOT,
    "REDUCED_REDUNDANCY": AccessTier.HOT,
    "INTELLIGENT_TIERING": AccessTier.HOT,
    "STANDARD_IA": AccessTier.COOL,
    "ONEZONE_IA": AccessTier.COOL,
    "GLACIER_IR": AccessTier.COOL,
    "GLACIER": AccessTier.ARCHIVE,
    "DEEP_ARCHIVE": AccessTier.ARCHIVE,
}

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def _tier_from_storage_class(storage_class: Optional[str]) -> AccessTier:
    # S3 omits StorageClass for STANDARD objects
    return _STORAGE_CLASS_TO_TIER.get(storage_class or "STANDARD", AccessTier.HOT)


def hash_from_etag(etag: Optional[str]) -> Optional[bytes]:
    """Return the MD5 digest encoded in a single-part ETag, else None.

    Multipart ETags look like ``"<hex>-<parts>"`` and are not content hashes.
    """
    if not etag:
        return None
    value = etag.strip('"')
    if "-" in value or len(value) != 32:
        return None
    try:
        return bytes.fromhex(value)
    except ValueError:
        return None


def hash_from_metadata(metadata: Dict[str, str]) -> Optional[bytes]:
    value = metadata.get(HASH_METADATA_KEY)
    if not value:
        return None
    try:
        digest = base64.b64decode(value, validate=True)
    except ValueError:
        return None
    return digest if len(digest) == 16 else None


class S3BlobStore:
    """S3 implementation of :class:`~photoarchiver.storage.base.BlobStore`.

    Args:
        region: AWS region (None lets boto3 resolve it)
        endpoint_url: Alternate endpoint for S3-compatible services
        profile: Named AWS profile for credentials
        parallel_block_count: Parts uploaded concurrently for one large file
        rehydration_days: How long a restored archive object stays readable
        client: Pre-built boto3 S3 client (tests inject a mock here)
    """

    def __init__(
        self,
        *,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        profile: Optional[str] = None,
        parallel_block_count: Optional[int] = None,
        rehydration_days: int = 7,
        client=None,
    ) -> None:
        self.rehydration_days = rehydration_days
        if parallel_block_count:
            self.transfer_config = TransferConfig(
                max_concurrency=parallel_block_count,
                use_threads=parallel_block_count > 1,
            )
        else:
            self.transfer_config = TransferConfig()
        self.client = client if client is not None else self._init_client(region, endpoint_url, profile)

    @staticmethod
    def _init_client(region: Optional[str], endpoint_url: Optional[str], profile: Optional[str]):
        session = boto3.session.Session(profile_name=profile, region_name=region)
        LOGGER.debug("Connecting to S3 (region=%s, endpoint=%s)", session.region_name, endpoint_url or "-")
        return session.client("s3", endpoint_url=endpoint_url)

    # ---------- properties ----------

    def _head(self, container: str, key: str) -> dict:
        try:
            return self.client.head_object(Bucket=container, Key=key)
        except ClientError as e:
            code = _error_code(e)
            if code in _NOT_FOUND_CODES:
                raise BlobNotFoundError(f"blob not found: {container}/{key}", container=container, key=key) from e
            if code == "NoSuchBucket":
                raise ContainerNotFoundError(f"bucket not found: {container}", container=container) from e
            raise StorageError(f"head_object failed for {container}/{key}: {e}", container=container, key=key) from e

    def exists(self, container: str, key: str) -> bool:
        try:
            self._head(container, key)
        except (BlobNotFoundError, ContainerNotFoundError):
            return False
        return True

    def get_properties(self, container: str, key: str) -> BlobProperties:
        head = self._head(container, key)
        metadata = dict(head.get("Metadata") or {})
        restore = head.get("Restore") or ""
        return BlobProperties(
            size=int(head.get("ContentLength", 0)),
            content_hash=hash_from_metadata(metadata) or hash_from_etag(head.get("ETag")),
            tier=_tier_from_storage_class(head.get("StorageClass")),
            metadata=metadata,
            rehydrating='ongoing-request="true"' in restore,
        )

    # ---------- writes ----------

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
        extra_args = {
            "Metadata": {**metadata, HASH_METADATA_KEY: base64.b64encode(hashlib.md5(data).digest()).decode("ascii")},
            "ContentType": content_type,
        }
        if tier is not None:
            extra_args["StorageClass"] = _TIER_TO_STORAGE_CLASS[tier]

        LOGGER.debug("Uploading %d bytes to s3://%s/%s", len(data), container, key)
        try:
            self.client.upload_fileobj(
                io.BytesIO(data),
                container,
                key,
                ExtraArgs=extra_args,
                Callback=progress,
                Config=self.transfer_config,
            )
        except ClientError as e:
            if _error_code(e) == "NoSuchBucket":
                raise ContainerNotFoundError(f"bucket not found: {container}", container=container) from e
            raise StorageError(f"upload failed for {container}/{key}: {e}", container=container, key=key) from e
        except S3UploadFailedError as e:
            # the managed transfer flattens the ClientError into its message
            if "NoSuchBucket" in str(e):
                raise ContainerNotFoundError(f"bucket not found: {container}", container=container) from e
            raise StorageError(f"upload failed for {container}/{key}: {e}", container=container, key=key) from e

    def create_snapshot(self, container: str, key: str) -> str:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        snapshot_key = f"{SNAPSHOT_PREFIX}{key}/{stamp}"
        LOGGER.debug("Snapshot s3://%s/%s -> %s", container, key, snapshot_key)
        try:
            self.client.copy_object(
                Bucket=container,
                Key=snapshot_key,
                CopySource={"Bucket": container, "Key": key},
                MetadataDirective="COPY",
            )
        except ClientError as e:
            raise StorageError(f"snapshot failed for {container}/{key}: {e}", container=container, key=key) from e
        return snapshot_key

    def delete(self, container: str, key: str) -> None:
        try:
            self.client.delete_object(Bucket=container, Key=key)
        except ClientError as e:
            raise StorageError(f"delete failed for {container}/{key}: {e}", container=container, key=key) from e

    def create_container_if_not_exists(self, container: str) -> bool:
        try:
            self.client.head_bucket(Bucket=container)
            return False
        except ClientError as e:
            if _error_code(e) not in _NOT_FOUND_CODES | {"NoSuchBucket"}:
                raise StorageError(f"head_bucket failed for {container}: {e}", container=container) from e

        kwargs = {"Bucket": container}
        region = self.client.meta.region_name
        if region and region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": region}
        try:
            self.client.create_bucket(**kwargs)
        except ClientError as e:
            if _error_code(e) in ("BucketAlreadyOwnedByYou", "BucketAlreadyExists"):
                return False
            raise StorageError(f"create_bucket failed for {container}: {e}", container=container) from e
        LOGGER.info("Created bucket '%s'", container)
        return True

    def set_access_tier(self, container: str, key: str, tier: AccessTier) -> None:
        current = self.get_properties(container, key)
        try:
            if current.tier == AccessTier.ARCHIVE and tier != AccessTier.ARCHIVE:
                self.client.restore_object(
                    Bucket=container,
                    Key=key,
                    RestoreRequest={"Days": self.rehydration_days, "GlacierJobParameters": {"Tier": "Standard"}},
                )
                LOGGER.debug("Requested restore of s3://%s/%s", container, key)
                return
            self.client.copy_object(
                Bucket=container,
                Key=key,
                CopySource={"Bucket": container, "Key": key},
                StorageClass=_TIER_TO_STORAGE_CLASS[tier],
                MetadataDirective="COPY",
            )
        except ClientError as e:
            if _error_code(e) == "RestoreAlreadyInProgress":
                LOGGER.debug("Restore already in progress for s3://%s/%s", container, key)
                return
            raise StorageError(f"tier change failed for {container}/{key}: {e}", container=container, key=key) from e

    # ---------- reads ----------

    def list_blobs(self, container: str, prefix: str, *, include_metadata: bool = False) -> Iterator[BlobItem]:
        paginator = self.client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=container, Prefix=prefix):
                for obj in page.get("Contents", []):
                    key = obj["Key"]
                    # listings carry no user metadata, and the ETag alone is not
                    # trusted (multipart and SSE-KMS ETags are not MD5s)
                    head = self._head(container, key)
                    metadata = dict(head.get("Metadata") or {})
                    yield BlobItem(
                        name=key,
                        size=int(obj.get("Size", 0)),
                        content_hash=hash_from_metadata(metadata) or hash_from_etag(obj.get("ETag")),
                        tier=_tier_from_storage_class(obj.get("StorageClass")),
                        metadata=metadata if include_metadata else {},
                    )
        except ClientError as e:
            if _error_code(e) == "NoSuchBucket":
                raise ContainerNotFoundError(f"bucket not found: {container}", container=container) from e
            raise StorageError(f"listing failed for {container}/{prefix}: {e}", container=container) from e

    def download(self, container: str, key: str, fileobj: BinaryIO) -> int:
        transferred = 0

        def _count(n: int) -> None:
            nonlocal transferred
            transferred += n

        try:
            self.client.download_fileobj(container, key, fileobj, Callback=_count, Config=self.transfer_config)
        except ClientError as e:
            code = _error_code(e)
            if code == "InvalidObjectState":
                if self.get_properties(container, key).rehydrating:
                    raise BlobRehydratingError(f"blob is rehydrating: {container}/{key}", container=container, key=key) from e
                raise BlobArchivedError(f"blob is archived: {container}/{key}", container=container, key=key) from e
            if code in _NOT_FOUND_CODES:
                raise BlobNotFoundError(f"blob not found: {container}/{key}", container=container, key=key) from e
            raise StorageError(f"download failed for {container}/{key}: {e}", container=container, key=key) from e
        return transferred
