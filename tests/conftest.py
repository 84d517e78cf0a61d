import hashlib
import io
import struct
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

import pytest
from PIL import Image

from photoarchiver.core.config import StorageSettings, UploadOptions
from photoarchiver.errors import (
    BlobArchivedError,
    BlobNotFoundError,
    BlobRehydratingError,
    ContainerNotFoundError,
)
from photoarchiver.services.dates import DateResolver
from photoarchiver.services.files import LocalFile
from photoarchiver.services.metadata import read_image_metadata
from photoarchiver.storage.base import AccessTier, BlobItem, BlobProperties


# ---------- in-memory blob store ----------

@dataclass
class FakeBlob:
    data: bytes
    metadata: Dict[str, str] = field(default_factory=dict)
    content_type: str = "application/octet-stream"
    tier: Optional[AccessTier] = AccessTier.HOT
    with_hash: bool = True
    rehydrating: bool = False
    restored: bool = False

    @property
    def md5(self) -> Optional[bytes]:
        return hashlib.md5(self.data).digest() if self.with_hash else None


class FakeBlobStore:
    """BlobStore kept in dicts; records every call in .calls as (name, container, key)."""

    def __init__(self, containers=("photos",)):
        self.containers: Dict[str, Dict[str, FakeBlob]] = {c: {} for c in containers}
        self.snapshots: List[tuple] = []
        self.calls: List[tuple] = []
        # when set, get_properties reports this hash instead of the real one
        self.tampered_hash: Dict[tuple, Optional[bytes]] = {}

    # helpers for tests
    def put(self, container, key, data, metadata=None, tier=AccessTier.HOT, with_hash=True):
        self.containers.setdefault(container, {})[key] = FakeBlob(
            data=data, metadata=dict(metadata or {}), tier=tier, with_hash=with_hash
        )

    def blob(self, container, key) -> FakeBlob:
        return self.containers[container][key]

    def keys(self, container="photos"):
        return sorted(self.containers.get(container, {}))

    def finish_rehydration(self, container, key):
        b = self.blob(container, key)
        b.rehydrating = False
        b.restored = True

    def count(self, name):
        return sum(1 for c in self.calls if c[0] == name)

    def _container(self, container) -> Dict[str, FakeBlob]:
        if container not in self.containers:
            raise ContainerNotFoundError(f"no container {container}", container=container)
        return self.containers[container]

    # BlobStore protocol
    def exists(self, container, key):
        self.calls.append(("exists", container, key))
        return key in self.containers.get(container, {})

    def get_properties(self, container, key):
        self.calls.append(("get_properties", container, key))
        blobs = self._container(container)
        if key not in blobs:
            raise BlobNotFoundError(f"no blob {key}", container=container, key=key)
        b = blobs[key]
        content_hash = self.tampered_hash.get((container, key), b.md5)
        return BlobProperties(
            size=len(b.data), content_hash=content_hash, tier=b.tier,
            metadata=dict(b.metadata), rehydrating=b.rehydrating,
        )

    def upload(self, container, key, data, *, metadata, content_type, tier=None, progress=None):
        self.calls.append(("upload", container, key))
        blobs = self._container(container)
        blobs[key] = FakeBlob(data=bytes(data), metadata=dict(metadata), content_type=content_type,
                              tier=tier or AccessTier.HOT)
        if progress is not None:
            half = len(data) // 2
            progress(half)
            progress(len(data) - half)

    def create_snapshot(self, container, key):
        self.calls.append(("create_snapshot", container, key))
        b = self._container(container)[key]
        snap_id = f"{key}@{len(self.snapshots)}"
        self.snapshots.append((container, key, b.data))
        return snap_id

    def delete(self, container, key):
        self.calls.append(("delete", container, key))
        self._container(container).pop(key, None)

    def list_blobs(self, container, prefix, *, include_metadata=False):
        self.calls.append(("list_blobs", container, prefix))
        blobs = self._container(container)
        for key in sorted(blobs):
            if key.startswith(prefix):
                b = blobs[key]
                yield BlobItem(name=key, size=len(b.data), content_hash=b.md5, tier=b.tier,
                               metadata=dict(b.metadata) if include_metadata else {})

    def create_container_if_not_exists(self, container):
        self.calls.append(("create_container", container, None))
        if container in self.containers:
            return False
        self.containers[container] = {}
        return True

    def set_access_tier(self, container, key, tier):
        self.calls.append(("set_access_tier", container, key))
        b = self._container(container)[key]
        if b.tier is AccessTier.ARCHIVE and tier is not AccessTier.ARCHIVE and not b.restored:
            b.rehydrating = True
            return
        b.tier = tier
        b.restored = False

    def download(self, container, key, fileobj):
        self.calls.append(("download", container, key))
        b = self._container(container)[key]
        if b.tier is AccessTier.ARCHIVE and not b.restored:
            if b.rehydrating:
                raise BlobRehydratingError("rehydrating", container=container, key=key)
            raise BlobArchivedError("archived", container=container, key=key)
        fileobj.write(b.data)
        return len(b.data)


class RecordingProgress:
    def __init__(self):
        self.events: List[tuple] = []

    def initialize(self, total_bytes, total_items):
        self.events.append(("initialize", total_bytes, total_items))

    def bytes_progress(self, done):
        self.events.append(("bytes", done))

    def item_progress(self, done):
        self.events.append(("items", done))

    def finished(self):
        self.events.append(("finished",))

    def error(self):
        self.events.append(("error",))

    def indeterminate(self):
        self.events.append(("indeterminate",))

    def of(self, kind):
        return [e for e in self.events if e[0] == kind]


# ---------- sample media ----------

def make_jpeg(date_time_original: Optional[str] = None, date_time: Optional[str] = None,
              size=(64, 48), color=(200, 30, 30)) -> bytes:
    im = Image.new("RGB", size, color)
    exif = Image.Exif()
    if date_time:
        exif[0x0132] = date_time  # DateTime
    if date_time_original:
        exif[0x8769] = {0x9003: date_time_original}  # Exif IFD / DateTimeOriginal
    buf = io.BytesIO()
    im.save(buf, format="JPEG", exif=exif.tobytes() if len(exif) else b"")
    return buf.getvalue()


def make_mp4(created: datetime) -> bytes:
    seconds = int((created - datetime(1904, 1, 1)).total_seconds())
    mvhd_payload = b"\x00\x00\x00\x00" + struct.pack(">II", seconds, seconds) + b"\x00" * 88
    mvhd = struct.pack(">I4s", 8 + len(mvhd_payload), b"mvhd") + mvhd_payload
    moov = struct.pack(">I4s", 8 + len(mvhd), b"moov") + mvhd
    ftyp = struct.pack(">I4s", 16, b"ftyp") + b"isom\x00\x00\x02\x00"
    return ftyp + moov


def make_avi(idit: str) -> bytes:
    value = idit.encode("ascii") + b"\n\x00"
    chunk = b"IDIT" + struct.pack("<I", len(value)) + value
    body = b"AVI LIST" + struct.pack("<I", 4 + len(chunk)) + b"hdrl" + chunk
    return b"RIFF" + struct.pack("<I", len(body)) + body


def write_file(path, data: bytes) -> LocalFile:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return LocalFile(path=path, size=len(data))


def pillow_reader(path, data=None):
    return read_image_metadata(data if data is not None else path.read_bytes())


# ---------- fixtures ----------

@pytest.fixture
def store():
    return FakeBlobStore()


@pytest.fixture
def progress():
    return RecordingProgress()


@pytest.fixture
def resolver():
    # Pillow only, so results do not depend on exiftool being installed
    return DateResolver(metadata_reader=pillow_reader)


@pytest.fixture
def storage_settings():
    return StorageSettings(container="photos")


@pytest.fixture
def upload_options():
    return UploadOptions(verify=True, deduplicate=False)
