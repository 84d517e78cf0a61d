# photoarchiver/services/metadata.py
from __future__ import annotations

import io
import json
import logging
import shutil
import subprocess
from functools import lru_cache
from pathlib import Path
from typing import Optional

import pillow_heif
from PIL import ExifTags, Image

# Enables Pillow to open HEIC/HEIF
pillow_heif.register_heif_opener()

LOGGER = logging.getLogger("photoarchiver.metadata")

EXIF_IFD_POINTER = 0x8769

# Groups whose tags describe the file on disk, not the capture.
_FILESYSTEM_GROUPS = {"System", "File", "ExifTool"}


def _has_exiftool() -> bool:
    return shutil.which("exiftool") is not None


def _via_exiftool(p: Path) -> dict:
    """
    Return raw exiftool tags as a flat dict keyed "Group:Tag".
    We exclude known huge/binary blobs at the CLI level.
    """
    cmd = [
        "exiftool",
        "-j", "-G1",
        "-api", "largefilesupport=1",
        "--MakerNotes", "--PreviewImage", "--ThumbnailImage",
        str(p),
    ]
    proc = subprocess.run(cmd, capture_output=True, text=True, check=False, timeout=20)
    if proc.returncode != 0:
        raise RuntimeError(proc.stderr.strip() or f"exiftool rc={proc.returncode}")
    data = json.loads(proc.stdout) or [{}]
    row = dict(data[0])
    row.pop("SourceFile", None)
    return {str(k): row[k] for k in row}


def _via_pillow(source) -> dict:
    """Image-only reader: IFD0 plus the Exif sub-IFD (where DateTimeOriginal lives)."""
    out: dict = {}
    with Image.open(source) as im:
        out["Basic:Format"] = im.format
        exif = im.getexif()
        if not exif:
            return out
        tagmap = getattr(ExifTags, "TAGS", {})
        for tag_id, val in exif.items():
            out[f"IFD0:{tagmap.get(tag_id, tag_id)}"] = _to_jsonable(val)
        for tag_id, val in exif.get_ifd(EXIF_IFD_POINTER).items():
            out[f"ExifIFD:{tagmap.get(tag_id, tag_id)}"] = _to_jsonable(val)
    return out


def _to_jsonable(v):
    """Make any value JSON-serializable without special casing fields."""
    if isinstance(v, bytes):
        return v.decode("ascii", errors="ignore")
    if isinstance(v, (str, int, float, bool)) or v is None:
        return v
    try:
        json.dumps(v)
        return v
    except (TypeError, ValueError):
        return str(v)


@lru_cache(maxsize=256)
def _cached_read(path_str: str, mtime_ns: int, size: int) -> dict:
    p = Path(path_str)
    try:
        meta = _via_exiftool(p)
        meta["_source"] = "exiftool"
    except (OSError, RuntimeError, ValueError, subprocess.SubprocessError) as e:
        LOGGER.debug("exiftool failed for %s: %s", p, e)
        meta = {"_error": str(e), **read_image_metadata(p.read_bytes())}
    return meta


def read_image_metadata(data: bytes) -> dict:
    """Pillow-only read of an in-memory image. {} if the bytes are not an image."""
    try:
        meta = _via_pillow(io.BytesIO(data))
    except (OSError, ValueError, SyntaxError) as e:
        # Pillow raises SyntaxError for some truncated TIFF/RAW headers
        LOGGER.debug("Pillow could not read metadata: %s", e)
        return {"_source": "pillow", "_error": str(e)}
    meta["_source"] = "pillow"
    return meta


def read_metadata(p: Path, data: Optional[bytes] = None) -> dict:
    """
    Public API: all available tags for a media file.
    exiftool when it is on PATH (reads RAW/HEIC/video), otherwise Pillow on
    the already-loaded bytes when given.
    """
    if _has_exiftool():
        st = p.stat()
        return dict(_cached_read(str(p), st.st_mtime_ns, st.st_size))
    if data is None:
        data = p.read_bytes()
    return read_image_metadata(data)


def find_tag(meta: dict, *names: str) -> Optional[str]:
    """
    First value whose bare tag name (group prefix stripped) equals one of
    ``names``, tried in the order given. Filesystem groups are ignored.
    """
    for wanted in names:
        for key, value in meta.items():
            group, _, bare = key.rpartition(":")
            if bare != wanted or group in _FILESYSTEM_GROUPS:
                continue
            if value is None or value == "":
                continue
            return str(value)
    return None
