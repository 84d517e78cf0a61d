# photoarchiver/services/dates.py
# Capture date resolution: embedded metadata first, then sibling files
# (RAW -> JPEG, WAV -> MP4), then well-known file name patterns.

from __future__ import annotations

import logging
import re
import struct
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Sequence

from photoarchiver.formats.avi import read_avi_date
from photoarchiver.formats.quicktime import read_quicktime_date
from photoarchiver.formats.textdate import parse_ctime_date
from photoarchiver.services.files import LocalFile, UploadItem
from photoarchiver.services.metadata import find_tag, read_metadata
from photoarchiver.utils.media_types import PHOTO_EXT, QUICKTIME_EXT, RAW_EXT

LOGGER = logging.getLogger("photoarchiver.dates")

MetadataReader = Callable[[Path, Optional[bytes]], dict]

# Sibling lookups never chain: a JPEG or MP4 found for a RAW/WAV is final.
MAX_PEER_HOPS = 1

# Failures while reading embedded metadata mean "tag absent".
_READ_ERRORS = (OSError, ValueError, RuntimeError, struct.error)

_EXIF_DATE_TAGS = ("DateTimeOriginal", "DateTime", "ModifyDate")
_QUICKTIME_DATE_TAGS = ("CreateDate", "MediaCreateDate", "TrackCreateDate", "CreationDate", "Created")

_dt_re = re.compile(
    r"^(?P<y>\d{4}):(?P<m>\d{2}):(?P<d>\d{2})[ T]"
    r"(?P<H>\d{2}):(?P<M>\d{2}):(?P<S>\d{2})"
    r"(?:\.(?P<sub>\d+))?(?P<tz>Z|[+\-]\d{2}:?\d{2})?$"
)


def parse_exif_datetime(s: Optional[str]) -> Optional[datetime]:
    """Parse 'YYYY:MM:DD HH:MM:SS[.sub][tz]'; None for sentinels and garbage."""
    if s is None:
        return None
    s = str(s).strip().rstrip("\x00").strip()

    # Common invalid/sentinel values -> treat as missing
    if not s or s.startswith(("0000:00:00", "0001:01:01", "1970:01:01")):
        return None

    m = _dt_re.match(s)
    if not m:
        return None
    try:
        dt = datetime.strptime(s[:19].replace("T", " "), "%Y:%m:%d %H:%M:%S")
    except ValueError:
        return None

    tz = m.group("tz")
    if tz == "Z":
        return datetime.fromisoformat(dt.isoformat() + "+00:00")
    if tz:
        # normalize "+hhmm" -> "+hh:mm"
        tz = tz if ":" in tz else (tz[:3] + ":" + tz[3:])
        try:
            return datetime.fromisoformat(dt.isoformat() + tz)
        except ValueError:
            return None
    return dt


# ---------- Date from filename ----------

_TRASHED_PREFIX = re.compile(r"^\.trashed-\d{10}-")


def _ymd(y, m, d) -> datetime:
    return datetime(int(y), int(m), int(d))


# (pattern, groups -> datetime), tried in order
_FILENAME_PATTERNS = [
    # IMG_20190525_120904.jpg, VID_20181226_163237.mp4, PXL_20181226_163237123.jpg
    (re.compile(r"^(?:IMG|VID|PXL)_(2\d{3})(\d{2})(\d{2})_.{6,}"), lambda g: _ymd(*g)),
    # Screenshot_20190525_120904.png
    (re.compile(r"^Screenshot_(\d{4})(\d{2})(\d{2})_"), lambda g: _ymd(*g)),
    # WP_20140711_15_25_11_0_Pro.jpg
    (re.compile(r"^WP_(\d{4})(\d{2})(\d{2})_."), lambda g: _ymd(*g)),
    # 2018_07_01 18_41 Office Lens.jpg
    (re.compile(r"^(2\d{3})_(\d{2})_(\d{2}) \d{1,2}_\d{2} Office Lens\.jpg$"), lambda g: _ymd(*g)),
    # 5_25_18 11_39 Office Lens.jpg (month_day_yy)
    (re.compile(r"^(\d{1,2})_(\d{1,2})_(\d{2}) \d{1,2}_\d{2} Office Lens\.jpg$"),
     lambda g: _ymd(int(g[2]) + 2000, g[0], g[1])),
    # Office Lens_20140919_110252.jpg
    (re.compile(r"^Office Lens_(2\d{3})(\d{2})(\d{2})_"), lambda g: _ymd(*g)),
]


def date_from_filename(name: str) -> Optional[datetime]:
    """
    Calendar date encoded in a camera/app file name (time of day dropped).
    Examples handled:
      - IMG_20190525_120904.jpg / VID_ / PXL_
      - .trashed-1700000000-IMG_20190525_120904.jpg
      - Screenshot_20190525_120904.png
      - WP_20140711_15_25_11_0_Pro.jpg
      - 2018_07_01 18_41 Office Lens.jpg, 5_25_18 11_39 Office Lens.jpg
      - Office Lens_20140919_110252.jpg
    """
    s = _TRASHED_PREFIX.sub("", name, count=1)
    for pattern, build in _FILENAME_PATTERNS:
        m = pattern.match(s)
        if not m:
            continue
        try:
            return build(m.groups())
        except ValueError:
            # e.g. IMG_20191345_... matched the shape but is not a date
            return None
    return None


# ---------- Resolver ----------

class DateResolver:
    """
    Resolve the capture date of an upload item.

    Rules by extension, first hit wins:
      photo (jpg/jpeg/jfif/heif/heic)  EXIF DateTimeOriginal, then DateTime
      RAW (cr2/nef/dng/gpr)            EXIF, then sibling .jpg (dng: also without __highres)
      mp4/mov                          movie header creation time, then container tags
      avi                              RIFF IDIT chunk
      wav                              sibling .mp4
      anything                         file name patterns
    """

    def __init__(self, metadata_reader: MetadataReader = read_metadata) -> None:
        self.metadata_reader = metadata_reader

    def resolve(self, item: UploadItem, peers: Sequence[LocalFile], _hops: int = 0) -> Optional[datetime]:
        LOGGER.debug("Reading date for %s", item.file)
        ext = item.file.extension

        try:
            dt = self._from_content(item, ext)
        except _READ_ERRORS as e:
            LOGGER.debug("Unreadable metadata in %s: %s", item.file, e)
            dt = None
        if dt is not None:
            return dt

        if _hops < MAX_PEER_HOPS:
            dt = self._from_peers(item, ext, peers, _hops)
            if dt is not None:
                return dt

        return date_from_filename(item.file.name)

    def _from_content(self, item: UploadItem, ext: str) -> Optional[datetime]:
        if ext in PHOTO_EXT or ext in RAW_EXT:
            meta = self.metadata_reader(item.file.path, item.data)
            return parse_exif_datetime(find_tag(meta, *_EXIF_DATE_TAGS))
        if ext in QUICKTIME_EXT:
            dt = read_quicktime_date(item.data)
            if dt is not None:
                return dt
            meta = self.metadata_reader(item.file.path, item.data)
            value = find_tag(meta, *_QUICKTIME_DATE_TAGS)
            return parse_exif_datetime(value) or parse_ctime_date(value)
        if ext == ".avi":
            return read_avi_date(item.data)
        return None

    def _from_peers(self, item: UploadItem, ext: str, peers: Sequence[LocalFile], hops: int) -> Optional[datetime]:
        path = item.file.path
        if ext in RAW_EXT:
            candidates = [path.with_suffix(".jpg")]
            if ext == ".dng":
                candidates.append(Path(str(path.with_suffix(".jpg")).replace("__highres", "")))
        elif ext == ".wav":
            candidates = [path.with_suffix(".mp4")]
        else:
            return None

        for candidate in candidates:
            peer = _find_peer(peers, candidate)
            if peer is None:
                continue
            LOGGER.debug("Falling back to %s for %s", peer, item.file)
            with UploadItem(peer) as peer_item:
                try:
                    return self.resolve(peer_item, peers, _hops=hops + 1)
                except OSError as e:
                    LOGGER.debug("Unreadable peer %s: %s", peer, e)
                    return None
        return None


def _find_peer(peers: Sequence[LocalFile], candidate: Path) -> Optional[LocalFile]:
    wanted = str(candidate).lower()
    for peer in peers:
        if str(peer.path).lower() == wanted:
            return peer
    return None
