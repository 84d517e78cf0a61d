# photoarchiver/formats/quicktime.py
# Capture date of MP4/MOV files: creation_time of the movie header (moov/mvhd).
# QuickTime stores seconds since 1904-01-01 00:00 UTC.

from __future__ import annotations

import struct
from datetime import datetime, timedelta
from typing import Iterator, Optional, Tuple

QUICKTIME_EPOCH = datetime(1904, 1, 1)


def _iter_atoms(data: bytes, start: int, end: int) -> Iterator[Tuple[bytes, int, int]]:
    """Yield (type, payload_start, payload_end) for each atom in data[start:end]."""
    pos = start
    while pos + 8 <= end:
        size, kind = struct.unpack(">I4s", data[pos:pos + 8])
        header = 8
        if size == 1:
            if pos + 16 > end:
                return
            size = struct.unpack(">Q", data[pos + 8:pos + 16])[0]
            header = 16
        elif size == 0:
            size = end - pos
        if size < header or pos + size > end:
            return
        yield kind, pos + header, pos + size
        pos += size


def read_quicktime_date(data: bytes) -> Optional[datetime]:
    """Return the mvhd creation time, or None if absent or zero."""
    for kind, start, end in _iter_atoms(data, 0, len(data)):
        if kind != b"moov":
            continue
        for inner, istart, iend in _iter_atoms(data, start, end):
            if inner != b"mvhd" or iend - istart < 8:
                continue
            version = data[istart]
            if version == 1:
                if iend - istart < 12:
                    return None
                seconds = struct.unpack(">Q", data[istart + 4:istart + 12])[0]
            else:
                seconds = struct.unpack(">I", data[istart + 4:istart + 8])[0]
            if seconds == 0:
                return None
            try:
                return QUICKTIME_EPOCH + timedelta(seconds=seconds)
            except OverflowError:
                return None
    return None
