# photoarchiver/formats/avi.py
# Capture date of AVI files: the RIFF IDIT chunk near the start of the file.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from photoarchiver.formats.textdate import parse_ctime_date

SCAN_BYTES = 4096
IDIT = b"IDIT"
END = b"\x0a\x00"


def read_avi_date(data: bytes) -> Optional[datetime]:
    """
    Look for an IDIT chunk in the first 4 KiB. The value starts after the
    4-byte chunk size and runs up to the first LF+NUL.
    """
    head = data[:SCAN_BYTES]
    idx = head.find(IDIT)
    if idx == -1:
        return None
    start = idx + len(IDIT) + 4
    end = head.find(END, start)
    if end == -1:
        return None
    value = head[start:end].decode("ascii", errors="ignore")
    return parse_ctime_date(value)
