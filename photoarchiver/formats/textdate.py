# photoarchiver/formats/textdate.py
# ctime-style dates ("Thu Oct 22 08:49:51 2009") as written by RIFF IDIT chunks
# and QuickTime "Created" tags. Parsed with the current locale first, then with
# fixed English day/month names so a non-English locale still reads them.

from __future__ import annotations

import re
from datetime import datetime
from typing import Optional

CTIME_FORMAT = "%a %b %d %H:%M:%S %Y"

_EN_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}
_EN_DAYS = {"mon", "tue", "wed", "thu", "fri", "sat", "sun"}

_ctime_re = re.compile(
    r"^(?P<dow>[A-Za-z]{3})\s+(?P<mon>[A-Za-z]{3})\s+(?P<d>\d{1,2})\s+"
    r"(?P<H>\d{2}):(?P<M>\d{2}):(?P<S>\d{2})\s+(?P<y>\d{4})$"
)


def _parse_english(value: str) -> Optional[datetime]:
    m = _ctime_re.match(value)
    if not m:
        return None
    if m.group("dow").lower() not in _EN_DAYS:
        return None
    month = _EN_MONTHS.get(m.group("mon").lower())
    if month is None:
        return None
    try:
        return datetime(
            int(m.group("y")), month, int(m.group("d")),
            int(m.group("H")), int(m.group("M")), int(m.group("S")),
        )
    except ValueError:
        return None


def parse_ctime_date(value: Optional[str]) -> Optional[datetime]:
    """Parse a ctime-style date string; None if it is not one."""
    if not value:
        return None
    s = " ".join(value.replace("\x00", " ").split())
    try:
        return datetime.strptime(s, CTIME_FORMAT)
    except ValueError:
        return _parse_english(s)
