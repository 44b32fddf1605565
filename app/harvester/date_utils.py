from __future__ import annotations

import re
from datetime import datetime
from typing import Iterable, Optional

_DATE_FORMATS: Iterable[str] = (
    "%d.%m.%y",
    "%d.%m.%Y",
    "%Y-%m-%d",
    "%d/%m/%Y",
    "%d/%m/%y",
    "%d-%m-%Y",
    "%d-%b-%Y",
    "%d %b %Y",
    "%d %B %Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%Y:%m:%d %H:%M:%S",
)

_ISO_PREFIX = re.compile(r"^(\d{4})-(\d{2})-(\d{2})[T ]")


def normalize_date(value: Optional[str]) -> Optional[str]:
    """Return ``value`` as YYYY-MM-DD, or ``None`` when it cannot be parsed.

    Gallery captions mostly carry ``DD.MM.YY`` dates; structured payloads tend
    to carry ISO timestamps. Day-first is assumed for ambiguous numeric forms.
    """

    candidate = (value or "").strip()
    if not candidate:
        return None

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(candidate, fmt).strftime("%Y-%m-%d")
        except ValueError:
            continue

    match = _ISO_PREFIX.match(candidate)
    if match:
        year, month, day = match.groups()
        try:
            return datetime(int(year), int(month), int(day)).strftime("%Y-%m-%d")
        except ValueError:
            return None
    return None


__all__ = ["normalize_date"]
