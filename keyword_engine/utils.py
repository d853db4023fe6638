from __future__ import annotations

import re
import unicodedata
from datetime import datetime, timezone
from typing import Optional, Union


_WHITESPACE_RE = re.compile(r"\s+")
_COUNT_SEPARATORS_RE = re.compile(r"[,\s]")


def normalize_keyword(value: str) -> str:
    if value is None:
        return ""
    text = unicodedata.normalize("NFKC", str(value))
    text = _WHITESPACE_RE.sub(" ", text.strip())
    return text.casefold()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_count(num: Union[int, float]) -> str:
    """
    1234 -> "1.2k", 3400000 -> "3.4m", 999 -> "999".
    """
    num = num or 0
    if num >= 1_000_000:
        return f"{num / 1_000_000:.1f}m"
    if num >= 1_000:
        return f"{num / 1_000:.1f}k"
    return str(int(num))


def parse_review_count(value: Optional[Union[str, int, float]]) -> float:
    """
    Inverse of format_count, tolerant of thousands separators:
    "1.2k" -> 1200.0, "3,400" -> 3400.0, "" / None / garbage -> 0.0
    """
    if value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(max(0, value))
    clean = _COUNT_SEPARATORS_RE.sub("", str(value)).lower()
    multiplier = 1.0
    if clean.endswith("m"):
        multiplier = 1_000_000.0
        clean = clean[:-1]
    elif clean.endswith("k"):
        multiplier = 1_000.0
        clean = clean[:-1]
    try:
        return max(0.0, float(clean) * multiplier)
    except ValueError:
        return 0.0
