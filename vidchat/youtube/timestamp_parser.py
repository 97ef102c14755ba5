from __future__ import annotations

import math
import re
from typing import Any, List, Optional


# [M:SS] or [MM:SS]; seconds must be exactly two digits.
_BRACKET_PATTERN = re.compile(r"\[(\d{1,2}):(\d{2})\]")


def _match_to_ms(match: "re.Match[str]") -> int:
    minutes = int(match.group(1))
    seconds = int(match.group(2))
    return (minutes * 60 + seconds) * 1000


def parse_timestamp(text: str) -> Optional[int]:
    """
    Parse the first bracketed ``[MM:SS]`` reference in ``text`` into milliseconds.

    Returns None when no well-formed reference is present.
    """
    if not text:
        return None
    match = _BRACKET_PATTERN.search(text)
    if not match:
        return None
    return _match_to_ms(match)


def extract_timestamps(text: str) -> List[int]:
    """
    Return every ``[M:SS]``/``[MM:SS]`` reference in ``text`` as milliseconds.

    Matches are non-overlapping, in left-to-right order, duplicates kept.
    """
    if not text:
        return []
    return [_match_to_ms(match) for match in _BRACKET_PATTERN.finditer(text)]


def format_time(seconds: Any) -> str:
    """
    Render seconds as ``MM:SS``.

    Negative, NaN or non-numeric input renders as ``00:00``. Minutes are not
    capped, so 125 minutes renders as ``125:00``.
    """
    try:
        value = float(seconds)
    except (TypeError, ValueError):
        return "00:00"
    if math.isnan(value) or math.isinf(value) or value < 0:
        return "00:00"
    total_seconds = int(math.floor(value))
    minutes, secs = divmod(total_seconds, 60)
    return f"{minutes:02d}:{secs:02d}"


def format_ms(milliseconds: int) -> str:
    return format_time(milliseconds / 1000)


def seconds_to_ms(seconds: Any) -> Optional[int]:
    """Convert a playback position in seconds to whole milliseconds."""
    if seconds is None:
        return None
    try:
        value = float(seconds)
    except (TypeError, ValueError):
        return None
    if math.isnan(value) or math.isinf(value) or value < 0:
        return None
    return int(math.floor(value * 1000))
