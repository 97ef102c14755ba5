from __future__ import annotations

from typing import Optional, Sequence

from .models import TranscriptEntry
from .timestamp_parser import format_ms

DEFAULT_WINDOW_MS = 20000


def _overlaps(entry: TranscriptEntry, window_start: int, window_end: int) -> bool:
    entry_start = entry.offset_ms
    entry_end = entry.end_ms
    return (
        (window_start <= entry_start <= window_end)
        or (window_start <= entry_end <= window_end)
        or (entry_start <= window_start and entry_end >= window_end)
    )


def get_transcript_snippet(
    transcript: Optional[Sequence[TranscriptEntry]],
    timestamp_ms: int,
    window_ms: int = DEFAULT_WINDOW_MS,
) -> str:
    """
    Collect the cues around ``timestamp_ms``.

    A cue is kept when its ``[offset, offset + duration]`` interval touches
    ``[timestamp - window, timestamp + window]``. Kept cues are returned in
    transcript order, one per line, each prefixed with its own ``[MM:SS]``.
    """
    if not transcript:
        return ""

    window_start = timestamp_ms - window_ms
    window_end = timestamp_ms + window_ms
    lines = [
        f"[{format_ms(entry.offset_ms)}] {entry.text}"
        for entry in transcript
        if _overlaps(entry, window_start, window_end)
    ]
    return "\n".join(lines)
