"""
YouTube helpers: captions, video metadata and timestamp references.
"""

from .models import ChatMessage, ChatRole, TranscriptEntry, VideoDetails
from .timestamp_parser import (
    extract_timestamps,
    format_ms,
    format_time,
    parse_timestamp,
    seconds_to_ms,
)
from .snippets import get_transcript_snippet
from .transcript_service import YouTubeTranscriptService
from .transcript_cache import TranscriptCache, TranscriptFetcher
from .metadata_client import YouTubeMetadataClient, build_greeting

__all__ = [
    "ChatMessage",
    "ChatRole",
    "TranscriptEntry",
    "VideoDetails",
    "extract_timestamps",
    "format_ms",
    "format_time",
    "parse_timestamp",
    "seconds_to_ms",
    "get_transcript_snippet",
    "YouTubeTranscriptService",
    "TranscriptCache",
    "TranscriptFetcher",
    "YouTubeMetadataClient",
    "build_greeting",
]
