from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import youtube_transcript_api
from youtube_transcript_api import (
    NoTranscriptFound,
    TranscriptsDisabled,
    VideoUnavailable,
    YouTubeTranscriptApi,
)

from ..utils.errors import ErrorKind, UpstreamError, classify_exception
from .models import TranscriptEntry

logger = logging.getLogger(__name__)

# The blocked/throttled exception was renamed across library releases.
_BLOCKED_ERRORS = tuple(
    cls
    for cls in (
        getattr(youtube_transcript_api, name, None)
        for name in ("TooManyRequests", "RequestBlocked", "IpBlocked")
    )
    if isinstance(cls, type)
)


class YouTubeTranscriptService:
    """Fetch caption tracks with the youtube-transcript-api client."""

    def __init__(self, config: Dict[str, Any], client: Optional[YouTubeTranscriptApi] = None):
        youtube_cfg = (config.get("youtube") or {}).get("transcript") or {}
        self.languages = youtube_cfg.get("preferred_languages") or ["en"]
        self.fallback_languages = youtube_cfg.get("fallback_languages") or []
        self.timeout = float(youtube_cfg.get("timeout_seconds", 10.0))
        self._has_static_helper = hasattr(YouTubeTranscriptApi, "get_transcript")
        self._client = client

    def _ensure_client(self) -> YouTubeTranscriptApi:
        if self._client is None:
            self._client = YouTubeTranscriptApi()
        return self._client

    async def fetch_entries(self, video_id: str) -> List[TranscriptEntry]:
        """
        Fetch one video's captions as ordered entries.

        The library is blocking, so the call runs in a worker thread bounded
        by the configured timeout. Every failure is re-raised as UpstreamError.
        """
        try:
            raw_segments = await asyncio.wait_for(
                asyncio.to_thread(self._fetch_raw_segments, video_id),
                timeout=self.timeout,
            )
        except UpstreamError:
            raise
        except asyncio.TimeoutError as exc:
            raise UpstreamError(
                ErrorKind.TRANSIENT,
                f"Timed out after {self.timeout:.0f}s fetching captions.",
            ) from exc
        except _BLOCKED_ERRORS as exc:
            logger.warning("[TRANSCRIPT] Caption access throttled for %s", video_id)
            raise UpstreamError(
                ErrorKind.RATE_LIMITED,
                "YouTube rate limited transcript access.",
            ) from exc
        except TranscriptsDisabled as exc:
            logger.info("[TRANSCRIPT] Transcripts disabled for %s", video_id)
            raise UpstreamError(ErrorKind.NOT_FOUND, "Transcripts are disabled for this video.") from exc
        except NoTranscriptFound as exc:
            raise UpstreamError(ErrorKind.NOT_FOUND, "No transcript available for this video.") from exc
        except VideoUnavailable as exc:
            raise UpstreamError(ErrorKind.NOT_FOUND, "This video is unavailable.") from exc
        except Exception as exc:  # pylint: disable=broad-except
            raise UpstreamError(classify_exception(exc), str(exc) or type(exc).__name__) from exc

        return [TranscriptEntry.from_provider(segment) for segment in raw_segments]

    def _fetch_raw_segments(self, video_id: str) -> List[Any]:
        languages = self.languages + self.fallback_languages
        if self._has_static_helper and self._client is None:
            return list(YouTubeTranscriptApi.get_transcript(video_id, languages=languages))
        client = self._ensure_client()
        return list(client.fetch(video_id, languages=languages))
