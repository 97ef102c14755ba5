from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from ..utils.errors import ErrorKind, UpstreamError
from ..utils.ttl_cache import TTLCache
from .models import VideoDetails

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    error = (data or {}).get("error") or {}
    errors = error.get("errors") or []
    if errors and errors[0].get("message"):
        return errors[0]["message"]
    return error.get("message") or f"HTTP {response.status_code}"


class YouTubeMetadataClient:
    """Look up video snippets through the YouTube Data API v3."""

    DATA_API_URL = "https://www.googleapis.com/youtube/v3/videos"

    def __init__(
        self,
        config: Dict[str, Any],
        client: Optional[httpx.AsyncClient] = None,
        *,
        cache: Optional[TTLCache[VideoDetails]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        youtube_cfg = (config.get("youtube") or {}).get("metadata") or {}
        self.api_key = youtube_cfg.get("api_key") or None
        self.timeout = float(youtube_cfg.get("timeout_seconds", 7.0))
        self.max_retries = max(1, int(youtube_cfg.get("max_retries", 3)))
        self.retry_base_delay = float(youtube_cfg.get("retry_base_delay_seconds", 0.1))
        self._client = client
        self._cache = cache or TTLCache(
            float(youtube_cfg.get("cache_ttl_seconds", 3600)),
            label="video_details",
        )
        self._sleep = sleep or asyncio.sleep

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch_details(self, video_id: str) -> VideoDetails:
        """
        Fetch title, channel, description and publish date for ``video_id``.

        Rate-limit and 5xx answers are retried with ``2^attempt * 100ms``
        backoff. Quota exhaustion, missing videos and other client errors are
        raised immediately as UpstreamError.
        """
        if not self.api_key:
            logger.error("[YOUTUBE] YouTube API key not configured")
            raise UpstreamError(ErrorKind.CONFIGURATION, "Server configuration error.")

        cached = self._cache.get(video_id)
        if cached is not None:
            return cached

        params = {"part": "snippet", "id": video_id, "key": self.api_key}
        last_error: Optional[UpstreamError] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                response = await self._ensure_client().get(self.DATA_API_URL, params=params)
            except httpx.TimeoutException as exc:
                last_error = UpstreamError(ErrorKind.TRANSIENT, "Timed out contacting YouTube.")
                logger.warning("[YOUTUBE] Details request timed out for %s: %s", video_id, exc)
            except httpx.HTTPError as exc:
                last_error = UpstreamError(ErrorKind.TRANSIENT, f"Failed to reach YouTube: {exc}")
                logger.warning("[YOUTUBE] Details request failed for %s: %s", video_id, exc)
            else:
                if response.status_code == 200:
                    items = (response.json() or {}).get("items") or []
                    if not items:
                        raise UpstreamError(ErrorKind.NOT_FOUND, "Video not found on YouTube.")
                    details = VideoDetails.from_snippet(items[0].get("snippet") or {})
                    self._cache.set(video_id, details)
                    return details

                last_error = self._classify_response(response)
                if last_error.kind == ErrorKind.QUOTA_EXCEEDED:
                    logger.error("[YOUTUBE] Data API quota exceeded: %s", last_error.message)
                    raise last_error
                if last_error.kind not in (ErrorKind.RATE_LIMITED, ErrorKind.TRANSIENT):
                    raise last_error

            if attempt < self.max_retries:
                delay = (2 ** attempt) * self.retry_base_delay
                logger.info(
                    "[YOUTUBE] Retrying details request in %.2fs (attempt %s/%s)",
                    delay,
                    attempt,
                    self.max_retries,
                )
                await self._sleep(delay)

        raise last_error or UpstreamError(ErrorKind.UNKNOWN, "Failed to fetch video details from YouTube.")

    @staticmethod
    def _classify_response(response: httpx.Response) -> UpstreamError:
        status = response.status_code
        message = _error_message(response)
        lowered = message.lower()
        if status == 403 and "quota" in lowered:
            return UpstreamError(
                ErrorKind.QUOTA_EXCEEDED,
                "YouTube API quota exceeded. Please try again tomorrow.",
                retry_after=3600,
            )
        if status == 429 or (status == 403 and "rate" in lowered):
            return UpstreamError(ErrorKind.RATE_LIMITED, message)
        if status >= 500:
            return UpstreamError(ErrorKind.TRANSIENT, message)
        if status == 404:
            return UpstreamError(ErrorKind.NOT_FOUND, message)
        if status in (400, 403):
            return UpstreamError(ErrorKind.INVALID_REQUEST, message)
        return UpstreamError(ErrorKind.UNKNOWN, message)


def build_greeting(details: VideoDetails) -> str:
    """Opening assistant message shown before the first user turn."""
    channel = details.channel_title or "Unknown Channel"
    return (
        f'Hello! I\'ve analyzed the video "{details.title}" by {channel}. '
        "Feel free to ask me any questions about the content. "
        "You can mention timestamps like [MM:SS] to reference specific parts."
    )
