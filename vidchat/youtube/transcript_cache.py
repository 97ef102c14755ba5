from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..utils.errors import UpstreamError, is_retryable
from ..utils.rate_limiter import FixedWindowRateLimiter
from ..utils.ttl_cache import TTLCache
from .models import TranscriptEntry
from .transcript_service import YouTubeTranscriptService

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 60 * 60


class TranscriptCache:
    """Per-video transcript cache; entries are readable for one hour after fetch."""

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, *, clock: Optional[Callable[[], float]] = None):
        self._cache: TTLCache[List[TranscriptEntry]] = TTLCache(
            ttl_seconds,
            label="transcripts",
            clock=clock,
        )

    @property
    def ttl_seconds(self) -> float:
        return self._cache.ttl_seconds

    def get_fresh(self, video_id: str) -> Optional[List[TranscriptEntry]]:
        return self._cache.get(video_id)

    def fetched_at(self, video_id: str) -> Optional[float]:
        entry = self._cache.peek(video_id)
        return entry.stored_at if entry else None

    def store(self, video_id: str, entries: List[TranscriptEntry]) -> None:
        self._cache.set(video_id, list(entries))

    def invalidate(self, video_id: Optional[str] = None) -> None:
        self._cache.invalidate(video_id)

    def describe(self) -> Dict[str, Any]:
        return self._cache.describe().to_dict()


class TranscriptFetcher:
    """
    Cache-first transcript lookup that respects the caption provider's quota.

    ``get_transcript`` never raises for provider problems: a missing or
    unreachable transcript comes back as None and is only logged.
    """

    def __init__(
        self,
        service: YouTubeTranscriptService,
        cache: TranscriptCache,
        rate_limiter: FixedWindowRateLimiter,
        *,
        max_retries: int = 3,
        retry_base_delay_seconds: float = 0.5,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.service = service
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.max_retries = max(0, int(max_retries))
        self.retry_base_delay = max(0.0, float(retry_base_delay_seconds))
        self._sleep = sleep or asyncio.sleep
        self.fetch_count = 0

    @classmethod
    def from_config(cls, config: Dict[str, Any], service: Optional[YouTubeTranscriptService] = None) -> "TranscriptFetcher":
        transcript_cfg = (config.get("youtube") or {}).get("transcript") or {}
        limiter = FixedWindowRateLimiter(
            limit=int(transcript_cfg.get("requests_per_minute", 10)),
            window_seconds=60.0,
            safety_margin_seconds=float(transcript_cfg.get("window_safety_margin_seconds", 0.1)),
        )
        return cls(
            service or YouTubeTranscriptService(config),
            TranscriptCache(float(transcript_cfg.get("cache_ttl_seconds", DEFAULT_TTL_SECONDS))),
            limiter,
            max_retries=int(transcript_cfg.get("max_retries", 3)),
            retry_base_delay_seconds=float(transcript_cfg.get("retry_base_delay_seconds", 0.5)),
        )

    async def get_transcript(self, video_id: str) -> Optional[List[TranscriptEntry]]:
        if not video_id:
            return None

        cached = self.cache.get_fresh(video_id)
        if cached is not None:
            logger.debug("[TRANSCRIPT] Cache hit for %s", video_id)
            return cached

        attempt = 0
        while True:
            waited = await self.rate_limiter.acquire()
            if waited:
                # Another request may have filled the cache while this one slept.
                cached = self.cache.get_fresh(video_id)
                if cached is not None:
                    return cached

            attempt += 1
            self.fetch_count += 1
            logger.info("[TRANSCRIPT] Fetching captions for %s (attempt %s)", video_id, attempt)
            try:
                entries = await self.service.fetch_entries(video_id)
            except UpstreamError as exc:
                if not is_retryable(exc.kind):
                    logger.info(
                        "[TRANSCRIPT] No transcript for %s (%s): %s",
                        video_id,
                        exc.kind.value,
                        exc.message,
                    )
                    return None
                if attempt > self.max_retries:
                    logger.warning(
                        "[TRANSCRIPT] Giving up on %s after %s attempts: %s",
                        video_id,
                        attempt,
                        exc.message,
                    )
                    return None
                delay = (attempt ** 2) * self.retry_base_delay
                logger.warning(
                    "[TRANSCRIPT] %s fetching %s, retrying in %.2fs: %s",
                    exc.kind.value,
                    video_id,
                    delay,
                    exc.message,
                )
                await self._sleep(delay)
                continue

            if not entries:
                logger.info("[TRANSCRIPT] No captions available for %s", video_id)
                return None

            self.cache.store(video_id, entries)
            return entries

    def invalidate(self, video_id: Optional[str] = None) -> None:
        self.cache.invalidate(video_id)

    def stats(self) -> Dict[str, Any]:
        return {
            "cache": self.cache.describe(),
            "rate_limiter": self.rate_limiter.get_stats(),
            "fetches": self.fetch_count,
            "checked_at": time.time(),
        }
