from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_TURN_SECONDS = 300.0


class TurnGuard:
    """
    Single-flight marker per conversation.

    A conversation may have at most one chat turn streaming at a time; a
    second request for the same key is refused until the first ends. A marker
    older than ``max_turn_seconds`` is treated as abandoned and may be taken
    over, so a turn whose cleanup never ran cannot lock its conversation.
    """

    def __init__(
        self,
        max_turn_seconds: float = DEFAULT_MAX_TURN_SECONDS,
        *,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.max_turn_seconds = float(max_turn_seconds)
        self._clock = clock or time.time
        self._in_flight: Dict[str, float] = {}

    @staticmethod
    def key_for(conversation_id: Optional[str], user_id: Optional[str], video_id: str) -> str:
        if conversation_id:
            return f"conversation:{conversation_id}"
        return f"{user_id or 'anonymous'}:{video_id}"

    def _expired(self, started: float) -> bool:
        return self._clock() - started >= self.max_turn_seconds

    def is_active(self, key: str) -> bool:
        started = self._in_flight.get(key)
        return started is not None and not self._expired(started)

    def try_begin(self, key: str) -> bool:
        started = self._in_flight.get(key)
        if started is not None:
            if not self._expired(started):
                return False
            logger.warning(
                "[TURN GUARD] %s held for %.0fs without release, taking it over",
                key,
                self._clock() - started,
            )
        self._in_flight[key] = self._clock()
        return True

    def end(self, key: str) -> None:
        started = self._in_flight.pop(key, None)
        if started is not None:
            logger.debug("[TURN GUARD] %s released after %.2fs", key, self._clock() - started)

    def __len__(self) -> int:
        return len(self._in_flight)
