"""
Relay an LLM token stream to the client as newline-delimited JSON.

Each delta becomes one ``{"chunk": ..., "done": false}`` line. A successful
stream ends with exactly one ``{"chunk": "", "done": true, "fullResponse": ...}``
line; a failed one ends with ``{"error": ..., "done": true}`` and no partial
``fullResponse``. Nothing is retried once the first chunk may have reached the
client.
"""

from __future__ import annotations

import inspect
import json
import logging
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Union

from ..utils.errors import UpstreamError
from .session import ChatSession, DeltaStream

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[str], Union[None, Awaitable[None]]]


class RelayState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETE = "complete"
    FAILED = "failed"


def encode_record(record: Dict[str, Any]) -> str:
    return json.dumps(record, ensure_ascii=False) + "\n"


class StreamingRelay:
    """One-shot relay for a single chat turn."""

    def __init__(
        self,
        session: ChatSession,
        message: str,
        *,
        on_complete: Optional[CompletionCallback] = None,
    ):
        self.session = session
        self.message = message
        self.on_complete = on_complete
        self.state = RelayState.IDLE
        self.full_response: Optional[str] = None
        self.error: Optional[str] = None
        self._deltas: Optional[DeltaStream] = None
        self._pending: Optional[str] = None
        self._parts: List[str] = []

    async def open(self) -> None:
        """
        Start the upstream stream and wait for its first delta.

        Failures here happen before anything was sent to the client, so they
        are raised to the caller (as UpstreamError) instead of being relayed.
        """
        if self.state != RelayState.IDLE:
            raise RuntimeError(f"Relay already {self.state.value}")
        self._deltas = self.session.send_message_stream(self.message)
        self.state = RelayState.STREAMING
        try:
            self._pending = await self._next_delta()
        except Exception as exc:
            self.state = RelayState.FAILED
            self.error = str(exc)
            await self._close_deltas()
            raise

    async def _next_delta(self) -> Optional[str]:
        assert self._deltas is not None
        async for delta in self._deltas:
            if delta:
                return delta
        return None

    async def _close_deltas(self) -> None:
        if self._deltas is not None:
            try:
                await self._deltas.aclose()
            except Exception:  # pragma: no cover - closing a finished stream
                logger.debug("[CHAT STREAM] Error closing delta stream", exc_info=True)

    async def aclose(self) -> None:
        """Close the upstream stream; a relay still streaming is marked failed."""
        if self.state in (RelayState.IDLE, RelayState.STREAMING):
            self.state = RelayState.FAILED
            self.error = self.error or "Stream closed before completion"
            logger.info("[CHAT STREAM] Relay closed after %s chunks", len(self._parts))
        self._pending = None
        await self._close_deltas()

    async def stream(self) -> AsyncIterator[str]:
        """Yield NDJSON lines until the terminal record."""
        if self.state == RelayState.IDLE:
            try:
                await self.open()
            except Exception as exc:
                yield self._fail(exc)
                return
        elif self.state != RelayState.STREAMING or self._parts:
            raise RuntimeError(f"Relay already {self.state.value}")

        try:
            delta = self._pending
            self._pending = None
            while delta is not None:
                self._parts.append(delta)
                yield encode_record({"chunk": delta, "done": False})
                delta = await self._next_delta()
        except Exception as exc:
            logger.error("[CHAT STREAM] Stream failed after %s chunks: %s", len(self._parts), exc)
            await self._close_deltas()
            yield self._fail(exc)
            return

        self.full_response = "".join(self._parts)
        self.state = RelayState.COMPLETE
        yield encode_record({"chunk": "", "done": True, "fullResponse": self.full_response})
        await self._notify_complete(self.full_response)

    def _fail(self, exc: Exception) -> str:
        self.state = RelayState.FAILED
        if isinstance(exc, UpstreamError):
            self.error = exc.message
        else:
            self.error = str(exc) or "Unknown error during streaming"
        return encode_record({"error": self.error, "done": True})

    async def _notify_complete(self, full_response: str) -> None:
        if self.on_complete is None:
            return
        try:
            result = self.on_complete(full_response)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("[CHAT STREAM] Completion callback failed: %s", exc)
