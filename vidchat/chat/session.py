"""
Stateful chat session over the OpenAI chat completions API.

A session holds the system instruction and the role-tagged history of one
conversation and exposes a single-shot and a streaming send. Only one send may
be open at a time because each one appends to the shared history.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    AuthenticationError,
    BadRequestError,
    PermissionDeniedError,
    RateLimitError,
)

from ..utils.errors import ErrorKind, UpstreamError

logger = logging.getLogger(__name__)

_SAFETY_CODES = ("content_policy_violation", "content_filter")


class SessionBusyError(RuntimeError):
    """Raised when a send is attempted while another is still streaming."""


def to_upstream_error(exc: Exception) -> UpstreamError:
    """Map an OpenAI client exception onto the shared error kinds."""
    if isinstance(exc, UpstreamError):
        return exc
    if isinstance(exc, RateLimitError):
        retry_after = None
        response = getattr(exc, "response", None)
        if response is not None:
            try:
                retry_after = float(response.headers.get("retry-after"))
            except (TypeError, ValueError):
                retry_after = None
        message = str(exc)
        kind = ErrorKind.QUOTA_EXCEEDED if "quota" in message.lower() else ErrorKind.RATE_LIMITED
        return UpstreamError(kind, "The AI service is rate limited. Please try again shortly.", retry_after=retry_after)
    if isinstance(exc, (APITimeoutError, APIConnectionError)):
        return UpstreamError(ErrorKind.TRANSIENT, f"Could not reach the AI service: {exc}")
    if isinstance(exc, AuthenticationError):
        return UpstreamError(ErrorKind.CONFIGURATION, "AI Service is not configured correctly.")
    if isinstance(exc, BadRequestError):
        code = str(getattr(exc, "code", "") or "")
        if code in _SAFETY_CODES or "safety" in str(exc).lower():
            return UpstreamError(ErrorKind.SAFETY_BLOCKED, "The response was blocked due to safety settings.")
        return UpstreamError(ErrorKind.INVALID_REQUEST, str(exc))
    if isinstance(exc, PermissionDeniedError):
        return UpstreamError(ErrorKind.CONFIGURATION, str(exc))
    if isinstance(exc, APIStatusError):
        kind = ErrorKind.TRANSIENT if exc.status_code >= 500 else ErrorKind.UNKNOWN
        return UpstreamError(kind, str(exc))
    return UpstreamError(ErrorKind.UNKNOWN, str(exc) or type(exc).__name__)


def _reraise(exc: Exception) -> None:
    error = to_upstream_error(exc)
    if error is exc:
        raise exc
    raise error from exc


class DeltaStream:
    """Async iterator of text deltas that frees its session when it ends."""

    def __init__(self, session: "ChatSession", iterator: AsyncIterator[str]):
        self._session = session
        self._iterator = iterator
        self._released = False

    def __aiter__(self) -> "DeltaStream":
        return self

    async def __anext__(self) -> str:
        try:
            return await self._iterator.__anext__()
        except BaseException:
            self._release()
            raise

    async def aclose(self) -> None:
        try:
            await self._iterator.aclose()  # type: ignore[attr-defined]
        finally:
            self._release()

    def _release(self) -> None:
        if not self._released:
            self._released = True
            self._session._busy = False


class ChatSession:
    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        system_instruction: str,
        history: Optional[List[Dict[str, str]]] = None,
        *,
        max_output_tokens: int = 1500,
        temperature: float = 0.3,
        top_p: float = 0.8,
    ):
        self.client = client
        self.model = model
        self.system_instruction = system_instruction
        self.history: List[Dict[str, str]] = list(history or [])
        self.max_output_tokens = max_output_tokens
        self.temperature = temperature
        self.top_p = top_p
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    def _messages(self) -> List[Dict[str, str]]:
        return [{"role": "system", "content": self.system_instruction}, *self.history]

    def _request_params(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": self._messages(),
            "max_tokens": self.max_output_tokens,
            "temperature": self.temperature,
            "top_p": self.top_p,
        }

    def _begin(self, text: str) -> None:
        if self._busy:
            raise SessionBusyError("A message is already being sent on this chat session.")
        self._busy = True
        self.history.append({"role": "user", "content": text})

    def _rollback(self) -> None:
        if self.history and self.history[-1]["role"] == "user":
            self.history.pop()

    async def send_message(self, text: str) -> str:
        """Send one message and wait for the whole reply."""
        self._begin(text)
        try:
            response = await self.client.chat.completions.create(**self._request_params())
            choice = response.choices[0]
            if choice.finish_reason == "content_filter":
                raise UpstreamError(ErrorKind.SAFETY_BLOCKED, "The response was blocked due to safety settings.")
            reply = choice.message.content or ""
        except Exception as exc:
            self._rollback()
            _reraise(exc)
        finally:
            self._busy = False
        self.history.append({"role": "assistant", "content": reply})
        return reply

    def send_message_stream(self, text: str) -> DeltaStream:
        """
        Send one message and iterate the reply as text deltas.

        The user turn and the finished assistant turn are added to the history
        only if the stream completes.
        """
        self._begin(text)
        return DeltaStream(self, self._stream_deltas())

    async def _stream_deltas(self) -> AsyncIterator[str]:
        parts: List[str] = []
        try:
            stream = await self.client.chat.completions.create(stream=True, **self._request_params())
            async for chunk in stream:
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = getattr(choice.delta, "content", None) if choice.delta else None
                if delta:
                    parts.append(delta)
                    yield delta
                if choice.finish_reason == "content_filter":
                    raise UpstreamError(
                        ErrorKind.SAFETY_BLOCKED,
                        "The response was blocked due to safety settings.",
                    )
        except GeneratorExit:
            self._rollback()
            raise
        except Exception as exc:
            self._rollback()
            _reraise(exc)
        self.history.append({"role": "assistant", "content": "".join(parts)})


class ChatSessionFactory:
    """Create chat sessions sharing one pooled AsyncOpenAI client."""

    def __init__(self, config: Dict[str, Any], client: Optional[AsyncOpenAI] = None):
        openai_cfg = config.get("openai") or {}
        self.api_key = openai_cfg.get("api_key") or None
        self.model = openai_cfg.get("model") or "gpt-4o-mini"
        self.max_output_tokens = int(openai_cfg.get("max_output_tokens", 1500))
        self.temperature = float(openai_cfg.get("temperature", 0.3))
        self.top_p = float(openai_cfg.get("top_p", 0.8))
        self.timeout = float(openai_cfg.get("timeout_seconds", 30.0))
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self._client or self.api_key)

    def _ensure_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.api_key:
                raise UpstreamError(ErrorKind.CONFIGURATION, "AI Service is not configured. Missing API key.")
            http_client = httpx.AsyncClient(
                limits=httpx.Limits(max_keepalive_connections=20, max_connections=50),
                timeout=httpx.Timeout(timeout=self.timeout, connect=10.0),
            )
            self._client = AsyncOpenAI(api_key=self.api_key, http_client=http_client, max_retries=2)
            logger.info("[CHAT] Created AsyncOpenAI client (model=%s)", self.model)
        return self._client

    def create(self, system_instruction: str, history: Optional[List[Dict[str, str]]] = None) -> ChatSession:
        return ChatSession(
            self._ensure_client(),
            self.model,
            system_instruction,
            history,
            max_output_tokens=self.max_output_tokens,
            temperature=self.temperature,
            top_p=self.top_p,
        )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
