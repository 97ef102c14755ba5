from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from ..youtube.models import VideoDetails
from ..youtube.snippets import DEFAULT_WINDOW_MS, get_transcript_snippet
from ..youtube.timestamp_parser import extract_timestamps, format_ms, format_time, seconds_to_ms
from ..youtube.transcript_cache import TranscriptFetcher
from .prompts import HISTORY_PRIMER, SNIPPET_BLOCK, SYSTEM_PROMPT, TIMESTAMP_NOTE, TRANSCRIPT_SECTION

logger = logging.getLogger(__name__)

_ROLE_ALIASES = {
    "user": "user",
    "human": "user",
    "model": "assistant",
    "assistant": "assistant",
    "ai": "assistant",
}


@dataclass
class ChatTurnRequest:
    """Everything the client sends for one chat turn."""

    user_message: str
    video_id: str
    video_details: VideoDetails
    chat_history: List[Dict[str, Any]] = field(default_factory=list)
    timestamp_seconds: Optional[float] = None


@dataclass
class AssembledPrompt:
    system_instruction: str
    history: List[Dict[str, str]]
    message: str
    timestamps_ms: List[int]
    transcript_available: bool = False


def _turn_text(turn: Dict[str, Any]) -> str:
    parts = turn.get("parts")
    if isinstance(parts, list):
        texts = [str(part.get("text") or "") for part in parts if isinstance(part, dict)]
        return "".join(texts)
    return str(turn.get("content") or turn.get("text") or "")


def normalize_history(chat_history: Iterable[Dict[str, Any]]) -> List[Dict[str, str]]:
    """
    Convert client history into ``{"role", "content"}`` turns for the chat session.

    ``model`` turns become ``assistant``. Empty turns and unknown roles are
    dropped. When the first remaining turn is the assistant's (the greeting),
    a short user turn is put in front so the sequence starts with the user.
    """
    history: List[Dict[str, str]] = []
    for turn in chat_history or []:
        if not isinstance(turn, dict):
            continue
        role = _ROLE_ALIASES.get(str(turn.get("role") or "").lower())
        text = _turn_text(turn).strip()
        if role is None or not text:
            continue
        history.append({"role": role, "content": text})

    if history and history[0]["role"] == "assistant":
        history.insert(0, {"role": "user", "content": HISTORY_PRIMER})
    return history


class PromptAssembler:
    """Builds the system instruction, history and grounded message for one turn."""

    def __init__(self, fetcher: Optional[TranscriptFetcher], *, snippet_window_ms: int = DEFAULT_WINDOW_MS):
        self.fetcher = fetcher
        self.snippet_window_ms = snippet_window_ms

    @staticmethod
    def collect_timestamps(user_message: str, timestamp_seconds: Optional[float] = None) -> List[int]:
        """Explicit playback position first, then message references; duplicates removed."""
        candidates: List[int] = []
        explicit_ms = seconds_to_ms(timestamp_seconds)
        if explicit_ms is not None:
            candidates.append(explicit_ms)
        candidates.extend(extract_timestamps(user_message))
        return list(dict.fromkeys(candidates))

    @staticmethod
    def build_system_instruction(video_id: str, details: VideoDetails) -> str:
        return SYSTEM_PROMPT.format(
            title=details.title,
            video_id=video_id,
            description=details.description or "No description available.",
        )

    async def build_transcript_context(self, video_id: str, timestamps_ms: List[int]) -> str:
        if not timestamps_ms or self.fetcher is None:
            return ""
        transcript = await self.fetcher.get_transcript(video_id)
        if not transcript:
            return ""

        blocks = []
        for timestamp_ms in timestamps_ms:
            snippet = get_transcript_snippet(transcript, timestamp_ms, self.snippet_window_ms)
            if snippet:
                blocks.append(SNIPPET_BLOCK.format(timestamp=format_ms(timestamp_ms), snippet=snippet))
        if not blocks:
            return ""
        return TRANSCRIPT_SECTION.format(blocks="\n\n".join(blocks))

    async def assemble(self, request: ChatTurnRequest) -> AssembledPrompt:
        timestamps_ms = self.collect_timestamps(request.user_message, request.timestamp_seconds)
        transcript_context = await self.build_transcript_context(request.video_id, timestamps_ms)

        sections = [request.user_message]
        if seconds_to_ms(request.timestamp_seconds) is not None:
            sections.append(TIMESTAMP_NOTE.format(timestamp=format_time(request.timestamp_seconds)))
        if transcript_context:
            sections.append(transcript_context)

        logger.debug(
            "[PROMPT] video=%s timestamps=%s transcript_context=%s",
            request.video_id,
            timestamps_ms,
            bool(transcript_context),
        )
        return AssembledPrompt(
            system_instruction=self.build_system_instruction(request.video_id, request.video_details),
            history=normalize_history(request.chat_history),
            message="\n\n".join(sections),
            timestamps_ms=timestamps_ms,
            transcript_available=bool(transcript_context),
        )
