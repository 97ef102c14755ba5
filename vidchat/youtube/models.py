from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class TranscriptEntry:
    """One caption cue; offsets and durations are integer milliseconds."""

    text: str
    offset_ms: int
    duration_ms: int

    @property
    def end_ms(self) -> int:
        return self.offset_ms + self.duration_ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "offsetMs": self.offset_ms,
            "durationMs": self.duration_ms,
        }

    @classmethod
    def from_provider(cls, segment: Any) -> "TranscriptEntry":
        """
        Build an entry from a caption-provider segment.

        Providers report ``start``/``duration`` in seconds, either as dict keys
        or attributes depending on the library version.
        """
        if isinstance(segment, dict):
            data = segment
        else:
            data = {
                key: getattr(segment, key)
                for key in ("text", "start", "duration", "offset")
                if hasattr(segment, key)
            }
        start = data.get("start", data.get("offset", 0)) or 0
        duration = data.get("duration", 0) or 0
        return cls(
            text=str(data.get("text") or ""),
            offset_ms=max(0, int(round(float(start) * 1000))),
            duration_ms=max(0, int(round(float(duration) * 1000))),
        )


@dataclass
class VideoDetails:
    """Subset of the YouTube snippet the chat needs."""

    title: str = "Untitled Video"
    description: str = ""
    channel_title: Optional[str] = None
    published_at: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "channelTitle": self.channel_title,
            "description": self.description,
            "publishedAt": self.published_at,
        }

    @classmethod
    def from_snippet(cls, snippet: Dict[str, Any]) -> "VideoDetails":
        return cls(
            title=snippet.get("title") or "Untitled Video",
            description=snippet.get("description") or "",
            channel_title=snippet.get("channelTitle"),
            published_at=snippet.get("publishedAt"),
        )


class ChatRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class ChatMessage:
    """
    One chat bubble as exchanged with the client and persisted.

    ``streaming`` is true only while chunks are still arriving; once it flips
    to false the message is final and may be saved.
    """

    id: str
    role: ChatRole
    text: Any
    timestamp: int = 0
    streaming: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_ai(self) -> bool:
        return self.role == ChatRole.ASSISTANT

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["role"] = self.role.value
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatMessage":
        role_value = data.get("role")
        if role_value is None:
            role_value = "assistant" if data.get("isAi") or data.get("is_ai") else "user"
        if role_value == "model":
            role_value = "assistant"
        return cls(
            id=str(data.get("id") or ""),
            role=ChatRole(role_value),
            text=data.get("text", ""),
            timestamp=int(data.get("timestamp") or 0),
            streaming=bool(data.get("streaming", data.get("isStreaming", False))),
            metadata=dict(data.get("metadata") or {}),
        )
