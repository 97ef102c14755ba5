"""
Mongo-backed conversation and message persistence with async helpers.

Conversations are unique per (user_id, video_id); messages are append-only and
read back in creation order. Persistence problems never break the chat: writes
report False/None and reads return empty lists.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import (
    AutoReconnect,
    ConnectionFailure,
    DuplicateKeyError,
    NetworkTimeout,
    OperationFailure,
)

from ..utils.errors import ErrorKind, classify_exception, is_retryable
from ..youtube.models import ChatMessage, ChatRole

logger = logging.getLogger(__name__)

MAX_CONTENT_CHARS = 1024 * 8
MAX_CONVERSATIONS_PER_PAGE = 100
MAX_MESSAGES_PER_PAGE = 200
DEFAULT_CONVERSATION_LIMIT = 50
DEFAULT_MESSAGE_LIMIT = 100

# Stored next to each message body; only JSON content is decoded on read.
CONTENT_TEXT = "text"
CONTENT_JSON = "json"

# Server error codes Mongo-compatible backends use for throttling.
_THROTTLE_CODES = {429, 16500}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Any) -> Optional[str]:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def truncate_content(content: str, limit: int = MAX_CONTENT_CHARS) -> str:
    """Cap ``content`` at ``limit`` characters, ending with an ellipsis when cut."""
    if len(content) <= limit:
        return content
    return content[: max(0, limit - 3)] + "..."


def classify_store_error(exc: Exception) -> ErrorKind:
    if isinstance(exc, (AutoReconnect, NetworkTimeout, ConnectionFailure)):
        return ErrorKind.TRANSIENT
    if isinstance(exc, OperationFailure) and exc.code in _THROTTLE_CODES:
        return ErrorKind.RATE_LIMITED
    return classify_exception(exc)


@dataclass
class Conversation:
    id: str
    user_id: str
    video_id: str
    video_title: str
    created_at: Optional[str]
    last_updated_at: Optional[str]

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "videoId": self.video_id,
            "videoTitle": self.video_title,
            "createdAt": self.created_at,
            "lastUpdatedAt": self.last_updated_at,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Conversation":
        return cls(
            id=str(doc.get("_id")),
            user_id=doc.get("user_id") or "",
            video_id=doc.get("video_id") or "",
            video_title=doc.get("video_title") or "",
            created_at=_iso(doc.get("created_at")),
            last_updated_at=_iso(doc.get("last_updated_at")),
        )


class ConversationStore:
    """
    Persistence gateway for conversations and their messages.

    Designed to be called from async request handlers; every public method
    swallows backend errors after logging them.
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        client: Optional[AsyncIOMotorClient] = None,
        *,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        mongo_cfg = (config or {}).get("mongo", {})
        self.enabled = bool(mongo_cfg.get("enabled", False))
        self._uri = mongo_cfg.get("uri") or "mongodb://127.0.0.1:27017"
        self._database = mongo_cfg.get("database", "vidchat")
        self._conversations_name = mongo_cfg.get("conversations_collection", "conversations")
        self._messages_name = mongo_cfg.get("messages_collection", "messages")
        self.max_content_chars = int(mongo_cfg.get("max_content_chars", MAX_CONTENT_CHARS))
        self.max_retries = max(0, int(mongo_cfg.get("max_retries", 3)))
        self.retry_base_delay = float(mongo_cfg.get("retry_base_delay_seconds", 0.5))
        self._sleep = sleep or asyncio.sleep

        self._client: Optional[AsyncIOMotorClient] = None
        self._conversations = None
        self._messages = None
        self._index_lock = asyncio.Lock()

        if not self.enabled:
            logger.info("[CHAT STORAGE] Mongo persistence disabled via config.")
            return

        self._client = client or AsyncIOMotorClient(
            self._uri, serverSelectionTimeoutMS=5000, uuidRepresentation="standard"
        )
        database = self._client[self._database]
        self._conversations = database[self._conversations_name]
        self._messages = database[self._messages_name]
        logger.info(
            "[CHAT STORAGE] Initialized ConversationStore (db=%s conversations=%s messages=%s)",
            self._database,
            self._conversations_name,
            self._messages_name,
        )

    @property
    def available(self) -> bool:
        return self.enabled and self._conversations is not None and self._messages is not None

    async def ensure_indexes(self) -> None:
        """Create the uniqueness and ordering indexes if Mongo is available."""
        if not self.available:
            return
        async with self._index_lock:
            await self._conversations.create_index(
                [("user_id", ASCENDING), ("video_id", ASCENDING)],
                unique=True,
                name="user_video_unique",
            )
            await self._conversations.create_index(
                [("user_id", ASCENDING), ("last_updated_at", DESCENDING)],
                name="user_recent_idx",
            )
            await self._messages.create_index(
                [("conversation_id", ASCENDING), ("created_at", ASCENDING)],
                name="conversation_ts_idx",
            )

    async def save_conversation(self, user_id: str, video_id: str, video_title: str) -> Optional[str]:
        """
        Upsert the conversation for (user_id, video_id) and return its id.

        Repeated calls for the same pair update the title and
        ``last_updated_at`` of the single existing row.
        """
        if not self.available:
            return None
        now = _now()
        query = {"user_id": user_id, "video_id": video_id}
        update = {
            "$set": {"video_title": video_title, "last_updated_at": now},
            "$setOnInsert": {"_id": uuid.uuid4().hex, "created_at": now},
        }
        try:
            try:
                doc = await self._conversations.find_one_and_update(
                    query,
                    update,
                    upsert=True,
                    return_document=ReturnDocument.AFTER,
                )
            except DuplicateKeyError:
                # Lost an insert race for the same pair; the row exists now.
                doc = await self._conversations.find_one_and_update(
                    query,
                    {"$set": update["$set"]},
                    return_document=ReturnDocument.AFTER,
                )
        except Exception as exc:
            logger.error("[CHAT STORAGE] Failed to save conversation for %s/%s: %s", user_id, video_id, exc)
            return None

        if not doc:
            return None
        logger.debug("[CHAT STORAGE] Saved conversation %s", doc.get("_id"))
        return str(doc["_id"])

    def _prepare_content(self, message: ChatMessage) -> Tuple[str, str]:
        """Return the stored content and its format; the message itself is left untouched."""
        if isinstance(message.text, str):
            content, content_format = message.text, CONTENT_TEXT
        else:
            content, content_format = json.dumps(message.to_dict(), default=str), CONTENT_JSON
        if len(content) > self.max_content_chars:
            logger.warning(
                "[CHAT STORAGE] Message content exceeds %s characters, truncating",
                self.max_content_chars,
            )
            content = truncate_content(content, self.max_content_chars)
        return content, content_format

    async def save_message(self, conversation_id: str, message: ChatMessage) -> bool:
        """
        Append one finished message to a conversation.

        Rate-limit and transient failures are retried with exponential backoff
        (``base * 2^attempt``); anything else aborts. Returns False instead of
        raising when the write does not succeed.
        """
        if not self.available:
            return False
        if message.streaming:
            logger.warning("[CHAT STORAGE] Refusing to persist a message that is still streaming")
            return False

        content, content_format = self._prepare_content(message)
        document = {
            "_id": uuid.uuid4().hex,
            "conversation_id": conversation_id,
            "message_id": message.id,
            "content": content,
            "content_format": content_format,
            "timestamp": message.timestamp or int(_now().timestamp()),
            "is_ai": message.is_ai,
            "role": message.role.value,
            "created_at": _now(),
        }

        attempt = 0
        while True:
            try:
                await self._messages.insert_one(dict(document))
                logger.debug("[CHAT STORAGE] Saved message for conversation %s", conversation_id)
                return True
            except Exception as exc:
                kind = classify_store_error(exc)
                attempt += 1
                if not is_retryable(kind) or attempt > self.max_retries:
                    logger.error(
                        "[CHAT STORAGE] Failed to save message for %s (%s): %s",
                        conversation_id,
                        kind.value,
                        exc,
                    )
                    return False
                delay = (2 ** attempt) * self.retry_base_delay
                logger.info(
                    "[CHAT STORAGE] %s saving message, retrying in %.2fs (attempt %s/%s)",
                    kind.value,
                    delay,
                    attempt,
                    self.max_retries,
                )
                await self._sleep(delay)

    async def get_user_conversations(
        self,
        user_id: str,
        limit: int = DEFAULT_CONVERSATION_LIMIT,
        page: int = 1,
    ) -> List[Conversation]:
        """Most recently updated conversations first, at most 100 per page."""
        if not self.available:
            return []
        safe_limit = max(1, min(int(limit), MAX_CONVERSATIONS_PER_PAGE))
        offset = (max(1, int(page)) - 1) * safe_limit
        try:
            cursor = (
                self._conversations.find({"user_id": user_id})
                .sort("last_updated_at", DESCENDING)
                .skip(offset)
                .limit(safe_limit)
            )
            docs = await cursor.to_list(length=safe_limit)
        except Exception as exc:
            logger.error("[CHAT STORAGE] Failed to fetch conversations for %s: %s", user_id, exc)
            return []
        return [Conversation.from_document(doc) for doc in docs]

    async def get_conversation_messages(
        self,
        conversation_id: str,
        limit: int = DEFAULT_MESSAGE_LIMIT,
        page: int = 1,
    ) -> List[ChatMessage]:
        """Messages in creation order, at most 200 per page."""
        if not self.available:
            return []
        safe_limit = max(1, min(int(limit), MAX_MESSAGES_PER_PAGE))
        offset = (max(1, int(page)) - 1) * safe_limit
        try:
            cursor = (
                self._messages.find({"conversation_id": conversation_id})
                .sort("created_at", ASCENDING)
                .skip(offset)
                .limit(safe_limit)
            )
            docs = await cursor.to_list(length=safe_limit)
        except Exception as exc:
            logger.error("[CHAT STORAGE] Failed to fetch messages for %s: %s", conversation_id, exc)
            return []
        return [self._to_message(doc) for doc in docs]

    @staticmethod
    def _to_message(doc: Dict[str, Any]) -> ChatMessage:
        content = doc.get("content") or ""
        text: Any = content
        timestamp = doc.get("timestamp") or 0
        parsed = None
        if doc.get("content_format") == CONTENT_JSON:
            try:
                parsed = json.loads(content)
            except (TypeError, ValueError):
                # Truncated JSON; fall back to the raw stored text.
                parsed = None
        if isinstance(parsed, dict):
            text = parsed.get("text") or content
            timestamp = parsed.get("timestamp") or timestamp
        return ChatMessage(
            id=str(doc.get("message_id") or doc.get("_id")),
            role=ChatRole.ASSISTANT if doc.get("is_ai") else ChatRole.USER,
            text=text,
            timestamp=int(timestamp or 0),
            streaming=False,
        )

    async def delete_conversation(self, conversation_id: str) -> bool:
        if not self.available:
            return False
        try:
            await self._messages.delete_many({"conversation_id": conversation_id})
            result = await self._conversations.delete_one({"_id": conversation_id})
        except Exception as exc:
            logger.error("[CHAT STORAGE] Failed to delete conversation %s: %s", conversation_id, exc)
            return False
        return result.deleted_count == 1

    async def health(self) -> Dict[str, Any]:
        """Return connectivity details suitable for health endpoints."""
        if not self.available:
            return {"enabled": False, "status": "disabled"}
        try:
            await self._client.admin.command("ping")  # type: ignore[union-attr]
            return {"enabled": True, "status": "ok", "database": self._database}
        except Exception as exc:  # pragma: no cover - network errors
            logger.error("[CHAT STORAGE] Health check failed: %s", exc)
            return {"enabled": True, "status": "error", "error": str(exc)}
