"""
FastAPI server for chatting with a YouTube video.

Streams transcript-grounded LLM answers as newline-delimited JSON and exposes
the video-details lookup and conversation persistence endpoints the UI uses.
"""
from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field
from starlette.background import BackgroundTask
from starlette.exceptions import HTTPException as StarletteHTTPException

from vidchat.chat import (
    ChatSessionFactory,
    ChatTurnRequest,
    PromptAssembler,
    SessionBusyError,
    StreamingRelay,
    TurnGuard,
)
from vidchat.services import ConversationStore
from vidchat.utils import load_config, setup_logging
from vidchat.utils.errors import ERROR_CODES, ErrorKind, UpstreamError, http_status_for
from vidchat.youtube import (
    ChatMessage,
    TranscriptFetcher,
    VideoDetails,
    YouTubeMetadataClient,
    build_greeting,
)

config: Dict[str, Any] = load_config(os.getenv("VIDCHAT_CONFIG", "config.yaml"))
setup_logging(config)
logger = logging.getLogger(__name__)

app = FastAPI(title="VidChat API")

default_allowed_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]

allowed_origins_env = os.getenv("API_ALLOWED_ORIGINS")
if allowed_origins_env:
    allowed_origins = [origin.strip() for origin in allowed_origins_env.split(",") if origin.strip()]
else:
    allowed_origins = default_allowed_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Process-wide collaborators; tests swap them with monkeypatch.
transcript_fetcher = TranscriptFetcher.from_config(config)
prompt_assembler = PromptAssembler(
    transcript_fetcher,
    snippet_window_ms=int((config.get("chat") or {}).get("snippet_window_ms", 20000)),
)
session_factory = ChatSessionFactory(config)
metadata_client = YouTubeMetadataClient(config)
conversation_store = ConversationStore(config)
turn_guard = TurnGuard(float((config.get("chat") or {}).get("max_turn_seconds", 300)))


# ============================================================================
# Request models
# ============================================================================


class HistoryPart(BaseModel):
    text: str = ""


class HistoryTurn(BaseModel):
    role: str
    parts: List[HistoryPart] = Field(default_factory=list)


class VideoDetailsBody(BaseModel):
    title: str = "Untitled Video"
    description: Optional[str] = ""
    channelTitle: Optional[str] = None


class ChatRequest(BaseModel):
    userMessage: str
    videoDetails: VideoDetailsBody
    videoId: str = ""
    chatHistory: List[HistoryTurn] = Field(default_factory=list)
    timestamp: Optional[float] = None
    userId: Optional[str] = None
    conversationId: Optional[str] = None


class SaveConversationRequest(BaseModel):
    userId: str
    videoId: str
    videoTitle: str = ""


class SaveMessageRequest(BaseModel):
    message: Dict[str, Any]


# ============================================================================
# Error responses
# ============================================================================


def _error_response(
    status_code: int,
    message: str,
    *,
    code: Optional[str] = None,
    retryable: Optional[bool] = None,
    retry_after: Optional[float] = None,
) -> JSONResponse:
    body: Dict[str, Any] = {"message": message}
    if code:
        body["error"] = code
    if retryable is not None:
        body["retryable"] = retryable
    headers = {}
    if status_code == 429:
        headers["Retry-After"] = str(int(retry_after or 60))
    return JSONResponse(body, status_code=status_code, headers=headers or None)


@app.exception_handler(UpstreamError)
async def upstream_error_handler(_request: Request, exc: UpstreamError):
    status_code = http_status_for(exc.kind)
    if status_code >= 500:
        logger.error("[API] Upstream failure (%s): %s", exc.kind.value, exc.message)
    else:
        logger.warning("[API] Upstream refusal (%s): %s", exc.kind.value, exc.message)
    return _error_response(
        status_code,
        exc.message,
        code=exc.code,
        retryable=exc.retryable,
        retry_after=exc.retry_after,
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_request: Request, exc: RequestValidationError):
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        problems.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    message = "Invalid request format."
    if problems:
        message = f"Invalid request format. {'; '.join(problems)}"
    return _error_response(400, message, code=ERROR_CODES[ErrorKind.INVALID_REQUEST], retryable=False)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(_request: Request, exc: StarletteHTTPException):
    return _error_response(exc.status_code, str(exc.detail))


# ============================================================================
# Chat
# ============================================================================


@app.post("/api/chat")
async def chat(body: ChatRequest):
    """
    Run one chat turn and stream the reply.

    Response body is NDJSON: ``{"chunk", "done": false}`` per delta, then one
    terminal ``{"chunk": "", "done": true, "fullResponse"}`` or
    ``{"error", "done": true}`` line.
    """
    if not session_factory.configured:
        return _error_response(
            500,
            "AI Service is not configured. Missing API key.",
            code=ERROR_CODES[ErrorKind.CONFIGURATION],
            retryable=False,
        )
    if not body.userMessage.strip():
        return _error_response(
            400,
            "Missing required fields: userMessage and videoDetails.",
            code=ERROR_CODES[ErrorKind.INVALID_REQUEST],
            retryable=False,
        )

    key = turn_guard.key_for(body.conversationId, body.userId, body.videoId)
    if not turn_guard.try_begin(key):
        return _error_response(
            409,
            "A reply is still being generated for this conversation.",
            code="TURN_IN_PROGRESS",
            retryable=True,
        )

    try:
        prompt = await prompt_assembler.assemble(
            ChatTurnRequest(
                user_message=body.userMessage,
                video_id=body.videoId,
                video_details=VideoDetails(
                    title=body.videoDetails.title,
                    description=body.videoDetails.description or "",
                    channel_title=body.videoDetails.channelTitle,
                ),
                chat_history=[turn.model_dump() for turn in body.chatHistory],
                timestamp_seconds=body.timestamp,
            )
        )
        session = session_factory.create(prompt.system_instruction, prompt.history)
        relay = StreamingRelay(session, prompt.message)
        await relay.open()
    except SessionBusyError as exc:
        turn_guard.end(key)
        return _error_response(409, str(exc), code="TURN_IN_PROGRESS", retryable=True)
    except Exception:
        turn_guard.end(key)
        raise

    logger.info(
        "[CHAT STREAM] video=%s timestamps=%s transcript=%s",
        body.videoId,
        prompt.timestamps_ms,
        prompt.transcript_available,
    )

    async def ndjson_body():
        try:
            async for line in relay.stream():
                yield line
        finally:
            turn_guard.end(key)

    async def release_turn():
        # Runs even when the client disconnects before the body is read.
        try:
            await relay.aclose()
        finally:
            turn_guard.end(key)

    return StreamingResponse(
        ndjson_body(),
        media_type="application/json",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        background=BackgroundTask(release_turn),
    )


# ============================================================================
# YouTube metadata
# ============================================================================


@app.get("/api/youtube/details")
async def youtube_details(videoId: Optional[str] = Query(None)):
    if not videoId:
        return _error_response(400, "Missing videoId query parameter.")
    details = await metadata_client.fetch_details(videoId)
    payload = details.to_payload()
    payload["greeting"] = build_greeting(details)
    return JSONResponse(
        payload,
        headers={"Cache-Control": "public, max-age=3600, s-maxage=3600"},
    )


# ============================================================================
# Conversations
# ============================================================================


@app.post("/api/conversations")
async def save_conversation(body: SaveConversationRequest):
    conversation_id = await conversation_store.save_conversation(body.userId, body.videoId, body.videoTitle)
    return {"conversationId": conversation_id, "saved": conversation_id is not None}


@app.post("/api/conversations/{conversation_id}/messages")
async def save_message(conversation_id: str, body: SaveMessageRequest):
    try:
        message = ChatMessage.from_dict(body.message)
    except (TypeError, ValueError) as exc:
        return _error_response(400, f"Invalid message: {exc}", code=ERROR_CODES[ErrorKind.INVALID_REQUEST])
    saved = await conversation_store.save_message(conversation_id, message)
    return {"saved": saved}


@app.get("/api/conversations")
async def list_conversations(
    userId: Optional[str] = Query(None),
    limit: int = Query(50, ge=1),
    page: int = Query(1, ge=1),
):
    if not userId:
        return _error_response(400, "Missing userId query parameter.")
    conversations = await conversation_store.get_user_conversations(userId, limit=limit, page=page)
    return {"conversations": [conversation.to_payload() for conversation in conversations]}


@app.get("/api/conversations/{conversation_id}/messages")
async def list_messages(
    conversation_id: str,
    limit: int = Query(100, ge=1),
    page: int = Query(1, ge=1),
):
    messages = await conversation_store.get_conversation_messages(conversation_id, limit=limit, page=page)
    return {"messages": [message.to_dict() for message in messages]}


@app.delete("/api/conversations/{conversation_id}")
async def delete_conversation(conversation_id: str):
    deleted = await conversation_store.delete_conversation(conversation_id)
    return {"deleted": deleted}


# ============================================================================
# Health + lifecycle
# ============================================================================


@app.get("/health")
async def health_check():
    return {
        "status": "ok",
        "service": "VidChat API",
        "timestamp": datetime.now().isoformat(),
        "ai_configured": session_factory.configured,
        "transcripts": transcript_fetcher.stats(),
        "turns_in_flight": len(turn_guard),
        "storage": await conversation_store.health(),
    }


@app.on_event("startup")
async def startup_event():
    try:
        await conversation_store.ensure_indexes()
    except Exception as exc:  # pragma: no cover - depends on a live Mongo
        logger.warning("[STARTUP] Could not ensure Mongo indexes: %s", exc)


@app.on_event("shutdown")
async def shutdown_event():
    await metadata_client.aclose()
    await session_factory.aclose()


if __name__ == "__main__":
    import uvicorn

    logger.info("Starting VidChat API Server on http://localhost:8000")
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        log_level="info"
    )
