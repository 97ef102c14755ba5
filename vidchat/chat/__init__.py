"""
Chat turn pipeline: prompt assembly, LLM session and response streaming.
"""

from .prompt_assembler import AssembledPrompt, ChatTurnRequest, PromptAssembler, normalize_history
from .session import ChatSession, ChatSessionFactory, SessionBusyError
from .relay import RelayState, StreamingRelay
from .turn_guard import TurnGuard

__all__ = [
    "AssembledPrompt",
    "ChatTurnRequest",
    "PromptAssembler",
    "normalize_history",
    "ChatSession",
    "ChatSessionFactory",
    "SessionBusyError",
    "RelayState",
    "StreamingRelay",
    "TurnGuard",
]
