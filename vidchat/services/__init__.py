"""
Service layer for persistence backends.
"""

from .chat_storage import Conversation, ConversationStore, truncate_content

__all__ = ["Conversation", "ConversationStore", "truncate_content"]
