"""
Models package initialization.
"""

from .base import Base, BaseModel, utcnow
from .chat_conversation import DEFAULT_CONVERSATION_TITLE, ChatConversation, ProviderKind
from .chat_message import ChatMessage, MessageRole

__all__ = [
    "Base",
    "BaseModel",
    "utcnow",
    # Chat models
    "ChatConversation",
    "ChatMessage",
    "MessageRole",
    "ProviderKind",
    "DEFAULT_CONVERSATION_TITLE",
]
