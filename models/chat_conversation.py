"""
Chat conversation model for gateway conversations.
"""

import enum

from sqlalchemy import Column, Enum, Index, String
from sqlalchemy.orm import relationship

from .base import UUID, BaseModel

DEFAULT_CONVERSATION_TITLE = "New Chat"


class ProviderKind(str, enum.Enum):
    """Backend family that owns a conversation."""

    GEMINI = "gemini"
    OLLAMA = "ollama"


class ChatConversation(BaseModel):
    """
    Represents a chat conversation owned by one user and one provider family.

    The provider tag is fixed at creation; every message in the conversation is
    answered by that provider's adapter.
    """

    __tablename__ = "chat_conversations"

    user_id = Column(UUID(), nullable=False, index=True)
    title = Column(String(255), nullable=False, default=DEFAULT_CONVERSATION_TITLE)
    # Nullable only for rows created before provider tagging existed
    provider = Column(
        Enum(ProviderKind, values_callable=lambda kinds: [k.value for k in kinds]),
        nullable=True,
    )

    messages = relationship(
        "ChatMessage",
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ChatMessage.sent_at",
    )

    __table_args__ = (Index("idx_chat_conversations_user_updated", "user_id", "updated_at"),)
