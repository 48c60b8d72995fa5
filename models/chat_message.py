"""
Chat message model for persisted conversation turns.
"""

import enum

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Index, Text
from sqlalchemy.orm import relationship

from .base import UUID, BaseModel, utcnow


class MessageRole(str, enum.Enum):
    """Message role enumeration.

    Only USER and ASSISTANT turns are persisted; SYSTEM is used for synthetic
    turns sent to a provider.
    """

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ChatMessage(BaseModel):
    """
    Represents a single turn of a conversation.

    Messages of one conversation are strictly ordered by ``sent_at``.
    """

    __tablename__ = "chat_messages"

    conversation_id = Column(
        UUID(), ForeignKey("chat_conversations.id", ondelete="CASCADE"), nullable=False
    )
    role = Column(
        Enum(MessageRole, values_callable=lambda roles: [r.value for r in roles]),
        nullable=False,
    )
    content = Column(Text, nullable=False)
    sent_at = Column(DateTime, default=utcnow, nullable=False)

    conversation = relationship("ChatConversation", back_populates="messages")

    __table_args__ = (Index("idx_chat_messages_conversation_sent", "conversation_id", "sent_at"),)
