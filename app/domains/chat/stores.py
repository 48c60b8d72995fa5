"""Persistence for conversations and their messages.

Each write commits immediately so a user turn survives a later provider failure.
"""

import logging
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import delete, func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.base import utcnow
from models.chat_conversation import DEFAULT_CONVERSATION_TITLE, ChatConversation, ProviderKind
from models.chat_message import ChatMessage, MessageRole

logger = logging.getLogger(__name__)

SENT_AT_STEP = timedelta(microseconds=1)


class ConversationStore:
    """Conversation rows scoped by owner and provider."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, conversation_id: UUID) -> ChatConversation | None:
        result = await self.db.execute(select(ChatConversation).where(ChatConversation.id == conversation_id))
        return result.scalar_one_or_none()

    async def create(
        self,
        owner_id: UUID,
        provider: ProviderKind,
        title: str = DEFAULT_CONVERSATION_TITLE,
    ) -> ChatConversation:
        conversation = ChatConversation(user_id=owner_id, title=title, provider=provider)
        self.db.add(conversation)
        await self.db.commit()
        await self.db.refresh(conversation)
        logger.info(f"Created {provider.value} conversation {conversation.id}")
        return conversation

    async def set_title(self, conversation: ChatConversation, title: str) -> ChatConversation:
        conversation.title = title
        conversation.updated_at = utcnow()
        await self.db.commit()
        return conversation

    async def touch(self, conversation: ChatConversation) -> None:
        """Bump ``updated_at`` so listings surface recently active chats first."""
        conversation.updated_at = utcnow()
        await self.db.commit()

    async def list_by_owner(self, owner_id: UUID, provider: ProviderKind) -> list[ChatConversation]:
        query = (
            select(ChatConversation)
            .where(ChatConversation.user_id == owner_id, ChatConversation.provider == provider)
            .order_by(ChatConversation.updated_at.desc())
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def delete(self, conversation: ChatConversation) -> None:
        await self.db.execute(delete(ChatMessage).where(ChatMessage.conversation_id == conversation.id))
        await self.db.execute(delete(ChatConversation).where(ChatConversation.id == conversation.id))
        await self.db.commit()

    async def delete_all_by_owner(self, owner_id: UUID, provider: ProviderKind) -> int:
        """Delete every conversation of ``owner_id`` for ``provider``; returns the count."""
        ids_query = select(ChatConversation.id).where(
            ChatConversation.user_id == owner_id, ChatConversation.provider == provider
        )
        ids = list((await self.db.execute(ids_query)).scalars().all())
        if not ids:
            return 0

        await self.db.execute(delete(ChatMessage).where(ChatMessage.conversation_id.in_(ids)))
        await self.db.execute(delete(ChatConversation).where(ChatConversation.id.in_(ids)))
        await self.db.commit()
        return len(ids)

    async def backfill_provider(self, default: ProviderKind = ProviderKind.GEMINI) -> int:
        """Tag conversations created before provider tagging with ``default``."""
        result = await self.db.execute(
            update(ChatConversation).where(ChatConversation.provider.is_(None)).values(provider=default)
        )
        await self.db.commit()
        if result.rowcount:
            logger.info(f"Assigned {result.rowcount} untagged conversations to {default.value}")
        return result.rowcount or 0


class MessageStore:
    """Append-only message log per conversation."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(self, conversation_id: UUID, role: MessageRole, content: str) -> ChatMessage:
        """Persist a message stamped strictly after the conversation's latest one."""
        latest = await self.db.execute(
            select(func.max(ChatMessage.sent_at)).where(ChatMessage.conversation_id == conversation_id)
        )
        last_sent_at = latest.scalar()

        sent_at = utcnow()
        if last_sent_at is not None and sent_at <= last_sent_at:
            sent_at = last_sent_at + SENT_AT_STEP

        message = ChatMessage(conversation_id=conversation_id, role=role, content=content, sent_at=sent_at)
        self.db.add(message)
        await self.db.commit()
        await self.db.refresh(message)
        return message

    async def list_ordered(self, conversation_id: UUID) -> list[ChatMessage]:
        query = (
            select(ChatMessage)
            .where(ChatMessage.conversation_id == conversation_id)
            .order_by(ChatMessage.sent_at.asc(), ChatMessage.created_at.asc())
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def count(self, conversation_id: UUID) -> int:
        result = await self.db.execute(
            select(func.count(ChatMessage.id)).where(ChatMessage.conversation_id == conversation_id)
        )
        return result.scalar() or 0

    async def delete_most_recent_assistant(self, conversation_id: UUID) -> bool:
        """Delete the latest assistant message, if any; returns whether one was deleted."""
        query = (
            select(ChatMessage)
            .where(ChatMessage.conversation_id == conversation_id, ChatMessage.role == MessageRole.ASSISTANT)
            .order_by(ChatMessage.sent_at.desc())
            .limit(1)
        )
        message = (await self.db.execute(query)).scalar_one_or_none()
        if message is None:
            return False

        await self.db.execute(delete(ChatMessage).where(ChatMessage.id == message.id))
        await self.db.commit()
        return True

    async def exists_with_text(
        self,
        conversation_id: UUID,
        role: MessageRole,
        text: str,
        since: datetime | None = None,
    ) -> bool:
        """Whether a ``role`` message with exactly ``text`` exists, optionally after ``since``."""
        query = select(ChatMessage.id).where(
            ChatMessage.conversation_id == conversation_id,
            ChatMessage.role == role,
            ChatMessage.content == text,
        )
        if since is not None:
            query = query.where(ChatMessage.sent_at > since)
        result = await self.db.execute(query.limit(1))
        return result.scalar_one_or_none() is not None
