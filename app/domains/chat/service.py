"""Chat service layer: the completion orchestrator behind every chat request."""

import asyncio
import logging
import weakref
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, settings
from app.domains.ai.base import ProviderAdapter
from app.domains.ai.factory import create_provider_adapter
from app.exceptions.ai import AIModelNotFoundError, AITimeoutError, is_model_not_found
from app.exceptions.base import ValidationError
from app.exceptions.chat import ConversationNotFoundError, InvalidMessageError
from app.schemas.ai import CompletionOptions, ModelResolution, ProviderHealthResponse, ProviderMessage
from app.schemas.chat import (
    ChatCompletionResponse,
    ChatConversationDetailResponse,
    ChatConversationRename,
    ChatConversationResponse,
    ChatMessageCreate,
    ChatMessageResponse,
)
from app.schemas.retrieval import RetrievedContext
from models.chat_conversation import ChatConversation, ProviderKind
from models.chat_message import ChatMessage, MessageRole

from .locks import ConversationLockRegistry
from .model_resolver import ModelAvailabilityResolver
from .retriever import ContextRetriever
from .retry import run_with_model_fallback
from .stores import ConversationStore, MessageStore
from .stream_relay import StreamRelay

logger = logging.getLogger(__name__)


class ChatService:
    """Service class for conversations answered by one provider family.

    One instance serves one request: it is bound to a database session and to
    the provider kind the request was routed to. Conversations tagged with a
    different provider are invisible to it.
    """

    def __init__(
        self,
        db: AsyncSession,
        provider: ProviderKind | str,
        adapter: ProviderAdapter | None = None,
        retriever: ContextRetriever | None = None,
        resolver: ModelAvailabilityResolver | None = None,
        config: Settings = settings,
    ):
        """Initialize chat service with database session and collaborators.

        Args:
            db: Async database session for data operations.
            provider: Provider family this service answers with.
            adapter: Provider adapter; built from ``config`` when omitted.
            retriever: Context retriever; built from ``config`` when omitted.
            resolver: Model resolver; pass a long-lived one to share its cache.
            config: Application settings.
        """
        self.db = db
        self.provider = ProviderKind(provider)
        self.config = config
        self._owns_adapter = adapter is None
        self.adapter = adapter or create_provider_adapter(self.provider, config)
        self.retriever = retriever or ContextRetriever(config)
        self.resolver = resolver or ModelAvailabilityResolver(self.adapter, config)
        self.conversations = ConversationStore(db)
        self.messages = MessageStore(db)

    async def aclose(self) -> None:
        """Release the adapter if this service created it."""
        if self._owns_adapter:
            await self.adapter.aclose()

    # Conversations

    async def create_conversation(self, owner_id: UUID, title: str | None = None) -> UUID:
        """Create an empty conversation tagged with this service's provider.

        Args:
            owner_id: Owning user ID
            title: Optional title; blank or missing means the placeholder

        Returns:
            The new conversation ID
        """
        title = (title or "").strip()[:255] or self.config.conversation_title_placeholder
        conversation = await self.conversations.create(owner_id, self.provider, title=title)
        return conversation.id

    async def rename_conversation(
        self, conversation_id: UUID, title: str, owner_id: UUID | None = None
    ) -> ChatConversationResponse:
        try:
            rename = ChatConversationRename(title=title)
        except PydanticValidationError as e:
            raise ValidationError("Invalid conversation title", details={"errors": [err["msg"] for err in e.errors()]}) from e

        conversation = await self._get_owned_conversation(conversation_id, owner_id)
        await self.conversations.set_title(conversation, rename.title)
        return ChatConversationResponse.model_validate(conversation)

    async def get_conversation(self, conversation_id: UUID, owner_id: UUID) -> ChatConversationDetailResponse:
        """Get conversation with all messages in order.

        Args:
            conversation_id: Conversation ID
            owner_id: User ID for authorization

        Returns:
            Conversation with messages
        """
        conversation = await self._get_owned_conversation(conversation_id, owner_id)
        messages = await self.messages.list_ordered(conversation.id)

        return ChatConversationDetailResponse(
            id=conversation.id,
            user_id=conversation.user_id,
            title=conversation.title,
            provider=conversation.provider,
            messages=[ChatMessageResponse.model_validate(msg) for msg in messages],
            created_at=conversation.created_at,
            updated_at=conversation.updated_at,
        )

    async def list_conversations(self, owner_id: UUID) -> list[ChatConversationResponse]:
        """List the owner's conversations for this provider, most recent first."""
        conversations = await self.conversations.list_by_owner(owner_id, self.provider)
        return [ChatConversationResponse.model_validate(conv) for conv in conversations]

    async def delete_conversation(self, conversation_id: UUID, owner_id: UUID) -> None:
        conversation = await self._get_owned_conversation(conversation_id, owner_id)
        await self.conversations.delete(conversation)
        logger.info(f"Deleted conversation {conversation_id}")

    async def delete_all_conversations(self, owner_id: UUID) -> int:
        """Delete every conversation of the owner for this provider.

        Returns:
            Number of conversations deleted
        """
        count = await self.conversations.delete_all_by_owner(owner_id, self.provider)
        logger.info(f"Deleted {count} {self.provider.value} conversations of user {owner_id}")
        return count

    async def check_provider_health(self) -> ProviderHealthResponse:
        return await self.adapter.check_health()

    # Completions

    async def add_message(
        self,
        conversation_id: UUID,
        message: ChatMessageCreate | dict[str, Any],
        category_id: str | None = None,
        model_hint: str | None = None,
        owner_id: UUID | None = None,
    ) -> ChatCompletionResponse:
        """Append a user message and answer it with a buffered completion.

        Args:
            conversation_id: Conversation ID
            message: Incoming ``{"role": "user", "content": ...}`` turn
            category_id: Knowledge category to retrieve context from, if any
            model_hint: Model to prefer over the provider default
            owner_id: When given, the conversation must belong to this user

        Returns:
            The persisted assistant reply and the model that produced it
        """
        incoming = self._validate_message(message)

        async with self._serialized(conversation_id):
            conversation = await self._get_owned_conversation(conversation_id, owner_id)
            await self._accept_user_message(conversation, incoming)
            return await self._answer(conversation, incoming.content, category_id, model_hint)

    async def add_message_streaming(
        self,
        conversation_id: UUID,
        message: ChatMessageCreate | dict[str, Any],
        category_id: str | None = None,
        model_hint: str | None = None,
        owner_id: UUID | None = None,
    ) -> StreamRelay:
        """Append a user message and open a streamed completion for it.

        Validation, lookup, persistence of the user turn, context retrieval,
        model resolution and the first provider chunk all happen before this
        returns, so their errors surface to the caller directly. The reply is
        persisted by the returned relay.

        The conversation stays locked until the relay is drained or
        ``aclose()``d; callers should always do one of the two. A relay that
        is dropped without either releases the lock when it is collected.
        """
        incoming = self._validate_message(message)

        lock = self._lock_for(conversation_id)
        if lock is not None:
            await lock.acquire()
        try:
            conversation = await self._get_owned_conversation(conversation_id, owner_id)
            user_message = await self._accept_user_message(conversation, incoming)
            history = await self.messages.list_ordered(conversation.id)
            context = await self.retriever.retrieve(incoming.content, category_id)
            provider_messages = self._build_provider_messages(history, context)
            resolution = await self.resolver.resolve(model_hint)

            (chunks, first_chunk), model_used = await run_with_model_fallback(
                lambda model: self._open_stream(provider_messages, model),
                resolution.model,
                is_model_not_found,
                lambda: self.adapter.fallback_model,
            )
        except BaseException:
            if lock is not None:
                lock.release()
            raise

        logger.info(
            f"Streaming {self.provider.value} reply with {model_used}",
            extra={"conversation_id": conversation.id, "provider": self.provider.value, "model": model_used},
        )

        async def persist(text: str) -> None:
            await self._persist_reply(conversation, text, since=user_message.sent_at)

        released = False

        def release_lock() -> None:
            nonlocal released
            if lock is not None and not released:
                released = True
                lock.release()

        relay = StreamRelay(
            chunks,
            persist,
            first_chunk=first_chunk,
            idle_timeout=self.config.ai_stream_idle_timeout,
            on_close=[release_lock],
        )
        # A relay dropped without being drained or closed still frees the conversation
        weakref.finalize(relay, release_lock).atexit = False
        return relay

    async def regenerate(
        self,
        conversation_id: UUID,
        category_id: str | None = None,
        model_hint: str | None = None,
        owner_id: UUID | None = None,
    ) -> ChatCompletionResponse:
        """Recompute the latest assistant turn.

        The most recent assistant message is deleted (no-op when there is none)
        and the reply is recomputed from the remaining history. A provider
        failure after the delete leaves the turn unanswered; calling again
        recovers.
        """
        async with self._serialized(conversation_id):
            conversation = await self._get_owned_conversation(conversation_id, owner_id)
            deleted = await self.messages.delete_most_recent_assistant(conversation.id)
            if deleted:
                logger.info(f"Removed last assistant reply of conversation {conversation.id} for regeneration")

            history = await self.messages.list_ordered(conversation.id)
            last_user = next((msg for msg in reversed(history) if msg.role == MessageRole.USER), None)
            if last_user is None:
                raise InvalidMessageError("Nothing to regenerate: conversation has no user message")

            return await self._answer(conversation, last_user.content, category_id, model_hint, history=history)

    # Private helper methods

    def _validate_message(self, message: ChatMessageCreate | dict[str, Any]) -> ChatMessageCreate:
        if isinstance(message, ChatMessageCreate):
            return message
        try:
            return ChatMessageCreate.model_validate(message)
        except PydanticValidationError as e:
            raise InvalidMessageError(details={"errors": [err["msg"] for err in e.errors()]}) from e

    def _lock_for(self, conversation_id: UUID) -> asyncio.Lock | None:
        if not self.config.serialize_conversation_requests:
            return None
        return ConversationLockRegistry.get(conversation_id)

    @asynccontextmanager
    async def _serialized(self, conversation_id: UUID):
        lock = self._lock_for(conversation_id)
        if lock is None:
            yield
            return
        async with lock:
            yield

    async def _get_owned_conversation(self, conversation_id: UUID, owner_id: UUID | None) -> ChatConversation:
        conversation = await self.conversations.get(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        if owner_id is not None and conversation.user_id != owner_id:
            raise ConversationNotFoundError(conversation_id)
        if conversation.provider != self.provider:
            logger.warning(
                f"Conversation {conversation_id} belongs to {getattr(conversation.provider, 'value', None)}, "
                f"not {self.provider.value}"
            )
            raise ConversationNotFoundError(conversation_id)
        return conversation

    async def _accept_user_message(self, conversation: ChatConversation, incoming: ChatMessageCreate) -> ChatMessage:
        """Title the conversation from its first message, then persist the message."""
        is_first = await self.messages.count(conversation.id) == 0
        if is_first and conversation.title == self.config.conversation_title_placeholder:
            title = self._generate_conversation_title(incoming.content)
            if title:
                await self.conversations.set_title(conversation, title)

        user_message = await self.messages.append(conversation.id, MessageRole.USER, incoming.content)
        await self.conversations.touch(conversation)
        return user_message

    def _generate_conversation_title(self, first_message: str) -> str:
        return first_message.strip()[: self.config.conversation_title_max_length]

    async def _answer(
        self,
        conversation: ChatConversation,
        question: str,
        category_id: str | None,
        model_hint: str | None,
        history: Sequence[ChatMessage] | None = None,
    ) -> ChatCompletionResponse:
        if history is None:
            history = await self.messages.list_ordered(conversation.id)
        context = await self.retriever.retrieve(question, category_id)
        provider_messages = self._build_provider_messages(history, context)
        resolution = await self.resolver.resolve(model_hint)

        text, model_used = await run_with_model_fallback(
            lambda model: self._complete(provider_messages, model),
            resolution.model,
            is_model_not_found,
            lambda: self.adapter.fallback_model,
        )

        assistant_message = await self._persist_reply(conversation, text)
        logger.info(
            f"Answered conversation {conversation.id} with {model_used} ({len(text)} chars)",
            extra={"conversation_id": conversation.id, "provider": self.provider.value, "model": model_used},
        )
        return ChatCompletionResponse(
            conversation_id=conversation.id,
            response=text,
            message=ChatMessageResponse.model_validate(assistant_message),
            model=model_used,
            model_substituted=self._substituted(resolution, model_used),
            context_chunks=len(context.chunks),
        )

    def _build_provider_messages(
        self, history: Sequence[ChatMessage], context: RetrievedContext
    ) -> list[ProviderMessage]:
        """Order: provider system prompt, retrieved context, then the stored turns."""
        provider_messages = []
        if self.adapter.system_prompt:
            provider_messages.append(ProviderMessage(role=MessageRole.SYSTEM, content=self.adapter.system_prompt))
        if context.text:
            provider_messages.append(ProviderMessage(role=MessageRole.SYSTEM, content=context.text))
        for msg in history:
            if msg.content and msg.content.strip():
                provider_messages.append(ProviderMessage(role=msg.role, content=msg.content))
        return provider_messages

    def _options(self, model: str) -> CompletionOptions:
        return CompletionOptions(model=model, temperature=self.config.ai_temperature)

    async def _complete(self, provider_messages: list[ProviderMessage], model: str) -> str:
        try:
            return await asyncio.wait_for(
                self.adapter.complete(provider_messages, self._options(model)),
                timeout=self.config.ai_request_timeout,
            )
        except TimeoutError:
            raise AITimeoutError(f"Chat request timed out after {self.config.ai_request_timeout}s") from None
        except AIModelNotFoundError:
            self.resolver.invalidate()
            raise

    async def _open_stream(
        self, provider_messages: list[ProviderMessage], model: str
    ) -> tuple[AsyncIterator[str], str | None]:
        """Start a provider stream and pull its first chunk."""
        chunks = self.adapter.stream_complete(provider_messages, self._options(model))
        try:
            async with asyncio.timeout(self.config.ai_stream_idle_timeout):
                first_chunk = await anext(chunks)
        except StopAsyncIteration:
            return chunks, None
        except TimeoutError:
            await chunks.aclose()
            raise AITimeoutError("AI stream produced no output in time") from None
        except AIModelNotFoundError:
            self.resolver.invalidate()
            raise
        except BaseException:
            await chunks.aclose()
            raise
        return chunks, first_chunk

    async def _persist_reply(
        self, conversation: ChatConversation, text: str, since: datetime | None = None
    ) -> ChatMessage | None:
        """Store an assistant reply; with ``since`` an identical reply after it is not stored twice."""
        if since is not None and await self.messages.exists_with_text(
            conversation.id, MessageRole.ASSISTANT, text, since=since
        ):
            logger.info(f"Reply for conversation {conversation.id} already persisted")
            return None

        message = await self.messages.append(conversation.id, MessageRole.ASSISTANT, text)
        await self.conversations.touch(conversation)
        return message

    @staticmethod
    def _substituted(resolution: ModelResolution, model_used: str) -> bool:
        return resolution.substituted or model_used != resolution.requested
