"""Chat schemas for request/response serialization."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import ConfigDict, Field, field_validator, model_validator

from models.chat_conversation import ProviderKind
from models.chat_message import MessageRole

from .base import BaseModelSchema, BaseSchema

MAX_MESSAGE_LENGTH = 10000
GENERAL_ASSISTANT = "general"


class ChatMessageCreate(BaseSchema):
    """Schema for an incoming user turn."""

    role: MessageRole = Field(default=MessageRole.USER, description="Message role; only 'user' is accepted")
    content: str = Field(..., max_length=MAX_MESSAGE_LENGTH, description="Message content")

    @field_validator("role", mode="before")
    @classmethod
    def validate_role(cls, v):
        if not isinstance(v, str):
            raise ValueError("role must be a string")
        return v

    @field_validator("role")
    @classmethod
    def validate_user_role(cls, v):
        if v != MessageRole.USER:
            raise ValueError("only user messages can be sent")
        return v

    @field_validator("content", mode="before")
    @classmethod
    def validate_content(cls, v):
        if not isinstance(v, str):
            raise ValueError("content must be a string")
        if not v.strip():
            raise ValueError("content must not be empty")
        return v


class ChatCompletionRequest(BaseSchema):
    """Message payload as sent by chat clients.

    Accepts either ``{"messages": [...]}`` or a single ``{"role", "content"}``
    object; the latest message is the one answered.
    """

    messages: list[dict] = Field(default_factory=list, description="Conversation turns, latest last")
    assistant: str | None = Field(None, description="'general' disables knowledge retrieval")
    assistant_category_id: str | int | None = Field(None, description="Knowledge category to search")
    model: str | None = Field(None, description="Optional model hint")

    @model_validator(mode="before")
    @classmethod
    def normalize_shape(cls, data):
        if isinstance(data, dict) and "messages" not in data and "content" in data:
            data = dict(data)
            data["messages"] = [{"role": data.pop("role", None), "content": data.pop("content")}]
        return data

    @field_validator("messages")
    @classmethod
    def validate_messages(cls, v):
        if not v:
            raise ValueError('Request body must have a non-empty "messages" array')
        return v

    def latest_message(self) -> ChatMessageCreate:
        return ChatMessageCreate.model_validate(self.messages[-1])

    @property
    def category_scope(self) -> str | None:
        if self.assistant == GENERAL_ASSISTANT or self.assistant_category_id is None:
            return None
        raw = str(self.assistant_category_id).strip()
        if not raw:
            return None
        try:
            return str(int(raw, 10))
        except ValueError:
            return None


class ChatMessageResponse(BaseModelSchema):
    """Schema for a persisted chat message."""

    conversation_id: UUID
    role: MessageRole
    content: str
    sent_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ChatConversationResponse(BaseModelSchema):
    """Schema for chat conversation listing."""

    user_id: UUID
    title: str
    provider: ProviderKind | None

    model_config = ConfigDict(from_attributes=True)


class ChatConversationDetailResponse(ChatConversationResponse):
    """Schema for detailed chat conversation response with messages."""

    messages: list[ChatMessageResponse] = Field(default=[], description="Conversation messages in order")

    model_config = ConfigDict(from_attributes=True)


class ChatConversationRename(BaseSchema):
    """Schema for renaming a conversation."""

    title: str = Field(..., min_length=1, max_length=255)

    @field_validator("title")
    @classmethod
    def strip_title(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("title must not be empty")
        return v


class ChatCompletionResponse(BaseSchema):
    """Assistant reply produced by a buffered completion or regeneration."""

    conversation_id: UUID
    response: str = Field(..., description="Assistant text")
    message: ChatMessageResponse
    model: str = Field(..., description="Model that produced the reply")
    model_substituted: bool = Field(default=False, description="Whether a fallback model answered")
    context_chunks: int = Field(default=0, description="Retrieved chunks injected into the prompt")


ChatConversationDetailResponse.model_rebuild()
ChatCompletionResponse.model_rebuild()
