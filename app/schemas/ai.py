"""Schemas exchanged between the chat service and provider adapters."""

from pydantic import Field

from models.chat_conversation import ProviderKind
from models.chat_message import MessageRole

from .base import BaseSchema


class ProviderMessage(BaseSchema):
    """One normalized turn of a provider request."""

    role: MessageRole
    content: str = Field(..., min_length=1)


class CompletionOptions(BaseSchema):
    """Per-call generation options."""

    model: str = Field(..., min_length=1, description="Model name understood by the provider")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1, description="Maximum output tokens")


class ModelResolution(BaseSchema):
    """Outcome of a model availability check."""

    requested: str = Field(..., description="Model asked for (hint or provider default)")
    model: str = Field(..., description="Model the call should use")
    substituted: bool = Field(default=False, description="Whether the fallback model replaced the request")
    verified: bool = Field(default=False, description="Whether a model list confirmed availability")


class ProviderHealthResponse(BaseSchema):
    """Reachability report for one provider."""

    provider: ProviderKind
    available: bool
    base_url: str
    models: list[str] = Field(default_factory=list)
    error: str | None = None
