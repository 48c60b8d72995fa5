"""Provider adapter contract shared by every text-generation backend."""

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence

from app.schemas.ai import CompletionOptions, ProviderHealthResponse, ProviderMessage
from models.chat_conversation import ProviderKind

logger = logging.getLogger(__name__)


class ProviderAdapter(ABC):
    """Translate normalized messages to one backend and back.

    Adapters never persist anything and never retry; failures surface as
    ``AIServiceError`` subclasses so the chat service can classify them.
    """

    kind: ProviderKind

    def __init__(
        self,
        base_url: str,
        default_model: str,
        fallback_model: str,
        system_prompt: str | None = None,
    ):
        self.base_url = base_url
        self.default_model = default_model
        self.fallback_model = fallback_model
        self.system_prompt = system_prompt

    @abstractmethod
    async def complete(self, messages: Sequence[ProviderMessage], options: CompletionOptions) -> str:
        """Return the single best text candidate for ``messages``."""

    @abstractmethod
    def stream_complete(
        self, messages: Sequence[ProviderMessage], options: CompletionOptions
    ) -> AsyncIterator[str]:
        """Yield non-empty text chunks until the provider signals completion.

        Closing the returned iterator aborts the upstream request.
        """

    @abstractmethod
    async def list_models(self) -> set[str]:
        """Return the model names the provider serves; empty set on failure."""

    @abstractmethod
    async def check_health(self) -> ProviderHealthResponse:
        """Report whether the provider is reachable."""

    async def aclose(self) -> None:
        """Release network resources held by the adapter."""
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(base_url={self.base_url!r}, default_model={self.default_model!r})"
