"""Provider adapter construction."""

from app.core.config import Settings, settings
from models.chat_conversation import ProviderKind

from .base import ProviderAdapter
from .gemini import GeminiAdapter
from .ollama import OllamaAdapter

ADAPTERS: dict[ProviderKind, type[ProviderAdapter]] = {
    ProviderKind.GEMINI: GeminiAdapter,
    ProviderKind.OLLAMA: OllamaAdapter,
}


def create_provider_adapter(kind: ProviderKind | str, config: Settings = settings) -> ProviderAdapter:
    """Build the adapter for ``kind``; strings are parsed once, here."""
    kind = ProviderKind(kind)
    return ADAPTERS[kind](config)
