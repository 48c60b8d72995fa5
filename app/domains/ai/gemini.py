"""Google Gemini adapter built on the google-generativeai SDK."""

import asyncio
import logging
import re
from collections.abc import AsyncIterator, Sequence
from typing import Any

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from google.generativeai.types import HarmBlockThreshold, HarmCategory

from app.core.config import Settings, settings
from app.exceptions.ai import (
    AIConfigurationError,
    AIContentFilterError,
    AIModelNotFoundError,
    AIRateLimitError,
    AIServiceError,
    AIServiceUnavailableError,
    AITimeoutError,
)
from app.schemas.ai import CompletionOptions, ProviderHealthResponse, ProviderMessage
from models.chat_conversation import ProviderKind
from models.chat_message import MessageRole

from .base import ProviderAdapter

logger = logging.getLogger(__name__)

# Gemini only knows "user" and "model"; system turns are sent as user turns
GEMINI_ROLES = {
    MessageRole.USER: "user",
    MessageRole.ASSISTANT: "model",
    MessageRole.SYSTEM: "user",
}

SAFETY_FINISH_REASON = 3

SAFETY_SETTINGS = {
    HarmCategory.HARM_CATEGORY_HARASSMENT: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    HarmCategory.HARM_CATEGORY_HATE_SPEECH: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
}


class GeminiAdapter(ProviderAdapter):
    """Adapter for the Gemini generateContent API."""

    kind = ProviderKind.GEMINI

    def __init__(self, config: Settings = settings):
        super().__init__(
            base_url=config.gemini_base_url,
            default_model=config.gemini_model,
            fallback_model=config.gemini_fallback_model,
        )
        self.config = config
        self._initialize_client()

    def _initialize_client(self):
        """Configure the Gemini SDK with the API key and endpoint."""
        if not self.config.gemini_api_key:
            raise AIConfigurationError("Gemini API key not configured")

        try:
            genai.configure(
                api_key=self.config.gemini_api_key,
                client_options={"api_endpoint": self.base_url},
            )
            logger.info(f"Gemini client configured for {self.base_url} (default model: {self.default_model})")
        except Exception as e:
            logger.error(f"Failed to configure Gemini client: {str(e)}")
            raise AIConfigurationError(f"Failed to initialize AI service: {str(e)}") from e

    def _build_model(self, options: CompletionOptions):
        return genai.GenerativeModel(
            model_name=options.model,
            safety_settings=SAFETY_SETTINGS,
            generation_config=genai.types.GenerationConfig(
                candidate_count=1,
                max_output_tokens=options.max_tokens or self.config.gemini_max_tokens,
                temperature=options.temperature,
            ),
        )

    @staticmethod
    def to_contents(messages: Sequence[ProviderMessage]) -> list[dict[str, Any]]:
        """Convert normalized messages to Gemini ``contents``."""
        return [{"role": GEMINI_ROLES[msg.role], "parts": [msg.content]} for msg in messages]

    async def complete(self, messages: Sequence[ProviderMessage], options: CompletionOptions) -> str:
        model = self._build_model(options)
        try:
            response = await model.generate_content_async(
                self.to_contents(messages),
                request_options={"timeout": self.config.ai_request_timeout},
            )
        except AIServiceError:
            raise
        except Exception as e:
            raise self._map_error(e, options.model) from e

        text = self._extract_text(response)
        if not text.strip():
            self._raise_empty(response)
        return text

    async def stream_complete(
        self, messages: Sequence[ProviderMessage], options: CompletionOptions
    ) -> AsyncIterator[str]:
        model = self._build_model(options)
        try:
            response = await model.generate_content_async(self.to_contents(messages), stream=True)
        except Exception as e:
            raise self._map_error(e, options.model) from e

        emitted = False
        last_chunk = None
        chunks = aiter(response)
        try:
            async for chunk in chunks:
                last_chunk = chunk
                text = self._extract_text(chunk)
                if text:
                    emitted = True
                    yield text
        except AIServiceError:
            raise
        except Exception as e:
            raise self._map_error(e, options.model) from e
        finally:
            # Closing the SDK iterator tears down the streaming call now, not at GC
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()

        if not emitted:
            self._raise_empty(last_chunk)

    async def list_models(self) -> set[str]:
        try:
            loop = asyncio.get_running_loop()
            available = await asyncio.wait_for(
                loop.run_in_executor(None, lambda: list(genai.list_models())),
                timeout=self.config.model_list_timeout,
            )
        except Exception as e:
            logger.warning(f"Failed to list Gemini models: {str(e)}")
            return set()

        names: set[str] = set()
        for model in available:
            if "generateContent" not in (getattr(model, "supported_generation_methods", None) or []):
                continue
            names.add(model.name)
            names.add(model.name.removeprefix("models/"))
        logger.debug(f"Available Gemini models with generateContent: {sorted(names)}")
        return names

    async def check_health(self) -> ProviderHealthResponse:
        models = await self.list_models()
        return ProviderHealthResponse(
            provider=self.kind,
            available=bool(models),
            base_url=self.base_url,
            models=sorted(m for m in models if not m.startswith("models/")),
            error=None if models else "No models reachable",
        )

    @staticmethod
    def _extract_text(response) -> str:
        """Concatenate the text parts of the first candidate."""
        candidates = getattr(response, "candidates", None) or []
        if not candidates:
            return ""
        content = getattr(candidates[0], "content", None)
        parts = getattr(content, "parts", None) or []
        return "".join(getattr(part, "text", "") or "" for part in parts)

    @staticmethod
    def _raise_empty(response):
        """Raise the error describing why a response carried no text."""
        feedback = getattr(response, "prompt_feedback", None)
        block_reason = getattr(feedback, "block_reason", None) if feedback is not None else None
        if block_reason:
            logger.error(f"Prompt blocked by Gemini: {block_reason}")
            raise AIContentFilterError("Content was blocked by AI safety filters. Please rephrase your request.")

        candidates = getattr(response, "candidates", None) or []
        if candidates and getattr(candidates[0], "finish_reason", None) == SAFETY_FINISH_REASON:
            raise AIContentFilterError("Response was blocked by AI safety filters.")

        logger.error("Gemini returned no text candidate")
        raise AIServiceError("Failed to get response from Gemini: empty candidate")

    @staticmethod
    def _extract_retry_delay(error_message: str) -> int | None:
        # Pattern: "Please retry in 32.984803332s"
        match = re.search(r"retry in (\d+(?:\.\d+)?)s", error_message)
        if match:
            return int(float(match.group(1))) + 1
        return None

    def _map_error(self, error: Exception, model: str) -> AIServiceError:
        """Classify an SDK failure into the gateway's error taxonomy."""
        message = str(error)
        status = getattr(error, "code", None)
        status = int(status) if isinstance(status, int) else None

        if isinstance(error, google_exceptions.NotFound) or (
            "not found" in message.lower() and "model" in message.lower()
        ):
            logger.warning(f"Gemini model {model} not found: {message}")
            return AIModelNotFoundError(f"Gemini model '{model}' not found", model=model, upstream_status=status or 404)
        if isinstance(error, google_exceptions.ResourceExhausted | google_exceptions.TooManyRequests) or (
            "429" in message or "quota" in message.lower()
        ):
            retry_after = self._extract_retry_delay(message)
            logger.warning(f"Gemini rate limit hit (retry after {retry_after}s)")
            return AIRateLimitError("Gemini rate limit exceeded", retry_after=retry_after)
        if isinstance(error, google_exceptions.DeadlineExceeded | asyncio.TimeoutError):
            return AITimeoutError("Gemini request timed out")
        if isinstance(error, google_exceptions.ServiceUnavailable):
            return AIServiceUnavailableError("Gemini is temporarily unavailable", upstream_status=status or 503)

        logger.error(f"Gemini API call failed: {message}")
        return AIServiceError("Failed to get response from Gemini", details={"error": message}, upstream_status=status)
