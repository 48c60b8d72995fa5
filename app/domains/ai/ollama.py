"""Ollama adapter speaking the /api/chat HTTP protocol through httpx."""

import json
import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any

import httpx

from app.core.config import Settings, settings
from app.exceptions.ai import (
    AIModelNotFoundError,
    AIRateLimitError,
    AIServiceError,
    AIServiceUnavailableError,
    AITimeoutError,
)
from app.schemas.ai import CompletionOptions, ProviderHealthResponse, ProviderMessage
from models.chat_conversation import ProviderKind

from .base import ProviderAdapter

logger = logging.getLogger(__name__)

CHAT_PATH = "/api/chat"
TAGS_PATH = "/api/tags"
ERROR_BODY_LIMIT = 500


class OllamaAdapter(ProviderAdapter):
    """Adapter for a local or remote Ollama server."""

    kind = ProviderKind.OLLAMA

    def __init__(self, config: Settings = settings, transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(
            base_url=config.ollama_base_url.rstrip("/"),
            default_model=config.ollama_model,
            fallback_model=config.ollama_fallback_model,
            system_prompt=config.ollama_system_prompt,
        )
        self.config = config
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(config.ai_request_timeout, connect=10.0),
            transport=transport,
        )

    def _payload(self, messages: Sequence[ProviderMessage], options: CompletionOptions, stream: bool) -> dict:
        generation: dict[str, Any] = {"temperature": options.temperature}
        max_tokens = options.max_tokens or self.config.ollama_max_tokens
        if max_tokens:
            generation["num_predict"] = max_tokens
        return {
            "model": options.model,
            # Ollama accepts system, user and assistant roles as-is
            "messages": [{"role": msg.role.value, "content": msg.content} for msg in messages],
            "stream": stream,
            "options": generation,
        }

    async def complete(self, messages: Sequence[ProviderMessage], options: CompletionOptions) -> str:
        payload = self._payload(messages, options, stream=False)
        try:
            resp = await self._client.post(CHAT_PATH, json=payload)
        except httpx.TimeoutException as e:
            raise AITimeoutError(f"Ollama request timed out after {self.config.ai_request_timeout}s") from e
        except httpx.HTTPError as e:
            logger.error(f"Ollama request failed ({type(e).__name__}): {str(e)}")
            raise AIServiceUnavailableError(f"Failed to reach Ollama at {self.base_url}") from e

        if resp.status_code >= 400:
            raise self._error_from_response(resp.status_code, resp.text, options.model)

        try:
            data = resp.json()
        except ValueError as e:
            raise AIServiceError("Unexpected Ollama response: not JSON", upstream_status=resp.status_code) from e

        if isinstance(data, dict) and data.get("error"):
            raise self._error_from_response(resp.status_code, str(data["error"]), options.model)

        message = data.get("message") if isinstance(data, dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content.strip():
            logger.error(f"Ollama returned no message content: {str(data)[:ERROR_BODY_LIMIT]}")
            raise AIServiceError("Failed to get response from Ollama: empty message")
        return content

    async def stream_complete(
        self, messages: Sequence[ProviderMessage], options: CompletionOptions
    ) -> AsyncIterator[str]:
        payload = self._payload(messages, options, stream=True)
        # Read timeout applies per chunk, so a hung upstream is detected between chunks
        timeout = httpx.Timeout(
            self.config.ai_request_timeout,
            connect=10.0,
            read=self.config.ai_stream_idle_timeout,
        )
        try:
            async with self._client.stream("POST", CHAT_PATH, json=payload, timeout=timeout) as resp:
                if resp.status_code >= 400:
                    body = (await resp.aread()).decode("utf-8", errors="replace")
                    raise self._error_from_response(resp.status_code, body, options.model)

                emitted = False
                async for line in resp.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        data = json.loads(line)
                    except json.JSONDecodeError:
                        data = None
                    if not isinstance(data, dict):
                        logger.warning(f"Skipping malformed Ollama stream line: {line[:100]}")
                        continue
                    if data.get("error"):
                        raise self._error_from_response(resp.status_code, str(data["error"]), options.model)

                    message = data.get("message")
                    content = message.get("content") if isinstance(message, dict) else None
                    if isinstance(content, str) and content:
                        emitted = True
                        yield content
                    if data.get("done"):
                        break

                if not emitted:
                    logger.error("Ollama stream finished without message content")
                    raise AIServiceError("Failed to get response from Ollama: empty message")
        except httpx.TimeoutException as e:
            raise AITimeoutError("Ollama stream stalled") from e
        except httpx.HTTPError as e:
            logger.error(f"Ollama stream failed ({type(e).__name__}): {str(e)}")
            raise AIServiceUnavailableError(f"Failed to reach Ollama at {self.base_url}") from e

    async def list_models(self) -> set[str]:
        try:
            resp = await self._client.get(TAGS_PATH, timeout=self.config.model_list_timeout)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Failed to list Ollama models: {str(e)}")
            return set()

        entries = data.get("models") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            logger.warning(f"Unexpected Ollama model list: {str(data)[:ERROR_BODY_LIMIT]}")
            return set()

        names = set()
        for entry in entries:
            name = (entry.get("name") or entry.get("model")) if isinstance(entry, dict) else None
            if isinstance(name, str) and name:
                names.add(name)
        return names

    async def check_health(self) -> ProviderHealthResponse:
        try:
            resp = await self._client.get("/", timeout=self.config.model_list_timeout)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Ollama health check failed: {str(e)}")
            return ProviderHealthResponse(
                provider=self.kind,
                available=False,
                base_url=self.base_url,
                error=f"Cannot connect to Ollama: {str(e) or type(e).__name__}",
            )

        models = await self.list_models()
        return ProviderHealthResponse(
            provider=self.kind,
            available=True,
            base_url=self.base_url,
            models=sorted(models),
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def _error_from_response(self, status_code: int, body: str, model: str) -> AIServiceError:
        detail = (body or "")[:ERROR_BODY_LIMIT]
        try:
            parsed = json.loads(detail)
            if isinstance(parsed, dict) and parsed.get("error"):
                detail = str(parsed["error"])
        except json.JSONDecodeError:
            pass

        if status_code == 404 or ("model" in detail.lower() and "not found" in detail.lower()):
            logger.warning(f"Ollama model {model} not found: {detail}")
            return AIModelNotFoundError(f"Ollama model '{model}' not found", model=model, upstream_status=status_code)
        if status_code == 429:
            return AIRateLimitError("Ollama rate limit exceeded", upstream_status=status_code)

        logger.error(f"Ollama API error {status_code}: {detail}")
        return AIServiceUnavailableError(
            "Failed to get response from Ollama",
            details={"error": detail},
            upstream_status=status_code,
        )
