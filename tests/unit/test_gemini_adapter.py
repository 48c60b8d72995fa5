# ruff: noqa: SIM117
"""
Unit tests for GeminiAdapter.

The google-generativeai SDK is patched out; responses are shaped like the
SDK's candidate/content/parts objects.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from google.api_core import exceptions as google_exceptions

from app.domains.ai.gemini import GeminiAdapter
from app.exceptions.ai import (
    AIConfigurationError,
    AIContentFilterError,
    AIModelNotFoundError,
    AIRateLimitError,
    AIServiceError,
    AIServiceUnavailableError,
    AITimeoutError,
)
from app.schemas.ai import CompletionOptions, ProviderMessage
from models import MessageRole
from tests.factories import make_settings


def gemini_response(*texts, finish_reason=1, block_reason=None):
    parts = [SimpleNamespace(text=text) for text in texts]
    candidates = [SimpleNamespace(content=SimpleNamespace(parts=parts), finish_reason=finish_reason)] if texts else []
    feedback = SimpleNamespace(block_reason=block_reason) if block_reason else None
    return SimpleNamespace(candidates=candidates, prompt_feedback=feedback)


async def stream_of(*responses):
    for response in responses:
        yield response


MESSAGES = [
    ProviderMessage(role=MessageRole.SYSTEM, content="Be brief."),
    ProviderMessage(role=MessageRole.USER, content="Hello"),
    ProviderMessage(role=MessageRole.ASSISTANT, content="Hi!"),
    ProviderMessage(role=MessageRole.USER, content="How are you?"),
]
OPTIONS = CompletionOptions(model="gemini-2.0-flash")


class TestGeminiAdapter:
    """Test cases for GeminiAdapter."""

    @pytest.fixture
    def mock_genai(self):
        with patch("app.domains.ai.gemini.genai") as mock_genai:
            mock_genai.GenerativeModel.return_value = MagicMock()
            yield mock_genai

    @pytest.fixture
    def model(self, mock_genai):
        return mock_genai.GenerativeModel.return_value

    @pytest.fixture
    def adapter(self, mock_genai):
        return GeminiAdapter(make_settings(gemini_api_key="test_api_key"))

    def test_initialize_client_success(self, adapter, mock_genai):
        """Test SDK configuration with key and endpoint."""
        mock_genai.configure.assert_called_once_with(
            api_key="test_api_key",
            client_options={"api_endpoint": "generativelanguage.googleapis.com"},
        )
        assert adapter.default_model == "gemini-2.0-flash"
        assert adapter.fallback_model == "gemini-1.5-flash"

    def test_initialize_client_no_api_key(self, mock_genai):
        """Test adapter construction without API key."""
        with pytest.raises(AIConfigurationError):
            GeminiAdapter(make_settings(gemini_api_key=None))
        mock_genai.configure.assert_not_called()

    def test_role_translation(self):
        """System turns become user turns; assistant turns become model turns."""
        contents = GeminiAdapter.to_contents(MESSAGES)

        assert [c["role"] for c in contents] == ["user", "user", "model", "user"]
        assert contents[0]["parts"] == ["Be brief."]
        assert len(contents) == len(MESSAGES)

    @pytest.mark.asyncio
    async def test_complete_concatenates_parts(self, adapter, model):
        model.generate_content_async = AsyncMock(return_value=gemini_response("Doing ", "well."))

        result = await adapter.complete(MESSAGES, OPTIONS)

        assert result == "Doing well."
        args, kwargs = model.generate_content_async.call_args
        assert args[0] == GeminiAdapter.to_contents(MESSAGES)
        assert kwargs["request_options"] == {"timeout": 5}

    @pytest.mark.asyncio
    async def test_complete_blocked_prompt(self, adapter, model):
        """Test that a blocked prompt surfaces as a content filter error."""
        model.generate_content_async = AsyncMock(return_value=gemini_response(block_reason=2))

        with pytest.raises(AIContentFilterError):
            await adapter.complete(MESSAGES, OPTIONS)

    @pytest.mark.asyncio
    async def test_complete_empty_candidate_is_error(self, adapter, model):
        """Test that an empty candidate is never returned as an empty string."""
        model.generate_content_async = AsyncMock(return_value=gemini_response())

        with pytest.raises(AIServiceError) as exc_info:
            await adapter.complete(MESSAGES, OPTIONS)
        assert type(exc_info.value) is AIServiceError

    @pytest.mark.asyncio
    async def test_stream_complete_yields_text_chunks(self, adapter, model):
        model.generate_content_async = AsyncMock(
            return_value=stream_of(gemini_response("Doing "), gemini_response(""), gemini_response("well."))
        )

        chunks = [chunk async for chunk in adapter.stream_complete(MESSAGES, OPTIONS)]

        assert chunks == ["Doing ", "well."]
        assert model.generate_content_async.call_args.kwargs["stream"] is True

    @pytest.mark.asyncio
    async def test_stream_without_text_is_error(self, adapter, model):
        model.generate_content_async = AsyncMock(return_value=stream_of(gemini_response()))

        with pytest.raises(AIServiceError):
            [chunk async for chunk in adapter.stream_complete(MESSAGES, OPTIONS)]

    @pytest.mark.asyncio
    async def test_closing_stream_closes_sdk_iterator(self, adapter, model):
        closed = []

        async def sdk_stream():
            try:
                yield gemini_response("first ")
                yield gemini_response("second")
            finally:
                closed.append(True)

        model.generate_content_async = AsyncMock(return_value=sdk_stream())
        stream = adapter.stream_complete(MESSAGES, OPTIONS)

        assert await anext(stream) == "first "
        await stream.aclose()

        assert closed == [True]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("error", "expected", "upstream_status"),
        [
            (google_exceptions.NotFound("models/gemini-9 is not found"), AIModelNotFoundError, 404),
            (google_exceptions.ServiceUnavailable("overloaded"), AIServiceUnavailableError, 503),
            (google_exceptions.InternalServerError("boom"), AIServiceError, 500),
            (google_exceptions.DeadlineExceeded("deadline"), AITimeoutError, None),
        ],
    )
    async def test_error_mapping(self, adapter, model, error, expected, upstream_status):
        model.generate_content_async = AsyncMock(side_effect=error)

        with pytest.raises(expected) as exc_info:
            await adapter.complete(MESSAGES, OPTIONS)
        assert type(exc_info.value) is expected
        assert exc_info.value.upstream_status == upstream_status

    @pytest.mark.asyncio
    async def test_rate_limit_retry_delay(self, adapter, model):
        error = google_exceptions.ResourceExhausted("Quota exceeded. Please retry in 32.984803332s")
        model.generate_content_async = AsyncMock(side_effect=error)

        with pytest.raises(AIRateLimitError) as exc_info:
            await adapter.complete(MESSAGES, OPTIONS)
        assert exc_info.value.details["retry_after"] == 33
        assert exc_info.value.upstream_status == 429

    @pytest.mark.asyncio
    async def test_list_models_filters_generate_content(self, adapter, mock_genai):
        mock_genai.list_models.return_value = [
            SimpleNamespace(name="models/gemini-2.0-flash", supported_generation_methods=["generateContent"]),
            SimpleNamespace(name="models/text-embedding-004", supported_generation_methods=["embedContent"]),
        ]

        models = await adapter.list_models()

        assert models == {"models/gemini-2.0-flash", "gemini-2.0-flash"}

    @pytest.mark.asyncio
    async def test_list_models_failure_returns_empty_set(self, adapter, mock_genai):
        mock_genai.list_models.side_effect = RuntimeError("network down")

        assert await adapter.list_models() == set()

    @pytest.mark.asyncio
    async def test_check_health(self, adapter, mock_genai):
        mock_genai.list_models.return_value = [
            SimpleNamespace(name="models/gemini-1.5-flash", supported_generation_methods=["generateContent"]),
        ]

        health = await adapter.check_health()

        assert health.available is True
        assert health.models == ["gemini-1.5-flash"]
