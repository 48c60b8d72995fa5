"""
Unit tests for ContextRetriever and its chunk selection helpers.
"""

import json

import httpx
import pytest

from app.domains.chat.retriever import ContextRetriever, format_context, select_chunks
from app.schemas.retrieval import ContextChunk
from tests.factories import make_settings


def chunk(id=None, text="", source=None) -> ContextChunk:
    return ContextChunk(id=id, text=text, source_path=source)


class TestSelectChunks:
    """Test cases for de-duplication and budgeting."""

    def test_budget_example_selects_two_of_three(self):
        """3 chunks of 2,000 characters with a 4,000 budget yield exactly 2."""
        chunks = [chunk(id=str(i), text=str(i) * 2000) for i in range(3)]

        selected = select_chunks(chunks, max_chunks=5, max_chars=4000)

        assert [c.id for c in selected] == ["0", "1"]

    def test_over_budget_chunk_is_skipped_not_truncated(self):
        chunks = [chunk(id="a", text="a" * 3000), chunk(id="b", text="b" * 2000), chunk(id="c", text="c" * 900)]

        selected = select_chunks(chunks, max_chunks=5, max_chars=4000)

        assert [c.id for c in selected] == ["a", "c"]
        assert all(len(c.text) in (3000, 900) for c in selected)

    def test_max_chunks(self):
        chunks = [chunk(id=str(i), text="t") for i in range(10)]

        assert len(select_chunks(chunks, max_chunks=5, max_chars=4000)) == 5

    def test_dedup_by_id_then_text(self):
        chunks = [
            chunk(id="1", text="first"),
            chunk(id="1", text="first again"),
            chunk(text="same"),
            chunk(text="same"),
            chunk(id="2", text="same"),
            chunk(text="   "),
        ]

        selected = select_chunks(chunks, max_chunks=5, max_chars=4000)

        assert [(c.id, c.text) for c in selected] == [("1", "first"), (None, "same"), ("2", "same")]

    def test_passages_of_one_source_file_are_distinct(self):
        chunks = [
            chunk(id="a-1", text="Water weekly.", source="care.md"),
            chunk(id="a-2", text="Prune in spring.", source="care.md"),
            chunk(id="a-1", text="Water weekly.", source="care.md"),
        ]

        selected = select_chunks(chunks, max_chunks=5, max_chars=4000)

        assert [c.id for c in selected] == ["a-1", "a-2"]


class TestFormatContext:
    def test_numbered_chunks_with_sources(self):
        text = format_context([chunk(id="1", text="Water weekly.", source="care.md"), chunk(text="Full sun.")])

        assert "[1] Water weekly.\nSource: care.md" in text
        assert "[2] Full sun.\nSource: unknown" in text
        assert text.index("[1]") < text.index("[2]")

    def test_empty(self):
        assert format_context([]) == ""


class TestContextRetriever:
    """Test cases for candidate fallback."""

    @pytest.mark.asyncio
    async def test_no_category_skips_network(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"chunks": []})

        retriever = ContextRetriever(make_settings(), transport=httpx.MockTransport(handler))
        context = await retriever.retrieve("How often should I water?", None)

        assert context.is_empty
        assert calls == []

    @pytest.mark.asyncio
    async def test_falls_back_to_third_candidate(self):
        """First two candidates fail at the transport level; the third answers."""
        seen = []
        third_chunks = [{"id": str(i), "text": str(i) * 2000, "source_path": f"doc{i}.md"} for i in range(3)]

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.host)
            if request.url.host == "rag-a":
                raise httpx.ConnectError("connection refused", request=request)
            if request.url.host == "rag-b":
                raise httpx.ConnectTimeout("timed out", request=request)
            assert request.url.path == "/query"
            assert json.loads(request.content) == {"question": "Q", "limit": 8, "category_id": "4"}
            return httpx.Response(200, json={"chunks": third_chunks})

        retriever = ContextRetriever(make_settings(), transport=httpx.MockTransport(handler))
        context = await retriever.retrieve("Q", "4")

        assert seen == ["rag-a", "rag-b", "rag-c"]
        assert context.source_url == "http://rag-c:8001"
        assert [c.id for c in context.chunks] == ["0", "1"]
        assert "Source: doc0.md" in context.text
        assert "Source: doc2.md" not in context.text

    @pytest.mark.asyncio
    async def test_empty_valid_answer_stops_search(self):
        seen = []

        def handler(request):
            seen.append(request.url.host)
            return httpx.Response(200, json={"chunks": []})

        retriever = ContextRetriever(make_settings(), transport=httpx.MockTransport(handler))
        context = await retriever.retrieve("Q", "4")

        assert seen == ["rag-a"]
        assert context.is_empty
        assert context.source_url == "http://rag-a:8001"

    @pytest.mark.asyncio
    async def test_bad_status_and_malformed_body_move_on(self):
        def handler(request):
            if request.url.host == "rag-a":
                return httpx.Response(503, text="unavailable")
            if request.url.host == "rag-b":
                return httpx.Response(200, text="<html>not json</html>")
            return httpx.Response(200, json={"chunks": [{"id": 1, "text": "answer", "sourcePath": "a.md"}]})

        retriever = ContextRetriever(make_settings(), transport=httpx.MockTransport(handler))
        context = await retriever.retrieve("Q", "4")

        assert context.source_url == "http://rag-c:8001"
        assert context.chunks[0].source_path == "a.md"

    @pytest.mark.asyncio
    async def test_all_candidates_failing_degrades_to_empty(self, caplog):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        retriever = ContextRetriever(make_settings(), transport=httpx.MockTransport(handler))
        with caplog.at_level("WARNING", logger="app.domains.chat.retriever"):
            context = await retriever.retrieve("Q", "4")

        assert context.is_empty
        assert context.text == ""
        assert "All 3 retrieval candidates failed" in caplog.text

    @pytest.mark.asyncio
    async def test_override_url_tried_first(self):
        seen = []

        def handler(request):
            seen.append(f"{request.url.host}:{request.url.port}")
            return httpx.Response(200, json={"chunks": []})

        config = make_settings(rag_service_url="http://override:9000")
        await ContextRetriever(config, transport=httpx.MockTransport(handler)).retrieve("Q", "1")

        assert seen == ["override:9000"]
