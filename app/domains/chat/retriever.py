"""Best-effort knowledge retrieval from an external RAG service."""

import logging

import httpx

from app.core.config import Settings, settings
from app.schemas.retrieval import ContextChunk, RetrievalRequest, RetrievalResponse, RetrievedContext

logger = logging.getLogger(__name__)

CONTEXT_HEADER = (
    "Use the following knowledge base excerpts to answer the user's question. "
    "Prefer them over general knowledge when they are relevant, and say so when they do not cover the question.\n\n"
    "Knowledge base excerpts:\n"
)


def select_chunks(chunks: list[ContextChunk], max_chunks: int, max_chars: int) -> list[ContextChunk]:
    """De-duplicate ``chunks`` and greedily keep as many as fit the budgets.

    Chunks are keyed by id, or by their text when they carry no id. The
    retrieval service assigns one id per indexed source passage, so the id is
    the source identifier; the file path alone is not, since one file yields
    many distinct passages. A chunk that would push the running character
    count past ``max_chars`` is skipped whole; later, shorter chunks may still
    fit.
    """
    seen: set[str] = set()
    selected: list[ContextChunk] = []
    used = 0

    for chunk in chunks:
        if not chunk.text.strip():
            continue
        key = f"id:{chunk.id}" if chunk.id is not None else f"text:{chunk.text}"
        if key in seen:
            continue
        seen.add(key)

        if used + len(chunk.text) > max_chars:
            continue
        selected.append(chunk)
        used += len(chunk.text)
        if len(selected) >= max_chunks:
            break
    return selected


def format_context(chunks: list[ContextChunk]) -> str:
    """Render selected chunks as one instructional block with source lines."""
    if not chunks:
        return ""
    sections = []
    for index, chunk in enumerate(chunks, start=1):
        source = chunk.source_path or "unknown"
        sections.append(f"[{index}] {chunk.text.strip()}\nSource: {source}")
    return CONTEXT_HEADER + "\n\n".join(sections)


class ContextRetriever:
    """Query retrieval service candidates in priority order.

    Candidates are tried one after another, each bounded by ``rag_timeout``.
    The first well-formed answer wins, even an empty one. Failures are logged
    and degrade to an empty context; ``retrieve`` never raises.
    """

    def __init__(self, config: Settings = settings, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self.candidates = config.rag_candidate_urls
        self.query_path = config.rag_query_path
        self._transport = transport

    async def retrieve(self, question: str, category_scope: str | None) -> RetrievedContext:
        if category_scope is None or not question.strip():
            return RetrievedContext()

        payload = RetrievalRequest(
            question=question,
            limit=self.config.rag_query_limit,
            category_id=category_scope,
        ).model_dump()

        async with httpx.AsyncClient(timeout=self.config.rag_timeout, transport=self._transport) as client:
            for candidate in self.candidates:
                response = await self._query(client, candidate, payload)
                if response is None:
                    continue

                selected = select_chunks(
                    response.chunks,
                    max_chunks=self.config.rag_max_chunks,
                    max_chars=self.config.rag_max_context_chars,
                )
                logger.info(
                    f"Retrieved {len(response.chunks)} chunks from {candidate}, "
                    f"using {len(selected)} for category {category_scope}"
                )
                return RetrievedContext(chunks=selected, text=format_context(selected), source_url=candidate)

        logger.warning(f"All {len(self.candidates)} retrieval candidates failed; continuing without context")
        return RetrievedContext()

    async def _query(self, client: httpx.AsyncClient, candidate: str, payload: dict) -> RetrievalResponse | None:
        """Return the parsed answer of one candidate, or None to move on."""
        url = f"{candidate}{self.query_path}"
        try:
            resp = await client.post(url, json=payload)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(f"Retrieval candidate {url} unreachable ({type(e).__name__}): {str(e)}")
            return None

        if not resp.is_success:
            logger.warning(f"Retrieval candidate {url} answered {resp.status_code}")
            return None

        try:
            return RetrievalResponse.model_validate(resp.json())
        except ValueError as e:
            logger.warning(f"Retrieval candidate {url} returned a malformed body: {str(e)[:200]}")
            return None
