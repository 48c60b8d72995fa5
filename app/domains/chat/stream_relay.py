"""Relay of provider stream chunks to a caller with persistence on completion."""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from typing import Any

from app.exceptions.ai import AITimeoutError

logger = logging.getLogger(__name__)


class StreamRelay:
    """Forward chunks from a provider stream and persist the accumulated text.

    Iterating the relay yields every chunk as soon as it arrives. When the
    provider finishes, the full text is persisted once. When the caller stops
    early (``aclose()`` or task cancellation) or the provider fails midway, the
    upstream stream is closed and the partial text is persisted if there is
    any; provider errors are re-raised.

    ``on_close`` callbacks run exactly once, after persistence, whichever way
    the relay ends.
    """

    def __init__(
        self,
        chunks: AsyncIterator[str],
        persist: Callable[[str], Awaitable[Any]],
        first_chunk: str | None = None,
        idle_timeout: float | None = None,
        on_close: Sequence[Callable[[], Any]] = (),
    ):
        self._chunks = chunks
        self._persist = persist
        self._first_chunk = first_chunk
        self.idle_timeout = idle_timeout
        self._on_close = list(on_close)
        self._parts: list[str] = []
        self._iterator: AsyncIterator[str] | None = None
        self._persisted = False
        self._finished = False
        self.completed = False

    @property
    def text(self) -> str:
        return "".join(self._parts)

    @property
    def finished(self) -> bool:
        return self._finished

    def __aiter__(self) -> AsyncIterator[str]:
        if self._iterator is None:
            self._iterator = self._relay()
        return self._iterator

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        """Yield UTF-8 encoded chunks, closing the relay when abandoned."""
        try:
            async for chunk in self:
                yield chunk.encode("utf-8")
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        """Stop relaying; safe to call at any point, including before iteration."""
        if self._iterator is not None:
            await self._iterator.aclose()
        await self._finish(completed=False)

    async def _relay(self) -> AsyncIterator[str]:
        try:
            if self._first_chunk:
                self._parts.append(self._first_chunk)
                yield self._first_chunk

            while True:
                try:
                    async with asyncio.timeout(self.idle_timeout):
                        chunk = await anext(self._chunks)
                except StopAsyncIteration:
                    break
                except TimeoutError:
                    logger.error(f"Provider stream idle for more than {self.idle_timeout}s; aborting")
                    raise AITimeoutError("AI stream stalled") from None

                if not chunk:
                    continue
                self._parts.append(chunk)
                yield chunk
        except BaseException as e:
            if isinstance(e, GeneratorExit | asyncio.CancelledError):
                logger.warning(f"Stream closed by caller after {len(self.text)} characters")
            else:
                logger.error(f"Stream interrupted by provider error: {str(e)}")
            await self._finish(completed=False)
            raise

        await self._finish(completed=True)

    async def _finish(self, completed: bool) -> None:
        if self._finished:
            return
        self._finished = True
        self.completed = completed

        try:
            if not completed:
                await self._close_upstream()
            await self._persist_text(completed)
        finally:
            for callback in self._on_close:
                callback()

    async def _close_upstream(self) -> None:
        aclose = getattr(self._chunks, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception as e:
            logger.warning(f"Error while closing provider stream: {str(e)}")

    async def _persist_text(self, completed: bool) -> None:
        text = self.text
        if self._persisted:
            return
        if not text.strip():
            if completed:
                logger.warning("Provider stream finished without content; nothing persisted")
            return

        self._persisted = True
        if completed:
            await self._persist(text)
            return

        # A failed partial save must not mask the error that ended the stream
        try:
            await self._persist(text)
        except Exception:
            logger.exception("Failed to persist partial stream content")
