"""Retry-once-with-fallback policy for provider calls."""

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception, stop_after_attempt

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_with_model_fallback(
    operation: Callable[[str], Awaitable[T]],
    model: str,
    classifier: Callable[[BaseException], bool],
    fallback_provider: Callable[[], str],
) -> tuple[T, str]:
    """Run ``operation(model)``, retrying once with the fallback model.

    The retry happens only when ``classifier`` accepts the failure and the
    fallback differs from the model that just failed. Returns the result and
    the model that produced it.
    """
    tried = [model]

    def should_retry(exc: BaseException) -> bool:
        if not classifier(exc):
            return False
        fallback = fallback_provider()
        if not fallback or fallback in tried:
            return False
        tried.append(fallback)
        return True

    async for attempt in AsyncRetrying(
        retry=retry_if_exception(should_retry),
        stop=stop_after_attempt(2),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    ):
        with attempt:
            result = await operation(tried[-1])
    return result, tried[-1]
