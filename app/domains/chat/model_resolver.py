"""Model availability negotiation against a provider's model list."""

import logging
import time

from app.core.config import Settings, settings
from app.domains.ai.base import ProviderAdapter
from app.exceptions.ai import AIModelNotFoundError
from app.schemas.ai import ModelResolution

logger = logging.getLogger(__name__)


def model_listed(model: str, available: set[str]) -> bool:
    """A model is listed if some name equals it or contains it."""
    return any(model == name or model in name for name in available)


class ModelAvailabilityResolver:
    """Pick the model a completion should use.

    The requested model is kept when the provider lists it. Otherwise the
    provider's fixed fallback is used if listed, and an error is raised if not.
    An empty list (probe failed) leaves the request unchanged so the completion
    call itself can report a missing model.
    """

    def __init__(self, adapter: ProviderAdapter, config: Settings = settings):
        self.adapter = adapter
        self.cache_ttl = config.model_list_cache_ttl
        self._cached_models: set[str] | None = None
        self._cached_at = 0.0

    async def resolve(self, requested: str | None = None) -> ModelResolution:
        requested = (requested or "").strip() or self.adapter.default_model
        available = await self._available_models()

        if not available:
            logger.info(f"Model list unavailable for {self.adapter.kind.value}; trying {requested} unverified")
            return ModelResolution(requested=requested, model=requested, verified=False)

        if model_listed(requested, available):
            return ModelResolution(requested=requested, model=requested, verified=True)

        fallback = self.adapter.fallback_model
        if model_listed(fallback, available):
            logger.warning(f"Model {requested} not served by {self.adapter.kind.value}; using fallback {fallback}")
            return ModelResolution(requested=requested, model=fallback, substituted=True, verified=True)

        raise AIModelNotFoundError(
            f"Model '{requested}' and fallback '{fallback}' are not available",
            model=requested,
            details={"fallback": fallback, "available": sorted(available)},
        )

    def invalidate(self) -> None:
        """Forget the cached model list so the next resolve probes again."""
        self._cached_models = None
        self._cached_at = 0.0

    async def _available_models(self) -> set[str]:
        now = time.monotonic()
        if self._cached_models and self.cache_ttl and now - self._cached_at < self.cache_ttl:
            return self._cached_models

        models = await self.adapter.list_models()
        # Failed probes are never cached
        if models:
            self._cached_models = models
            self._cached_at = now
        return models
