"""Process startup and shutdown hooks for hosts embedding the gateway."""

import logging

from app.core.config import Settings, settings
from app.core.logging import configure_logging

logger = logging.getLogger(__name__)


async def startup(config: Settings = settings) -> None:
    """Configure logging and, outside production, create the chat tables."""
    configure_logging(config)
    logger.info(f"Starting {config.app_name} v{config.version} ({config.environment.value})")

    # Imported lazily: the engine is built from DATABASE_URL at import time
    from app.database import create_tables

    if config.is_development or config.is_testing:
        await create_tables()
        logger.info("Database tables created/verified")
    else:
        logger.info("Non-development environment: schema is expected to exist")


async def shutdown() -> None:
    """Dispose pooled database connections."""
    from app.database import engine

    await engine.dispose()
    logger.info("Database connections closed")
