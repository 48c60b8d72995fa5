"""Root logger configuration for the gateway process."""

import json
import logging
from datetime import UTC, datetime

from app.core.config import LogFormatEnum, Settings, settings

SIMPLE_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class JSONFormatter(logging.Formatter):
    """Formatter that outputs one JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        for extra in ("conversation_id", "provider", "model"):
            if hasattr(record, extra):
                log_obj[extra] = str(getattr(record, extra))

        return json.dumps(log_obj)


def configure_logging(config: Settings = settings) -> logging.Handler:
    """Install a single root handler according to ``log_level``/``log_format``."""
    handler = logging.StreamHandler()
    if config.log_format == LogFormatEnum.json:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(SIMPLE_FORMAT))

    root_logger = logging.getLogger()
    root_logger.setLevel(config.log_level.value)

    # Replace handlers installed by earlier calls or by uvicorn defaults
    if root_logger.handlers:
        root_logger.handlers = []
    root_logger.addHandler(handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    return handler
