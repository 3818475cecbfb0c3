"""
Logging configuration.

Two output modes selected by LOG_FORMAT:
- text: human-readable lines for development
- json: one JSON object per line for log shippers
"""

import json
import logging
import sys
from typing import Any, Dict

from .config import get_settings


TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_record: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "module": record.module,
            "line": record.lineno,
        }

        if hasattr(record, "registry"):
            log_record["registry"] = record.registry
        if hasattr(record, "run_id"):
            log_record["run_id"] = record.run_id

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_record)


def setup_logging() -> None:
    """Installs a single stdout handler on the root logger; safe to call twice."""
    settings = get_settings()
    root_logger = logging.getLogger()

    if root_logger.handlers:
        return

    root_logger.setLevel(settings.log_level.upper())

    handler = logging.StreamHandler(sys.stdout)
    if settings.log_format.lower() == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    root_logger.addHandler(handler)

    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
