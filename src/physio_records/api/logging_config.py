"""Structured logging configuration for the records API.

This module provides structured logging with JSON formatting for production
environments and human-readable formatting for development. Every record is
stamped with the correlation id of the request that produced it.

Security Impact:
    - Log statements carry identifiers only, never patient field contents
    - Bearer tokens are SecretStr values and never reach a log record
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> Optional[str]:
    """Correlation id of the request being handled, if any."""
    return correlation_id_var.get()


class CorrelationIdFilter(logging.Filter):
    """Attach the current correlation id to every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get() or "-"
        return True


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, keyed for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        """Render ``record`` as a JSON line.

        Parameters:
            record: Log record to format

        Returns:
            JSON string with the source location, the correlation id and
            any ``extra_fields`` attached via ``extra=``
        """
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: Dict[str, Any] = {
            "ts": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "correlation_id": getattr(record, "correlation_id", None),
            "msg": record.getMessage(),
            "source": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        payload.update(getattr(record, "extra_fields", None) or {})
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(use_json: bool = False, log_level: str = "INFO"):
    """Install a single stdout handler on the root logger.

    Parameters:
        use_json: Emit StructuredFormatter JSON lines instead of plain text
        log_level: Root level name; unknown names fall back to INFO
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(CorrelationIdFilter())

    if use_json:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    # Quiet request-level chatter from the server and the HTTP client
    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("hpack").setLevel(logging.WARNING)
