"""JSON log output for the accrual service.

Loguru is the only sink. Records from uvicorn, SQLAlchemy and asyncio are
forwarded to it so a pass and the driver errors it triggers land in one stream.
"""

from __future__ import annotations

import json
import logging
import sys
from typing import Any

from loguru import logger
from opentelemetry import trace

_QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine")


class InterceptHandler(logging.Handler):
    """Forward stdlib records to Loguru under their original logger name."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        logger.bind(logger=record.name).opt(exception=record.exc_info).log(level, record.getMessage())


def _serialize_log(message: "logger.Message", metadata: dict[str, Any]) -> None:
    record = message.record
    payload: dict[str, Any] = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name.lower(),
        "message": record["message"],
        "logger": record["name"],
        **metadata,
    }

    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        payload["trace_id"] = f"{span_context.trace_id:032x}"
        payload["span_id"] = f"{span_context.span_id:016x}"

    payload.update(record["extra"])

    if record["exception"] is not None:
        exc_type, exc_value, _ = record["exception"]
        payload["exception"] = {
            "type": exc_type.__name__ if exc_type else None,
            "message": str(exc_value) if exc_value else None,
        }

    sys.stdout.write(json.dumps(payload, default=str) + "\n")


def configure_logging(*, service_name: str, environment: str, version: str, level: str = "INFO") -> None:
    """Send Loguru and stdlib logging to stdout as one JSON object per line."""

    logger.remove()
    metadata = {"service": service_name, "environment": environment, "version": version}
    logger.add(lambda message: _serialize_log(message, metadata), level=level, backtrace=False, diagnose=False)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


__all__ = ["InterceptHandler", "configure_logging"]
