"""Structured JSON logging on top of Loguru.

Application code logs through ``loguru.logger`` with keyword fields; records
from uvicorn, SQLAlchemy and Celery arrive through :class:`InterceptHandler`.
Every line is one JSON object carrying the service metadata and, inside a
span, the OpenTelemetry trace and span ids.
"""

from __future__ import annotations

import inspect
import json
import logging
import sys
from typing import Any, Dict, TextIO

from loguru import logger
from opentelemetry import trace

# LogRecord attributes that are not user supplied ``extra`` fields.
_STANDARD_RECORD_FIELDS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
}

_NOISY_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "aiosqlite": logging.INFO,
}


class InterceptHandler(logging.Handler):
    """Route stdlib logging (uvicorn, SQLAlchemy, Celery) into Loguru."""

    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover - bridging glue
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip logging's own frames so Loguru reports the real caller.
        frame, depth = inspect.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        extra = {key: value for key, value in vars(record).items() if key not in _STANDARD_RECORD_FIELDS}
        bound = logger.bind(stdlib_logger=record.name, **extra)
        bound.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


class JsonSink:
    """Loguru sink writing one JSON document per record."""

    def __init__(self, metadata: Dict[str, str], stream: TextIO | None = None) -> None:
        self._metadata = metadata
        self._stream = stream

    def __call__(self, message: "logger.Message") -> None:
        stream = self._stream or sys.stdout
        stream.write(json.dumps(self.render(message.record), default=str) + "\n")
        stream.flush()

    def render(self, record: Dict[str, Any]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "timestamp": record["time"].isoformat(),
            "level": record["level"].name.lower(),
            "message": record["message"],
            "logger": record["extra"].get("stdlib_logger", record["name"]),
            **self._metadata,
        }
        payload.update({key: value for key, value in record["extra"].items() if key != "stdlib_logger"})

        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            payload["trace_id"] = format(span_context.trace_id, "032x")
            payload["span_id"] = format(span_context.span_id, "016x")

        if record["exception"] is not None:
            exc = record["exception"]
            payload["exception"] = {"type": getattr(exc.type, "__name__", None), "message": str(exc.value)}
        return payload


def configure_logging(
    *,
    service_name: str,
    environment: str,
    version: str,
    level: str | int = "INFO",
    stream: TextIO | None = None,
) -> None:
    """Replace Loguru's default handler with the JSON sink and capture stdlib logging."""

    logger.remove()
    sink = JsonSink({"service": service_name, "environment": environment, "version": version}, stream)
    logger.add(sink, level=level, backtrace=False, diagnose=False)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name, noisy_level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)


__all__ = ["InterceptHandler", "JsonSink", "configure_logging"]
