"""Structured JSON logging for the rewards service.

Every line is one JSON object. The identifiers the ledger and the sync log with
(member, collection, record, external application, job) are promoted to top-level
keys so log queries can filter on them; anything else bound on the logger is
nested under ``extra``.
"""

from __future__ import annotations

import json
import logging
import sys
from typing import Any, Dict, Mapping

from loguru import logger
from opentelemetry import trace

CONTEXT_KEYS = ("member_id", "collection", "record_id", "external_id", "job_id")

# Third-party loggers routed into loguru, with the level each is capped at.
BRIDGED_LOGGERS: Dict[str, int] = {
    "uvicorn": logging.INFO,
    "uvicorn.error": logging.INFO,
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "apscheduler": logging.INFO,
    "apscheduler.executors.default": logging.WARNING,
}


class InterceptHandler(logging.Handler):
    """Forward stdlib log records to loguru, keeping the origin logger name."""

    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover - bridging glue
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        logger.bind(source=record.name).opt(depth=6, exception=record.exc_info).log(level, record.getMessage())


def build_payload(record: Mapping[str, Any], metadata: Mapping[str, str]) -> Dict[str, Any]:
    """Turn a loguru record into the JSON document written for it."""

    extra = dict(record["extra"])
    payload: Dict[str, Any] = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name.lower(),
        "message": record["message"],
        "source": extra.pop("source", record["name"]),
        **metadata,
    }
    for key in CONTEXT_KEYS:
        if key in extra:
            payload[key] = extra.pop(key)

    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        payload["trace_id"] = f"{span_context.trace_id:032x}"
        payload["span_id"] = f"{span_context.span_id:016x}"

    if extra:
        payload["extra"] = extra

    exception = record["exception"]
    if exception is not None and exception.type is not None:
        payload["exception"] = {"type": exception.type.__name__, "message": str(exception.value)}
    return payload


class JsonSink:
    def __init__(self, metadata: Mapping[str, str]) -> None:
        self._metadata = dict(metadata)

    def __call__(self, message: Any) -> None:
        sys.stdout.write(json.dumps(build_payload(message.record, self._metadata), default=str) + "\n")
        sys.stdout.flush()


def configure_logging(*, service_name: str, environment: str, version: str, level: str = "INFO") -> None:
    """Install the JSON sink and route stdlib logging through loguru."""

    logger.remove()
    logger.add(
        JsonSink({"service": service_name, "environment": environment, "version": version}),
        level=level.upper(),
        backtrace=False,
        diagnose=False,
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name, cap in BRIDGED_LOGGERS.items():
        logging.getLogger(name).setLevel(cap)


__all__ = ["BRIDGED_LOGGERS", "CONTEXT_KEYS", "InterceptHandler", "JsonSink", "build_payload", "configure_logging"]
