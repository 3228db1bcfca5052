"""Structured JSON logging for the commerce API.

Loguru is the single sink: stdlib records (uvicorn, SQLAlchemy, the Stripe SDK)
are forwarded into it, and every line carries the active OpenTelemetry trace so
payout and webhook logs can be joined with request spans.
"""

from __future__ import annotations

import json
import logging
from logging import LogRecord
from typing import Any, Dict, Mapping

from loguru import logger
from opentelemetry import trace


# Attributes every stdlib record has; anything else was passed via ``extra=``.
_STANDARD_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

# Bank identifiers never leave the process unmasked.
SENSITIVE_KEYS = frozenset(
    {
        "account_number",
        "bank_account_number",
        "routing_number",
        "bank_routing_number",
    }
)

_QUIET_LOGGERS = ("uvicorn.access", "stripe", "aiosqlite")


def mask_identifier(value: Any, *, visible: int = 4) -> str:
    """Return ``value`` with everything except the trailing characters starred out."""

    text = str(value or "")
    if len(text) <= visible:
        return "*" * len(text)
    return "*" * (len(text) - visible) + text[-visible:]


def scrub_extra(extra: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        key: mask_identifier(value) if key in SENSITIVE_KEYS and value else value
        for key, value in extra.items()
    }


class InterceptHandler(logging.Handler):
    """Forward stdlib log records to Loguru, keeping their ``extra`` fields."""

    def emit(self, record: LogRecord) -> None:  # pragma: no cover - bridging glue
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        try:
            message = record.getMessage()
        except Exception:  # pragma: no cover - malformed format strings from third parties
            message = str(record.msg)

        extra = {key: value for key, value in vars(record).items() if key not in _STANDARD_RECORD_ATTRS}
        bound = logger.bind(**extra) if extra else logger
        bound.opt(depth=6, exception=record.exc_info).log(level, message.replace("{", "{{").replace("}", "}}"))


class JsonLogSink:
    """Loguru sink printing one JSON document per record."""

    def __init__(self, *, service_name: str, environment: str, version: str) -> None:
        self._static = {"service": service_name, "environment": environment, "version": version}

    def build_payload(self, record: Mapping[str, Any]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "timestamp": record["time"].isoformat(),
            "level": record["level"].name.lower(),
            "message": record["message"],
            "logger": record["name"],
            **self._static,
        }

        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            payload["trace_id"] = f"{span_context.trace_id:032x}"
            payload["span_id"] = f"{span_context.span_id:016x}"

        if record["extra"]:
            payload.update(scrub_extra(record["extra"]))
        if record["exception"] is not None:
            payload["exception"] = repr(record["exception"].value)
        return payload

    def __call__(self, message: "logger.Message") -> None:
        print(json.dumps(self.build_payload(message.record), default=str))


def configure_logging(*, service_name: str, environment: str, version: str) -> None:
    """Route Loguru and stdlib logging through the JSON sink."""

    logger.remove()
    logger.add(
        JsonLogSink(service_name=service_name, environment=environment, version=version),
        backtrace=False,
        diagnose=False,
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


__all__ = ["InterceptHandler", "JsonLogSink", "configure_logging", "mask_identifier", "scrub_extra"]
