"""Structured logging for the ingest worker and retrieval-control layer."""

from __future__ import annotations

import logging
import os
import re
import sys
from typing import Any

import orjson

_DEFAULT_LEVEL = os.environ.get("POCKET_LOG_LEVEL", "INFO")
_CONTEXT_PREFIX = "ctx_"

# OpenRouter keys look like sk-or-v1-<hex>; any sk-... token is masked.
_API_KEY_RE = re.compile(r"\bsk-[A-Za-z0-9_-]{6,}")


def redact(text: str) -> str:
    """Mask API keys that ended up in a log message or traceback."""
    return _API_KEY_RE.sub("sk-***", text)


class JsonFormatter(logging.Formatter):
    """One JSON object per line; ``ctx_*`` extras become top-level fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": redact(record.getMessage()),
        }
        payload.update(
            (key[len(_CONTEXT_PREFIX) :], value)
            for key, value in record.__dict__.items()
            if key.startswith(_CONTEXT_PREFIX)
        )
        if record.exc_info:
            payload["exc_info"] = redact(self.formatException(record.exc_info))
        return orjson.dumps(payload, default=str).decode("utf-8")


class RedactingFormatter(logging.Formatter):
    """Plain-text formatter for local runs that still masks API keys."""

    def format(self, record: logging.LogRecord) -> str:
        return redact(super().format(record))


def configure_logging(level: str | int = _DEFAULT_LEVEL, use_json: bool = True) -> None:
    """Install a single stdout handler on the root logger."""
    logging.captureWarnings(True)
    root = logging.getLogger()
    root.setLevel(level)
    handler = logging.StreamHandler(sys.stdout)
    if use_json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(RedactingFormatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.handlers = [handler]
    # httpx logs every request line at INFO, which drowns out job progress.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str = "pocket_rag") -> logging.Logger:
    """Return a logger, configuring the root logger on first use."""
    if not logging.getLogger().handlers:
        configure_logging()
    return logging.getLogger(name)


def log_context(**fields: Any) -> dict[str, Any]:
    """Build an ``extra`` mapping (source_id, job_type, ...) for :class:`JsonFormatter`."""
    return {f"{_CONTEXT_PREFIX}{key}": value for key, value in fields.items()}


__all__ = ["JsonFormatter", "RedactingFormatter", "configure_logging", "get_logger", "log_context", "redact"]
