"""Structured logging configuration.

Uses standard library logging with a JSON formatter.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

REDACTED = "***"

_RESERVED_LOG_RECORD_ATTRS: set[str] = {
    "args",
    "asctime",
    "created",
    "exc_info",
    "exc_text",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "message",
    "msg",
    "name",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "stack_info",
    "taskName",
    "thread",
    "threadName",
}


_registered_secrets: set[str] = set()


def register_secret(value: str | None) -> None:
    """Mask `value` in every line written by `JsonFormatter` from now on."""

    if value:
        _registered_secrets.add(value)


def _redact_value(value: Any, secrets: list[str]) -> Any:
    if isinstance(value, str):
        return redact(value, secrets)
    if isinstance(value, dict):
        return {str(k): _redact_value(v, secrets) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_redact_value(v, secrets) for v in value]
    if value is None or isinstance(value, (bool, int, float)):
        return value
    return redact(str(value), secrets)


class JsonFormatter(logging.Formatter):
    """A minimal JSON formatter for logging records.

    Strings in the message, extra fields and exception text are masked for
    every secret given here or passed to `register_secret`.
    """

    def __init__(self, secrets: Iterable[str | None] = ()) -> None:
        super().__init__()
        self._secrets = {s for s in secrets if s}

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (record)
        secrets = list(self._secrets | _registered_secrets)
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": redact(record.getMessage(), secrets),
        }

        extra = {
            key: _redact_value(value, secrets)
            for key, value in record.__dict__.items()
            if key not in _RESERVED_LOG_RECORD_ATTRS and not key.startswith("_")
        }
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = redact(self.formatException(record.exc_info), secrets)

        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str, *, secrets: Iterable[str | None] = ()) -> None:
    """Configure root logging with structured JSON output."""

    root = logging.getLogger()

    # Remove any existing handlers to avoid duplicate logs when re-configuring.
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonFormatter(secrets))

    root.addHandler(handler)
    root.setLevel(level.upper())

    # Keep third-party loggers reasonably quiet unless explicitly configured.
    logging.getLogger("github").setLevel(max(root.level, logging.INFO))
    logging.getLogger("urllib3").setLevel(max(root.level, logging.WARNING))


def redact(text: str, secrets: Iterable[str | None]) -> str:
    """Replace every occurrence of each secret in `text` with a fixed marker.

    Matching is literal (no regex), so secrets containing pattern
    metacharacters are handled like any other string. Longer secrets are
    replaced first so a secret that contains another one is fully masked.
    """

    for secret in sorted((s for s in secrets if s), key=len, reverse=True):
        text = text.replace(secret, REDACTED)
    return text
