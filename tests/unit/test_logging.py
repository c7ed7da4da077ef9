"""Unit tests for structured logging and redaction."""

from __future__ import annotations

import json
import logging
import sys

from agent_workflow_engine.logging import REDACTED, JsonFormatter, redact, register_secret


def test_redact_replaces_every_occurrence() -> None:
    assert redact("token abc and abc again", ["abc"]) == f"token {REDACTED} and {REDACTED} again"


def test_redact_is_literal() -> None:
    secret = "a.b*c+(d)[e]$^|\\"

    assert redact(f"x{secret}y axbbc", [secret]) == f"x{REDACTED}y axbbc"


def test_redact_prefers_longest_secret_and_ignores_empty() -> None:
    assert redact("ghp_long_secret", ["ghp", "ghp_long_secret", "", None]) == REDACTED


def test_json_formatter_includes_extra_fields() -> None:
    record = logging.LogRecord(
        name="agent_workflow_engine.test",
        level=logging.WARNING,
        pathname=__file__,
        lineno=1,
        msg="Reporter disabled",
        args=(),
        exc_info=None,
    )
    record.reporter = "github-pr-comment"

    payload = json.loads(JsonFormatter().format(record))

    assert payload["level"] == "WARNING"
    assert payload["logger"] == "agent_workflow_engine.test"
    assert payload["message"] == "Reporter disabled"
    assert payload["extra"] == {"reporter": "github-pr-comment"}


def _record(msg: str, **extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="agent_workflow_engine.test",
        level=logging.WARNING,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_masks_configured_secrets() -> None:
    secret = 'ghp_"quoted"\\path'
    record = _record(
        f"push rejected for {secret}",
        error=f"401: {secret}",
        details={"headers": [f"Bearer {secret}"]},
    )

    line = JsonFormatter([secret]).format(record)
    payload = json.loads(line)

    assert secret not in line
    assert json.dumps(secret)[1:-1] not in line
    assert payload["message"] == f"push rejected for {REDACTED}"
    assert payload["extra"]["error"] == f"401: {REDACTED}"
    assert payload["extra"]["details"] == {"headers": [f"Bearer {REDACTED}"]}


def test_json_formatter_masks_exception_text() -> None:
    secret = "tok-exception-1234"
    try:
        raise RuntimeError(f"failed with {secret}")
    except RuntimeError:
        record = _record("boom")
        record.exc_info = sys.exc_info()

    payload = json.loads(JsonFormatter([secret]).format(record))

    assert secret not in payload["exception"]
    assert REDACTED in payload["exception"]


def test_registered_secrets_apply_to_every_formatter() -> None:
    secret = "tok-registered-5678"
    register_secret(secret)
    register_secret("")

    payload = json.loads(JsonFormatter().format(_record(f"using {secret}")))

    assert payload["message"] == f"using {REDACTED}"
