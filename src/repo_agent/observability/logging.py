"""
repo-agent — structured logging setup

File: src/repo_agent/observability/logging.py
Last updated: 2026-10-19

Purpose
- Route ``structlog`` events through stdlib ``logging`` handlers as JSON lines (or a
  console rendering for interactive use), with secret redaction applied to every event.

Functional requirements
- Bearer tokens, ``sk-`` style keys, ``api_key=``-style assignments, and values under
  sensitive keys never reach a sink.
- Run-scoped fields bound with ``bind_run_context`` appear on every event in scope.
- Reconfiguring replaces previously installed handlers instead of stacking them.
"""

from __future__ import annotations

import logging
import re
import sys
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

import structlog

REDACTED_VALUE: Final[str] = "***REDACTED***"
ROOT_LOGGER_NAME: Final[str] = "repo_agent"

_SENSITIVE_KEY_TERMS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "passphrase",
    "api_key",
    "apikey",
    "authorization",
    "credential",
    "cookie",
    "private_key",
)

_SENSITIVE_ASSIGNMENT_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(api[_-]?key|token|password|secret|client_secret|authorization)\b"
    r"\s*([:=])\s*((?:bearer\s+)?[^\s,;]+)"
)
_BEARER_TOKEN_PATTERN: Final[re.Pattern[str]] = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")
_OPENAI_KEY_PATTERN: Final[re.Pattern[str]] = re.compile(r"\bsk-[A-Za-z0-9_-]{12,}\b")

# Keys structlog itself manages; never treat them as secrets.
_RESERVED_EVENT_KEYS: Final[frozenset[str]] = frozenset(
    {"event", "level", "timestamp", "logger", "exception", "stack"}
)


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    level: int | str = "INFO"
    json_logs: bool = True
    log_file: Path | str | None = None
    stream: Any = None


def configure_logging(config: LoggingConfig) -> logging.Logger:
    """Install handlers on the package logger and configure ``structlog`` to use them."""

    level = _parse_log_level(config.level)
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_event,
    ]
    renderer: Any = (
        structlog.processors.JSONRenderer(sort_keys=True)
        if config.json_logs
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )

    handlers: list[logging.Handler] = []
    stream = config.stream if config.stream is not None else sys.stderr
    stream_handler = logging.StreamHandler(stream)
    handlers.append(stream_handler)
    if config.log_file is not None:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )
    return logger


@contextmanager
def bind_run_context(**fields: str | None) -> Iterator[None]:
    """Bind non-empty ``fields`` (run_id, task_id, ...) for the duration of the block."""

    present = {key: value for key, value in fields.items() if value}
    with structlog.contextvars.bound_contextvars(**present):
        yield


def redact_event(
    logger: object, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """``structlog`` processor that scrubs secrets from every event field."""

    del logger, method_name
    for key in list(event_dict):
        if key in _RESERVED_EVENT_KEYS:
            if isinstance(event_dict[key], str):
                event_dict[key] = redact_text(event_dict[key])
            continue
        event_dict[key] = _redact_value(event_dict[key], key_context=key)
    return event_dict


def redact_text(text: str) -> str:
    redacted = _SENSITIVE_ASSIGNMENT_PATTERN.sub(
        lambda match: f"{match.group(1)}{match.group(2)}{REDACTED_VALUE}", text
    )
    redacted = _BEARER_TOKEN_PATTERN.sub(f"Bearer {REDACTED_VALUE}", redacted)
    return _OPENAI_KEY_PATTERN.sub(REDACTED_VALUE, redacted)


def _redact_value(value: object, *, key_context: str | None) -> object:
    if key_context is not None and _requires_redaction_for_key(key_context):
        return REDACTED_VALUE
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, key_context=None) for item in value]
    if isinstance(value, dict):
        return {key: _redact_value(item, key_context=str(key)) for key, item in value.items()}
    return value


def _requires_redaction_for_key(key: str) -> bool:
    key_lower = key.lower()
    return any(term in key_lower for term in _SENSITIVE_KEY_TERMS)


def _parse_log_level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    resolved = logging.getLevelName(value.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"unknown log level: {value!r}")
    return resolved


__all__ = [
    "REDACTED_VALUE",
    "ROOT_LOGGER_NAME",
    "LoggingConfig",
    "bind_run_context",
    "configure_logging",
    "redact_event",
    "redact_text",
]
