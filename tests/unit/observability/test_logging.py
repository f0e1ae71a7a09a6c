"""
repo-agent — unit tests for structured logging

File: tests/unit/observability/test_logging.py
Last updated: 2026-10-19

Purpose
- Validate JSON log lines, secret redaction, and run-context propagation.

Functional requirements
- Offline operation; every test restores the logging configuration it changes.
"""

from __future__ import annotations

import io
import json
import logging
from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog

from repo_agent.observability.logging import (
    REDACTED_VALUE,
    ROOT_LOGGER_NAME,
    LoggingConfig,
    bind_run_context,
    configure_logging,
    redact_event,
    redact_text,
)


@pytest.fixture()
def captured() -> Iterator[io.StringIO]:
    stream = io.StringIO()
    configure_logging(LoggingConfig(level="DEBUG", json_logs=True, stream=stream))
    yield stream
    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    structlog.reset_defaults()


def _lines(stream: io.StringIO) -> list[dict[str, object]]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


def test_events_are_json_lines(captured: io.StringIO) -> None:
    structlog.get_logger("repo_agent.test").info("plan_started", model="m", iteration=2)

    (line,) = _lines(captured)
    assert line["event"] == "plan_started"
    assert line["level"] == "info"
    assert line["logger"] == "repo_agent.test"
    assert line["model"] == "m"
    assert line["iteration"] == 2
    assert "timestamp" in line


def test_secrets_never_reach_the_sink(captured: io.StringIO) -> None:
    structlog.get_logger("repo_agent.test").warning(
        "provider_call",
        api_key="sk-abcdefghijklmnop",
        headers={"Authorization": "Bearer abc.def", "Accept": "application/json"},
        detail="request failed with token=hunter2 for sk-zyxwvutsrqponmlk",
    )

    (line,) = _lines(captured)
    assert line["api_key"] == REDACTED_VALUE
    assert line["headers"] == {"Authorization": REDACTED_VALUE, "Accept": "application/json"}
    assert "hunter2" not in str(line["detail"])
    assert "sk-zyxwvutsrqponmlk" not in captured.getvalue()


def test_stdlib_records_are_redacted_too(captured: io.StringIO) -> None:
    logging.getLogger("repo_agent.stdlib").warning("retrying with password=swordfish")

    (line,) = _lines(captured)
    assert line["event"] == f"retrying with password={REDACTED_VALUE}"


def test_run_context_is_bound_only_inside_block(captured: io.StringIO) -> None:
    logger = structlog.get_logger("repo_agent.test")

    with bind_run_context(run_id="run-1", task_id="task-1", workflow=None):
        logger.info("inside")
    logger.info("outside")

    inside, outside = _lines(captured)
    assert inside["run_id"] == "run-1"
    assert inside["task_id"] == "task-1"
    assert "workflow" not in inside
    assert "run_id" not in outside


def test_level_filtering() -> None:
    stream = io.StringIO()
    configure_logging(LoggingConfig(level="WARNING", stream=stream))
    try:
        logger = structlog.get_logger("repo_agent.test")
        logger.info("hidden")
        logger.warning("shown")
    finally:
        root = logging.getLogger(ROOT_LOGGER_NAME)
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()
        structlog.reset_defaults()

    assert [line["event"] for line in _lines(stream)] == ["shown"]


def test_reconfigure_replaces_handlers(tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "agent.log"
    configure_logging(LoggingConfig(stream=io.StringIO()))
    logger = configure_logging(LoggingConfig(stream=io.StringIO(), log_file=log_file))
    try:
        assert len(logger.handlers) == 2
        structlog.get_logger("repo_agent.test").info("to_file")
        for handler in logger.handlers:
            handler.flush()
        assert json.loads(log_file.read_text(encoding="utf-8"))["event"] == "to_file"
    finally:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        structlog.reset_defaults()


def test_unknown_level_is_rejected() -> None:
    with pytest.raises(ValueError, match="unknown log level"):
        configure_logging(LoggingConfig(level="CHATTY"))


@pytest.mark.parametrize(
    "text,expected",
    [
        ("Authorization: Bearer abc123", f"Authorization:{REDACTED_VALUE}"),
        ("key is sk-0123456789abcdef", f"key is {REDACTED_VALUE}"),
        ("API-KEY = value1 next", f"API-KEY={REDACTED_VALUE} next"),
        ("nothing to hide", "nothing to hide"),
    ],
)
def test_redact_text(text: str, expected: str) -> None:
    assert redact_text(text) == expected


def test_redact_event_leaves_reserved_keys_alone() -> None:
    event = {"event": "done", "level": "info", "max_items": 3, "secret_ref": "x"}

    assert redact_event(None, "info", event) == {
        "event": "done",
        "level": "info",
        "max_items": 3,
        "secret_ref": REDACTED_VALUE,
    }
