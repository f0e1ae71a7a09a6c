"""Logging configuration and run-scoped context binding."""

from repo_agent.observability.logging import (
    LoggingConfig,
    bind_run_context,
    configure_logging,
    redact_event,
    redact_text,
)

__all__ = [
    "LoggingConfig",
    "bind_run_context",
    "configure_logging",
    "redact_event",
    "redact_text",
]
