"""Stable constants shared across tools, transport, and workflows."""

from __future__ import annotations

from typing import Final

# Schema version for the state DB.
STATE_DB_SCHEMA_VERSION: Final[int] = 2

# Default runtime paths (relative to the working directory unless overridden by config).
DEFAULT_STATE_DB_PATH: Final[str] = "state/repo_agent.sqlite3"
DEFAULT_CONFIG_FILE: Final[str] = "repo_agent.toml"
DEFAULT_API_KEY_ENV: Final[str] = "REPO_AGENT_API_KEY"

# Tool output budgets.
LIST_FILES_MAX: Final[int] = 2_000
READ_FILE_MAX_BYTES: Final[int] = 200_000
GREP_MAX_RESULTS: Final[int] = 200
GREP_LINE_MAX_CHARS: Final[int] = 200
GIT_DIFF_MAX_CHARS: Final[int] = 200_000
GIT_LOG_DEFAULT_COMMITS: Final[int] = 10
COMMAND_OUTPUT_MAX_CHARS: Final[int] = 200_000
AUDIT_RESULT_MAX_CHARS: Final[int] = 200_000

# Process timeouts in seconds.
GIT_TIMEOUT_SECONDS: Final[float] = 10.0
SEARCH_TIMEOUT_SECONDS: Final[float] = 30.0
COMMAND_TIMEOUT_SECONDS: Final[float] = 300.0

# LLM transport.
LLM_REQUEST_TIMEOUT_SECONDS: Final[float] = 120.0
LLM_BACKOFF_INITIAL_SECONDS: Final[float] = 0.5
LLM_BACKOFF_MAX_DELAY_SECONDS: Final[float] = 4.0
LLM_BACKOFF_MAX_ELAPSED_SECONDS: Final[float] = 30.0

# Workflow budgets.
PLAN_MAX_ITERATIONS: Final[int] = 12
CONTEXT_MAX_CHARS: Final[int] = 100_000
PLAN_HISTORY_KEEP_RECENT: Final[int] = 6
VERIFY_PLAN_MAX_CHARS: Final[int] = 5_000
VERIFY_DIFF_MAX_CHARS: Final[int] = 30_000
VERIFY_TESTS_MAX_CHARS: Final[int] = 10_000
VERIFY_LINT_MAX_CHARS: Final[int] = 5_000
VERIFY_BUILD_MAX_CHARS: Final[int] = 5_000
VERIFY_DEFAULT_MAX_TOOL_CALLS: Final[int] = 8

# Directory names never descended into by the file walkers.
LIST_FILES_EXCLUDED_DIRS: Final[frozenset[str]] = frozenset(
    {
        ".git",
        "node_modules",
        "target",
        "dist",
        "build",
        ".next",
        "__pycache__",
        ".venv",
        "venv",
        ".pytest_cache",
        ".mypy_cache",
    }
)
GREP_EXCLUDED_DIRS: Final[frozenset[str]] = frozenset(
    {".git", "node_modules", "target", "dist", "build", "__pycache__", ".venv", "venv"}
)
RIPGREP_EXCLUDED_GLOBS: Final[tuple[str, ...]] = (".git", "node_modules", "target", "dist", "build")

__all__ = [
    "AUDIT_RESULT_MAX_CHARS",
    "COMMAND_OUTPUT_MAX_CHARS",
    "COMMAND_TIMEOUT_SECONDS",
    "CONTEXT_MAX_CHARS",
    "DEFAULT_API_KEY_ENV",
    "DEFAULT_CONFIG_FILE",
    "DEFAULT_STATE_DB_PATH",
    "GIT_DIFF_MAX_CHARS",
    "GIT_LOG_DEFAULT_COMMITS",
    "GIT_TIMEOUT_SECONDS",
    "GREP_EXCLUDED_DIRS",
    "GREP_LINE_MAX_CHARS",
    "GREP_MAX_RESULTS",
    "LIST_FILES_EXCLUDED_DIRS",
    "LIST_FILES_MAX",
    "LLM_BACKOFF_INITIAL_SECONDS",
    "LLM_BACKOFF_MAX_DELAY_SECONDS",
    "LLM_BACKOFF_MAX_ELAPSED_SECONDS",
    "LLM_REQUEST_TIMEOUT_SECONDS",
    "PLAN_HISTORY_KEEP_RECENT",
    "PLAN_MAX_ITERATIONS",
    "READ_FILE_MAX_BYTES",
    "RIPGREP_EXCLUDED_GLOBS",
    "SEARCH_TIMEOUT_SECONDS",
    "STATE_DB_SCHEMA_VERSION",
    "VERIFY_BUILD_MAX_CHARS",
    "VERIFY_DEFAULT_MAX_TOOL_CALLS",
    "VERIFY_DIFF_MAX_CHARS",
    "VERIFY_LINT_MAX_CHARS",
    "VERIFY_PLAN_MAX_CHARS",
    "VERIFY_TESTS_MAX_CHARS",
]
