"""
repo-agent — tool identifiers, context handle, and argument validation

File: src/repo_agent/tools/base.py
Last updated: 2026-10-19

Purpose
- Closed enumeration of the repository tools offered to the model.
- Resource handle (confined root + run identity + timeouts) passed to every executor.
- Typed argument shapes converted from the permissive JSON payload at the dispatch boundary.

Functional requirements
- Argument validation failures raise ``ToolArgumentError`` with a human-readable message.
- Unknown keys (including the injected ``project_id``) are ignored.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any, Final, Generic, TypeAlias, TypeVar

from repo_agent.constants import (
    COMMAND_TIMEOUT_SECONDS,
    GIT_LOG_DEFAULT_COMMITS,
    GIT_TIMEOUT_SECONDS,
    GREP_MAX_RESULTS,
    LIST_FILES_MAX,
    READ_FILE_MAX_BYTES,
    SEARCH_TIMEOUT_SECONDS,
)
from repo_agent.sandbox.paths import canonical_root

JSONScalar: TypeAlias = str | int | float | bool | None
JSONValue: TypeAlias = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]
ToolResult: TypeAlias = dict[str, JSONValue]

_MAX_INT_ARG: Final[int] = 1_000_000


class ToolName(StrEnum):
    """Every tool the dispatcher can route to."""

    LIST_FILES = "list_files"
    READ_FILE = "read_file"
    GREP = "grep"
    GIT_STATUS = "git_status"
    GIT_DIFF = "git_diff"
    GIT_LOG_SHORT = "git_log_short"
    RUN_COMMAND = "run_command"


class CommandKind(StrEnum):
    TESTS = "tests"
    LINT = "lint"
    BUILD = "build"


class Runner(StrEnum):
    PNPM = "pnpm"
    NPM = "npm"
    YARN = "yarn"
    CARGO = "cargo"
    PYTHON = "python"
    PYTEST = "pytest"


class ToolError(RuntimeError):
    """Tool-level failure surfaced to the model as an error payload."""


class ToolArgumentError(ToolError, ValueError):
    """Raised when model-supplied arguments do not fit the tool's argument shape."""


class UnknownToolError(ToolError, LookupError):
    """Raised when a tool name is not in the registry."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown tool: {name}")
        self.name = name


@dataclass(frozen=True, slots=True)
class RepoContext:
    """Confined repository handle threaded through every executor call."""

    root: Path
    project_id: str
    run_id: str | None = None
    git_timeout_seconds: float = GIT_TIMEOUT_SECONDS
    search_timeout_seconds: float = SEARCH_TIMEOUT_SECONDS
    command_timeout_seconds: float = COMMAND_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        object.__setattr__(self, "root", canonical_root(self.root))
        if not isinstance(self.project_id, str) or not self.project_id.strip():
            raise ValueError("project_id must be a non-empty string")
        for name in ("git_timeout_seconds", "search_timeout_seconds", "command_timeout_seconds"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")

    def for_run(self, run_id: str | None) -> RepoContext:
        return RepoContext(
            root=self.root,
            project_id=self.project_id,
            run_id=run_id,
            git_timeout_seconds=self.git_timeout_seconds,
            search_timeout_seconds=self.search_timeout_seconds,
            command_timeout_seconds=self.command_timeout_seconds,
        )


# ---------------------------------------------------------------------------
# Typed argument shapes
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ListFilesArgs:
    globs: tuple[str, ...] = ()
    max_files: int = LIST_FILES_MAX

    @classmethod
    def from_payload(cls, payload: Mapping[str, object]) -> ListFilesArgs:
        return cls(
            globs=_optional_str_list(payload, "globs"),
            max_files=_optional_int(payload, "max_files", default=LIST_FILES_MAX, minimum=1),
        )


@dataclass(frozen=True, slots=True)
class ReadFileArgs:
    path: str
    max_bytes: int = READ_FILE_MAX_BYTES

    @classmethod
    def from_payload(cls, payload: Mapping[str, object]) -> ReadFileArgs:
        return cls(
            path=_require_str(payload, "path"),
            max_bytes=_optional_int(payload, "max_bytes", default=READ_FILE_MAX_BYTES, minimum=0),
        )


@dataclass(frozen=True, slots=True)
class GrepArgs:
    query: str
    path: str | None = None
    max_results: int = GREP_MAX_RESULTS

    @classmethod
    def from_payload(cls, payload: Mapping[str, object]) -> GrepArgs:
        query = payload.get("query")
        if not isinstance(query, str) or not query:
            raise ToolArgumentError("query is required")
        return cls(
            query=query,
            path=_optional_str(payload, "path"),
            max_results=_optional_int(
                payload, "max_results", default=GREP_MAX_RESULTS, minimum=1
            ),
        )


@dataclass(frozen=True, slots=True)
class GitStatusArgs:
    @classmethod
    def from_payload(cls, payload: Mapping[str, object]) -> GitStatusArgs:
        del payload
        return cls()


@dataclass(frozen=True, slots=True)
class GitDiffArgs:
    staged: bool = False

    @classmethod
    def from_payload(cls, payload: Mapping[str, object]) -> GitDiffArgs:
        return cls(staged=_optional_bool(payload, "staged", default=False))


@dataclass(frozen=True, slots=True)
class GitLogArgs:
    max_commits: int = GIT_LOG_DEFAULT_COMMITS

    @classmethod
    def from_payload(cls, payload: Mapping[str, object]) -> GitLogArgs:
        return cls(
            max_commits=_optional_int(
                payload, "max_commits", default=GIT_LOG_DEFAULT_COMMITS, minimum=1
            )
        )


@dataclass(frozen=True, slots=True)
class RunCommandArgs:
    kind: CommandKind
    runner: Runner | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, object]) -> RunCommandArgs:
        raw_kind = payload.get("kind")
        if not isinstance(raw_kind, str):
            raise ToolArgumentError("kind is required (tests|lint|build)")
        try:
            kind = CommandKind(raw_kind)
        except ValueError as exc:
            raise ToolArgumentError(f"Invalid kind: {raw_kind}") from exc

        raw_runner = payload.get("runner")
        if raw_runner is None:
            return cls(kind=kind)
        if not isinstance(raw_runner, str):
            raise ToolArgumentError("runner must be a string")
        try:
            runner = Runner(raw_runner)
        except ValueError as exc:
            raise ToolArgumentError(f"Unsupported runner: {raw_runner}") from exc
        return cls(kind=kind, runner=runner)


ArgsT = TypeVar("ArgsT")


@dataclass(frozen=True, slots=True)
class ToolSpec(Generic[ArgsT]):
    """One registry entry: schema metadata, argument parser, and executor."""

    name: ToolName
    description: str
    properties: Mapping[str, Any]
    required: tuple[str, ...]
    parse_args: Callable[[Mapping[str, object]], ArgsT]
    execute: Callable[[RepoContext, ArgsT], ToolResult]


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------


def _require_str(payload: Mapping[str, object], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ToolArgumentError(f"{key} is required")
    return value


def _optional_str(payload: Mapping[str, object], key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ToolArgumentError(f"{key} must be a string")
    stripped = value.strip()
    return stripped or None


def _optional_str_list(payload: Mapping[str, object], key: str) -> tuple[str, ...]:
    value = payload.get(key)
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,) if value.strip() else ()
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ToolArgumentError(f"{key} must be a list of strings")
    return tuple(item for item in value if item.strip())


def _optional_int(
    payload: Mapping[str, object],
    key: str,
    *,
    default: int,
    minimum: int,
) -> int:
    value = payload.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        raise ToolArgumentError(f"{key} must be an integer")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int):
        raise ToolArgumentError(f"{key} must be an integer")
    if value < minimum:
        raise ToolArgumentError(f"{key} must be >= {minimum}")
    return min(value, _MAX_INT_ARG)


def _optional_bool(payload: Mapping[str, object], key: str, *, default: bool) -> bool:
    value = payload.get(key)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ToolArgumentError(f"{key} must be a boolean")
    return value


__all__ = [
    "CommandKind",
    "GitDiffArgs",
    "GitLogArgs",
    "GitStatusArgs",
    "GrepArgs",
    "JSONValue",
    "ListFilesArgs",
    "ReadFileArgs",
    "RepoContext",
    "RunCommandArgs",
    "Runner",
    "ToolArgumentError",
    "ToolError",
    "ToolName",
    "ToolResult",
    "ToolSpec",
    "UnknownToolError",
]
