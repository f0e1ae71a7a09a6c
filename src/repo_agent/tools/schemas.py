"""Tool registry and the OpenAI-style function schemas advertised to the model."""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, Final

from repo_agent.tools.base import (
    CommandKind,
    GitDiffArgs,
    GitLogArgs,
    GitStatusArgs,
    GrepArgs,
    ListFilesArgs,
    ReadFileArgs,
    RunCommandArgs,
    Runner,
    ToolName,
    ToolSpec,
)
from repo_agent.tools.fs import list_files, read_file
from repo_agent.tools.git import git_diff, git_log_short, git_status
from repo_agent.tools.runner import run_command
from repo_agent.tools.search import grep

_PROJECT_ID_PROPERTY: Final[dict[str, str]] = {
    "type": "string",
    "description": "Project ID to operate on",
}

REGISTRY: Final[tuple[ToolSpec[Any], ...]] = (
    ToolSpec(
        name=ToolName.LIST_FILES,
        description="List files in the repository, respecting .gitignore. Returns relative paths.",
        properties={
            "globs": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Optional glob patterns to filter files",
            },
            "max_files": {
                "type": "integer",
                "description": "Maximum files to return (default 2000)",
            },
        },
        required=(),
        parse_args=ListFilesArgs.from_payload,
        execute=list_files,
    ),
    ToolSpec(
        name=ToolName.READ_FILE,
        description=(
            "Read contents of a file within the repository. Large files are truncated."
        ),
        properties={
            "path": {"type": "string", "description": "Relative path to file within repo"},
            "max_bytes": {
                "type": "integer",
                "description": "Max bytes to read (default 200000)",
            },
        },
        required=("path",),
        parse_args=ReadFileArgs.from_payload,
        execute=read_file,
    ),
    ToolSpec(
        name=ToolName.GREP,
        description=(
            "Search for text in repository files (case-insensitive). Uses ripgrep if available."
        ),
        properties={
            "query": {"type": "string", "description": "Search text"},
            "path": {
                "type": "string",
                "description": "Optional subdirectory or file to search within",
            },
            "max_results": {
                "type": "integer",
                "description": "Max matches to return (default 200)",
            },
        },
        required=("query",),
        parse_args=GrepArgs.from_payload,
        execute=grep,
    ),
    ToolSpec(
        name=ToolName.GIT_STATUS,
        description="Get git status of the repository including branch info.",
        properties={},
        required=(),
        parse_args=GitStatusArgs.from_payload,
        execute=git_status,
    ),
    ToolSpec(
        name=ToolName.GIT_DIFF,
        description="Get git diff of unstaged or staged changes.",
        properties={
            "staged": {
                "type": "boolean",
                "description": "Show staged changes instead of unstaged",
            },
        },
        required=(),
        parse_args=GitDiffArgs.from_payload,
        execute=git_diff,
    ),
    ToolSpec(
        name=ToolName.GIT_LOG_SHORT,
        description="Get recent commit history in concise format.",
        properties={
            "max_commits": {
                "type": "integer",
                "description": "Number of commits to retrieve (default 10)",
            },
        },
        required=(),
        parse_args=GitLogArgs.from_payload,
        execute=git_log_short,
    ),
    ToolSpec(
        name=ToolName.RUN_COMMAND,
        description=(
            "Run allowlisted test, lint, or build commands. Auto-detects package manager."
        ),
        properties={
            "kind": {
                "type": "string",
                "enum": [item.value for item in CommandKind],
                "description": "Type of command to run",
            },
            "runner": {
                "type": "string",
                "enum": [item.value for item in Runner],
                "description": "Optional explicit runner (auto-detected if not provided)",
            },
        },
        required=("kind",),
        parse_args=RunCommandArgs.from_payload,
        execute=run_command,
    ),
)

TOOLS_BY_NAME: Final[Mapping[ToolName, ToolSpec[Any]]] = MappingProxyType(
    {spec.name: spec for spec in REGISTRY}
)


def schema_for(spec: ToolSpec[Any]) -> dict[str, object]:
    properties: dict[str, object] = {"project_id": dict(_PROJECT_ID_PROPERTY)}
    properties.update({key: dict(value) for key, value in spec.properties.items()})
    return {
        "type": "function",
        "function": {
            "name": spec.name.value,
            "description": spec.description,
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": ["project_id", *spec.required],
            },
        },
    }


def tool_schemas() -> list[dict[str, object]]:
    """Return schemas for every registered tool, in registry order."""

    return [schema_for(spec) for spec in REGISTRY]


__all__ = ["REGISTRY", "TOOLS_BY_NAME", "schema_for", "tool_schemas"]
