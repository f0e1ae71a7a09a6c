"""Unit tests for typed tool argument conversion."""

from __future__ import annotations

import pytest

from repo_agent.tools.base import (
    CommandKind,
    GitDiffArgs,
    GitLogArgs,
    GrepArgs,
    ListFilesArgs,
    ReadFileArgs,
    RunCommandArgs,
    Runner,
    ToolArgumentError,
)


def test_defaults_apply_and_project_id_is_ignored() -> None:
    assert ListFilesArgs.from_payload({"project_id": "p"}) == ListFilesArgs(
        globs=(), max_files=2000
    )
    assert GitDiffArgs.from_payload({"project_id": "p"}) == GitDiffArgs(staged=False)
    assert GitLogArgs.from_payload({}) == GitLogArgs(max_commits=10)
    assert ReadFileArgs.from_payload({"path": "a.txt"}).max_bytes == 200_000
    assert GrepArgs.from_payload({"query": "x"}).max_results == 200


def test_globs_accept_string_or_list() -> None:
    assert ListFilesArgs.from_payload({"globs": "*.py"}).globs == ("*.py",)
    assert ListFilesArgs.from_payload({"globs": ["*.py", "", "*.md"]}).globs == ("*.py", "*.md")
    with pytest.raises(ToolArgumentError, match="globs must be a list of strings"):
        ListFilesArgs.from_payload({"globs": [1, 2]})


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        ({}, "path is required"),
        ({"path": "   "}, "path is required"),
        ({"path": 5}, "path is required"),
        ({"path": "a", "max_bytes": -1}, "max_bytes must be >= 0"),
        ({"path": "a", "max_bytes": "10"}, "max_bytes must be an integer"),
        ({"path": "a", "max_bytes": True}, "max_bytes must be an integer"),
    ],
)
def test_read_file_argument_errors(payload: dict[str, object], message: str) -> None:
    with pytest.raises(ToolArgumentError, match=message):
        ReadFileArgs.from_payload(payload)


def test_integer_arguments_accept_integral_floats_and_clamp() -> None:
    assert ListFilesArgs.from_payload({"max_files": 5.0}).max_files == 5
    assert ListFilesArgs.from_payload({"max_files": 10**9}).max_files == 1_000_000
    with pytest.raises(ToolArgumentError):
        ListFilesArgs.from_payload({"max_files": 2.5})
    with pytest.raises(ToolArgumentError, match="max_files must be >= 1"):
        ListFilesArgs.from_payload({"max_files": 0})


def test_grep_requires_non_empty_query() -> None:
    with pytest.raises(ToolArgumentError, match="query is required"):
        GrepArgs.from_payload({"query": ""})
    with pytest.raises(ToolArgumentError, match="query is required"):
        GrepArgs.from_payload({})
    assert GrepArgs.from_payload({"query": "x", "path": "  "}).path is None


def test_git_diff_staged_must_be_boolean() -> None:
    assert GitDiffArgs.from_payload({"staged": True}).staged is True
    with pytest.raises(ToolArgumentError, match="staged must be a boolean"):
        GitDiffArgs.from_payload({"staged": "yes"})


def test_run_command_arguments() -> None:
    args = RunCommandArgs.from_payload({"kind": "lint", "runner": "yarn"})

    assert args == RunCommandArgs(kind=CommandKind.LINT, runner=Runner.YARN)
    assert RunCommandArgs.from_payload({"kind": "tests"}).runner is None
    with pytest.raises(ToolArgumentError, match="kind is required"):
        RunCommandArgs.from_payload({})
    with pytest.raises(ToolArgumentError, match="Invalid kind: deploy"):
        RunCommandArgs.from_payload({"kind": "deploy"})
    with pytest.raises(ToolArgumentError, match="Unsupported runner: make"):
        RunCommandArgs.from_payload({"kind": "build", "runner": "make"})
