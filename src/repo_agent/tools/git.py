"""Read-only git inspection tools with fixed argument vectors."""

from __future__ import annotations

from typing import Final

from repo_agent.constants import GIT_DIFF_MAX_CHARS
from repo_agent.sandbox.process import SpawnResult, spawn_bounded, truncate
from repo_agent.tools.base import (
    GitDiffArgs,
    GitLogArgs,
    GitStatusArgs,
    JSONValue,
    RepoContext,
    ToolResult,
)

_LOG_FORMAT: Final[str] = "--pretty=format:%h%x09%ad%x09%s"


def git_status(context: RepoContext, args: GitStatusArgs) -> ToolResult:
    del args
    result = _git(context, ["status", "--porcelain=v1", "-b"])
    return {
        "stdout": result.stdout,
        "stderr": result.stderr,
        "code": result.exit_code,
    }


def git_diff(context: RepoContext, args: GitDiffArgs) -> ToolResult:
    command = ["diff", "--staged"] if args.staged else ["diff"]
    result = _git(context, command)
    diff, truncated = truncate(result.stdout, GIT_DIFF_MAX_CHARS)
    return {
        "diff": diff,
        "staged": args.staged,
        "stderr": result.stderr,
        "code": result.exit_code,
        "truncated": truncated,
    }


def git_log_short(context: RepoContext, args: GitLogArgs) -> ToolResult:
    result = _git(
        context,
        ["log", f"-n{args.max_commits}", _LOG_FORMAT, "--date=iso"],
    )
    commits = parse_log_lines(result.stdout)
    return {
        "commits": commits,
        "count": len(commits),
        "requested": args.max_commits,
        "stderr": result.stderr,
        "code": result.exit_code,
        "truncated": len(commits) >= args.max_commits,
    }


def parse_log_lines(stdout: str) -> list[JSONValue]:
    """Parse ``hash<TAB>date<TAB>subject`` lines; malformed lines are skipped."""

    commits: list[JSONValue] = []
    for line in stdout.splitlines():
        parts = line.split("\t", 2)
        if len(parts) != 3:
            continue
        commit_hash, date, subject = parts
        commits.append({"hash": commit_hash, "date": date, "subject": subject})
    return commits


def _git(context: RepoContext, args: list[str]) -> SpawnResult:
    return spawn_bounded(
        "git",
        args,
        cwd=context.root,
        timeout_seconds=context.git_timeout_seconds,
    )


__all__ = ["git_diff", "git_log_short", "git_status", "parse_log_lines"]
