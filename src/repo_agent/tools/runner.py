"""
repo-agent — allow-listed test/lint/build command runner

File: src/repo_agent/tools/runner.py
Last updated: 2026-10-19

Purpose
- Detect the project's tool chain from marker files and run one allow-listed command.

Functional requirements
- Only argument vectors from the closed (runner, kind) table are ever spawned.
- Unsupported combinations fail before any process is started.
- stdout and stderr are truncated independently against the same budget.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Final

import structlog

from repo_agent.constants import COMMAND_OUTPUT_MAX_CHARS
from repo_agent.sandbox.process import spawn_bounded, truncate
from repo_agent.tools.base import (
    CommandKind,
    RepoContext,
    RunCommandArgs,
    Runner,
    ToolError,
    ToolResult,
)

logger = structlog.get_logger(__name__)

# Checked in order; the first marker present decides the runner.
RUNNER_MARKERS: Final[tuple[tuple[str, Runner], ...]] = (
    ("pnpm-lock.yaml", Runner.PNPM),
    ("yarn.lock", Runner.YARN),
    ("package-lock.json", Runner.NPM),
    ("Cargo.toml", Runner.CARGO),
    ("pyproject.toml", Runner.PYTHON),
    ("requirements.txt", Runner.PYTHON),
)

COMMAND_TABLE: Final[Mapping[tuple[Runner, CommandKind], tuple[str, ...]]] = {
    (Runner.PNPM, CommandKind.TESTS): ("pnpm", "test"),
    (Runner.PNPM, CommandKind.LINT): ("pnpm", "lint"),
    (Runner.PNPM, CommandKind.BUILD): ("pnpm", "build"),
    (Runner.NPM, CommandKind.TESTS): ("npm", "test"),
    (Runner.NPM, CommandKind.LINT): ("npm", "run", "lint"),
    (Runner.NPM, CommandKind.BUILD): ("npm", "run", "build"),
    (Runner.YARN, CommandKind.TESTS): ("yarn", "test"),
    (Runner.YARN, CommandKind.LINT): ("yarn", "lint"),
    (Runner.YARN, CommandKind.BUILD): ("yarn", "build"),
    (Runner.CARGO, CommandKind.TESTS): ("cargo", "test"),
    (Runner.CARGO, CommandKind.LINT): ("cargo", "clippy", "--", "-D", "warnings"),
    (Runner.CARGO, CommandKind.BUILD): ("cargo", "build"),
    (Runner.PYTHON, CommandKind.TESTS): ("pytest",),
    (Runner.PYTHON, CommandKind.LINT): ("ruff", "check", "."),
    (Runner.PYTEST, CommandKind.TESTS): ("pytest",),
}


@dataclass(frozen=True, slots=True)
class CommandSpec:
    runner: Runner
    kind: CommandKind
    argv: tuple[str, ...]


def detect_runner(root: Path) -> Runner:
    for marker, runner in RUNNER_MARKERS:
        if (root / marker).exists():
            return runner
    raise ToolError("Could not detect project type. Specify 'runner' explicitly.")


def resolve_command(runner: Runner, kind: CommandKind) -> CommandSpec:
    if runner is Runner.PYTHON and kind is CommandKind.BUILD:
        raise ToolError("Python doesn't have a build step")
    argv = COMMAND_TABLE.get((runner, kind))
    if argv is None:
        raise ToolError(f"Unsupported runner/kind combination: {runner.value}/{kind.value}")
    return CommandSpec(runner=runner, kind=kind, argv=argv)


def run_command(context: RepoContext, args: RunCommandArgs) -> ToolResult:
    runner = args.runner if args.runner is not None else detect_runner(context.root)
    spec = resolve_command(runner, args.kind)
    logger.info(
        "run_command_started",
        runner=spec.runner.value,
        kind=spec.kind.value,
        argv=list(spec.argv),
        run_id=context.run_id,
    )

    result = spawn_bounded(
        spec.argv[0],
        spec.argv[1:],
        cwd=context.root,
        timeout_seconds=context.command_timeout_seconds,
    )
    stdout, stdout_truncated = truncate(result.stdout, COMMAND_OUTPUT_MAX_CHARS)
    stderr, stderr_truncated = truncate(result.stderr, COMMAND_OUTPUT_MAX_CHARS)
    return {
        "runner": spec.runner.value,
        "command": " ".join(spec.argv),
        "stdout": stdout,
        "stderr": stderr,
        "code": result.exit_code,
        "duration_ms": result.duration_ms,
        "truncated": stdout_truncated or stderr_truncated,
    }


__all__ = [
    "COMMAND_TABLE",
    "RUNNER_MARKERS",
    "CommandSpec",
    "detect_runner",
    "resolve_command",
    "run_command",
]
