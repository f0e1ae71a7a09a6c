"""Bounded subprocess execution and output truncation helpers."""

from __future__ import annotations

import shutil
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from repo_agent.sandbox.paths import SandboxError

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

logger = structlog.get_logger(__name__)


class CommandFailedError(SandboxError):
    """Raised when a process cannot be spawned or its OS call fails."""


class CommandTimeoutError(SandboxError):
    """Raised when a process exceeds its time bound and was killed."""

    def __init__(self, message: str, *, timeout_seconds: float) -> None:
        super().__init__(message)
        self.timeout_seconds = timeout_seconds


@dataclass(frozen=True, slots=True)
class SpawnResult:
    """Captured output of a finished process."""

    stdout: str
    stderr: str
    exit_code: int
    duration_ms: int

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


def spawn_bounded(
    program: str,
    args: Sequence[str],
    *,
    cwd: Path | str,
    timeout_seconds: float,
    env: Mapping[str, str] | None = None,
) -> SpawnResult:
    """Run ``program`` with ``args`` as an argv vector, killing it after ``timeout_seconds``."""

    command = _normalize_command([program, *args])
    if timeout_seconds <= 0:
        raise ValueError("timeout_seconds must be > 0")
    workdir = Path(cwd)
    if not workdir.is_dir():
        raise CommandFailedError(f"Working directory does not exist: {workdir!s}")

    started = time.perf_counter()
    try:
        completed = subprocess.run(
            list(command),
            cwd=workdir,
            check=False,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout_seconds,
            env=dict(env) if env is not None else None,
        )
    except subprocess.TimeoutExpired as exc:
        logger.warning(
            "process_timeout", program=command[0], timeout_seconds=timeout_seconds, cwd=str(workdir)
        )
        raise CommandTimeoutError(
            f"Command timed out after {timeout_seconds:g}s: {' '.join(command)}",
            timeout_seconds=timeout_seconds,
        ) from exc
    except OSError as exc:
        raise CommandFailedError(f"Failed to execute {command[0]}: {exc}") from exc

    duration_ms = int((time.perf_counter() - started) * 1000)
    exit_code = completed.returncode if completed.returncode is not None else -1
    logger.debug(
        "process_finished", program=command[0], exit_code=exit_code, duration_ms=duration_ms
    )
    return SpawnResult(
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
        exit_code=exit_code,
        duration_ms=duration_ms,
    )


def truncate(text: str, max_units: int) -> tuple[str, bool]:
    """Cut ``text`` to at most ``max_units`` characters and report whether it was cut."""

    if max_units < 0:
        raise ValueError("max_units must be >= 0")
    if len(text) <= max_units:
        return text, False
    return text[:max_units], True


def has_ripgrep() -> bool:
    return shutil.which("rg") is not None


def _normalize_command(command: Sequence[str]) -> tuple[str, ...]:
    if not isinstance(command, (list, tuple)):
        raise ValueError("command must be a sequence of strings")
    program = command[0].strip() if command else ""
    if not program:
        raise ValueError("command must not be empty")
    return (program, *command[1:])


__all__ = [
    "CommandFailedError",
    "CommandTimeoutError",
    "SpawnResult",
    "has_ripgrep",
    "spawn_bounded",
    "truncate",
]
