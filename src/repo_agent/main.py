"""
repo-agent — process entrypoint

File: src/repo_agent/main.py
Last updated: 2026-10-19

Purpose
- Run the CLI and turn whatever it returns or raises into one of five exit codes.

Functional requirements
- Configuration problems exit 2, provider/transport problems exit 3, anything else
  that escapes the CLI exits 4 with a traceback on stderr.
- An error wrapped by another (``raise ... from``) is classified by the first
  recognizable error in its cause chain.
"""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING, Final

from repo_agent.config import ConfigLoadError, SettingsError
from repo_agent.llm import LlmError

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    SUCCESS = 0
    WORKFLOW_FAILED = 1
    CONFIG_ERROR = 2
    PROVIDER_ERROR = 3
    INTERNAL_ERROR = 4


# Checked in order against each link of the cause chain.
_CLASSIFIERS: Final[tuple[tuple[tuple[type[BaseException], ...], ExitCode], ...]] = (
    ((ConfigLoadError, SettingsError), ExitCode.CONFIG_ERROR),
    ((LlmError,), ExitCode.PROVIDER_ERROR),
)


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Console-script and ``python -m repo_agent`` entrypoint."""

    from repo_agent.ui.cli import run_cli

    try:
        outcome: object = run_cli(argv)
    except SystemExit as exc:
        outcome = exc.code
    except Exception as exc:  # noqa: BLE001 - last-resort boundary
        code = classify_failure(exc)
        if code is ExitCode.INTERNAL_ERROR:
            traceback.print_exception(exc, file=sys.stderr)
        else:
            _stderr(str(exc).strip() or type(exc).__name__)
        return int(code)
    return _normalize_exit_code(outcome)


def classify_failure(exc: BaseException) -> ExitCode:
    for link in _cause_chain(exc):
        for types, code in _CLASSIFIERS:
            if isinstance(link, types):
                return code
    return ExitCode.INTERNAL_ERROR


def _normalize_exit_code(outcome: object) -> int:
    if outcome is None:
        return int(ExitCode.SUCCESS)
    if isinstance(outcome, int) and outcome in {member.value for member in ExitCode}:
        return outcome
    if isinstance(outcome, str) and outcome.strip():
        _stderr(outcome.strip())
    return int(ExitCode.INTERNAL_ERROR)


def _cause_chain(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    link: BaseException | None = exc
    while link is not None and id(link) not in seen:
        seen.add(id(link))
        yield link
        if link.__cause__ is not None:
            link = link.__cause__
        elif not link.__suppress_context__:
            link = link.__context__
        else:
            link = None


def _stderr(message: str) -> None:
    print(message.rstrip("\n"), file=sys.stderr)


__all__ = ["ExitCode", "classify_failure", "cli_entrypoint"]
