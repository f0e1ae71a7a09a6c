"""Text search tool: ripgrep when available, a pure directory walk otherwise."""

from __future__ import annotations

import os
import re
from collections.abc import Iterator
from pathlib import Path
from typing import Final

import structlog

from repo_agent.constants import GREP_EXCLUDED_DIRS, GREP_LINE_MAX_CHARS, RIPGREP_EXCLUDED_GLOBS
from repo_agent.sandbox.paths import resolve
from repo_agent.sandbox.process import has_ripgrep, spawn_bounded
from repo_agent.tools.base import GrepArgs, JSONValue, RepoContext, ToolError, ToolResult

logger = structlog.get_logger(__name__)

_RG_LINE: Final[re.Pattern[str]] = re.compile(r"^(?P<path>.*?):(?P<line>\d+):(?P<text>.*)$")


def grep(context: RepoContext, args: GrepArgs) -> ToolResult:
    target = "."
    if args.path is not None:
        target = str(resolve(context.root, args.path))

    if has_ripgrep():
        matches = _grep_ripgrep(context, args, target)
    else:
        logger.debug("ripgrep_unavailable", fallback="walk")
        matches = _grep_walk(context, args, target)

    matches = matches[: args.max_results]
    return {
        "matches": list(matches),
        "count": len(matches),
        "truncated": len(matches) >= args.max_results,
    }


def _grep_ripgrep(context: RepoContext, args: GrepArgs, target: str) -> list[JSONValue]:
    rg_args: list[str] = [
        "-n",
        "--with-filename",
        "--no-heading",
        "--color",
        "never",
        "--fixed-strings",
        "--ignore-case",
        "--max-count",
        str(args.max_results),
        "--max-columns",
        str(GREP_LINE_MAX_CHARS),
    ]
    for excluded in RIPGREP_EXCLUDED_GLOBS:
        rg_args.extend(["-g", f"!{excluded}"])
    rg_args.extend(["-e", args.query, "--", target])

    result = spawn_bounded(
        "rg", rg_args, cwd=context.root, timeout_seconds=context.search_timeout_seconds
    )
    # Exit code 1 means "no matches"; 2 is a real error.
    if result.exit_code not in (0, 1) and not result.stdout:
        raise ToolError(f"rg failed: {result.stderr.strip() or result.exit_code}")

    matches: list[JSONValue] = []
    for line in result.stdout.splitlines():
        parsed = _RG_LINE.match(line)
        if parsed is None:
            continue
        path = parsed.group("path")
        if path.startswith("./"):
            path = path[2:]
        matches.append(
            {
                "path": path,
                "line": int(parsed.group("line")),
                "text": parsed.group("text")[:GREP_LINE_MAX_CHARS],
            }
        )
        if len(matches) >= args.max_results:
            break
    return matches


def _grep_walk(context: RepoContext, args: GrepArgs, target: str) -> list[JSONValue]:
    root = context.root
    start = root if target == "." else root / target
    needle = args.query.casefold()
    matches: list[JSONValue] = []

    for path in _iter_files(start):
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            continue
        rel_path = path.relative_to(root).as_posix()
        for line_number, line in enumerate(content.splitlines(), start=1):
            if needle in line.casefold():
                matches.append(
                    {
                        "path": rel_path,
                        "line": line_number,
                        "text": line[:GREP_LINE_MAX_CHARS],
                    }
                )
                if len(matches) >= args.max_results:
                    return matches
    return matches


def _iter_files(start: Path) -> Iterator[Path]:
    if start.is_file():
        yield start
        return
    for dirpath, dirnames, filenames in os.walk(start, topdown=True):
        dirnames[:] = sorted(name for name in dirnames if name not in GREP_EXCLUDED_DIRS)
        base = Path(dirpath)
        for name in sorted(filenames):
            yield base / name


__all__ = ["grep"]
