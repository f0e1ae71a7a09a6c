"""
repo-agent — file listing and file reading tools

File: src/repo_agent/tools/fs.py
Last updated: 2026-10-19

Purpose
- ``list_files``: walk the repository honoring ``.gitignore`` rules and a fixed set of
  dependency/build directory exclusions.
- ``read_file``: read one confined file, classifying binary content and bounding text size.

Functional requirements
- Hidden files are listed unless ignored.
- Binary files return metadata only; invalid UTF-8 is a hard error, not a truncation.
"""

from __future__ import annotations

import fnmatch
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from repo_agent.constants import LIST_FILES_EXCLUDED_DIRS
from repo_agent.sandbox.paths import resolve
from repo_agent.tools.base import (
    ListFilesArgs,
    ReadFileArgs,
    RepoContext,
    ToolError,
    ToolResult,
)

_GITIGNORE_FILENAME: Final[str] = ".gitignore"

# Printable bytes plus tab, newline, and carriage return; anything else marks a file binary.
_TEXT_BYTES: Final[bytes] = bytes(sorted({9, 10, 13} | set(range(32, 256))))


@dataclass(frozen=True, slots=True)
class IgnoreRule:
    """One parsed ``.gitignore`` line scoped to the directory that declared it."""

    base: str
    pattern: str
    negated: bool
    directory_only: bool
    anchored: bool

    def matches(self, rel_path: str, *, is_dir: bool) -> bool:
        if self.directory_only and not is_dir:
            return False
        if self.base:
            prefix = self.base + "/"
            if not rel_path.startswith(prefix):
                return False
            local = rel_path[len(prefix) :]
        else:
            local = rel_path
        if self.anchored:
            return fnmatch.fnmatchcase(local, self.pattern)
        name = local.rsplit("/", 1)[-1]
        return fnmatch.fnmatchcase(name, self.pattern)


def parse_gitignore(text: str, *, base: str = "") -> tuple[IgnoreRule, ...]:
    """Parse ``.gitignore`` content into rules scoped to ``base`` (repo-relative, posix)."""

    rules: list[IgnoreRule] = []
    for raw_line in text.splitlines():
        line = raw_line.rstrip()
        if not line or line.startswith("#"):
            continue
        negated = line.startswith("!")
        if negated:
            line = line[1:]
        if line.startswith("\\"):
            line = line[1:]
        directory_only = line.endswith("/")
        line = line.rstrip("/")
        if not line:
            continue
        anchored = "/" in line
        line = line.lstrip("/")
        if line.startswith("**/"):
            line = line[3:]
            anchored = "/" in line
        rules.append(
            IgnoreRule(
                base=base,
                pattern=line,
                negated=negated,
                directory_only=directory_only,
                anchored=anchored,
            )
        )
    return tuple(rules)


def is_ignored(rules: tuple[IgnoreRule, ...], rel_path: str, *, is_dir: bool) -> bool:
    """Apply rules in declaration order; the last matching rule wins."""

    ignored = False
    for rule in rules:
        if rule.matches(rel_path, is_dir=is_dir):
            ignored = not rule.negated
    return ignored


def list_files(context: RepoContext, args: ListFilesArgs) -> ToolResult:
    root = context.root
    files: list[str] = []
    inherited: dict[str, tuple[IgnoreRule, ...]] = {"": ()}

    for dirpath, dirnames, filenames in os.walk(root, topdown=True):
        rel_dir = _relative_posix(Path(dirpath), root)
        rules = inherited.get(rel_dir, ())
        rules = rules + _load_gitignore(Path(dirpath), rel_dir)

        kept_dirs: list[str] = []
        for dirname in sorted(dirnames):
            if dirname in LIST_FILES_EXCLUDED_DIRS:
                continue
            child_rel = _join(rel_dir, dirname)
            if is_ignored(rules, child_rel, is_dir=True):
                continue
            kept_dirs.append(dirname)
            inherited[child_rel] = rules
        dirnames[:] = kept_dirs

        for filename in sorted(filenames):
            file_rel = _join(rel_dir, filename)
            if is_ignored(rules, file_rel, is_dir=False):
                continue
            if args.globs and not _matches_any_glob(file_rel, args.globs):
                continue
            files.append(file_rel)
            if len(files) >= args.max_files:
                break
        if len(files) >= args.max_files:
            break

    return {
        "files": list(files),
        "count": len(files),
        "truncated": len(files) >= args.max_files,
    }


def read_file(context: RepoContext, args: ReadFileArgs) -> ToolResult:
    confined = resolve(context.root, args.path)
    target = confined.absolute
    if not target.is_file():
        raise ToolError(f"Not a file: {args.path}")
    try:
        data = target.read_bytes()
    except OSError as exc:
        raise ToolError(f"Failed to read {args.path}: {exc}") from exc

    if is_binary(data):
        return {
            "path": args.path,
            "binary": True,
            "bytes": len(data),
            "truncated": False,
        }

    try:
        content = data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ToolError("File is not valid UTF-8") from exc

    truncated = len(data) > args.max_bytes
    if truncated:
        # Cut on the byte budget; drop a trailing partial code point.
        content = data[: args.max_bytes].decode("utf-8", errors="ignore")

    return {
        "path": args.path,
        "content": content,
        "bytes": len(data),
        "truncated": truncated,
    }


def is_binary(data: bytes) -> bool:
    return bool(data.translate(None, _TEXT_BYTES))


def _load_gitignore(directory: Path, rel_dir: str) -> tuple[IgnoreRule, ...]:
    candidate = directory / _GITIGNORE_FILENAME
    if not candidate.is_file():
        return ()
    try:
        text = candidate.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return ()
    return parse_gitignore(text, base=rel_dir)


def _matches_any_glob(rel_path: str, globs: tuple[str, ...]) -> bool:
    name = rel_path.rsplit("/", 1)[-1]
    return any(
        fnmatch.fnmatchcase(rel_path, pattern) or fnmatch.fnmatchcase(name, pattern)
        for pattern in globs
    )


def _relative_posix(path: Path, root: Path) -> str:
    rel = path.relative_to(root).as_posix()
    return "" if rel == "." else rel


def _join(rel_dir: str, name: str) -> str:
    return f"{rel_dir}/{name}" if rel_dir else name


__all__ = [
    "IgnoreRule",
    "is_binary",
    "is_ignored",
    "list_files",
    "parse_gitignore",
    "read_file",
]
