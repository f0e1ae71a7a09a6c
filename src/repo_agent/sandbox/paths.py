"""
repo-agent — repository path confinement

File: src/repo_agent/sandbox/paths.py
Last updated: 2026-10-19

Purpose
- Resolve model-supplied relative paths against a repository root and refuse anything
  that would land outside of it.

Functional requirements
- Absolute inputs are rejected outright.
- ``..`` components are interpreted lexically and may never pop above the root.
- Existing targets are canonicalized (symlinks followed) before the containment check.
- Missing targets are checked through their nearest existing ancestor.

Non-functional requirements
- Standard library only; no filesystem writes.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Final

_DRIVE_PREFIX: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z]:")


class SandboxError(RuntimeError):
    """Base error for sandbox confinement failures."""


class PathTraversalError(SandboxError):
    """Raised when a path would escape the repository root."""


class InvalidPathError(SandboxError):
    """Raised when the root or a path cannot be canonicalized."""


@dataclass(frozen=True, slots=True)
class SandboxedPath:
    """A path proven, at construction time, to resolve inside ``root``."""

    root: Path
    relative: PurePosixPath
    absolute: Path

    def __str__(self) -> str:
        return self.relative.as_posix()


def canonical_root(root: Path | str) -> Path:
    """Return the canonical form of a repository root or raise ``InvalidPathError``."""

    try:
        resolved = Path(root).expanduser().resolve(strict=True)
    except (OSError, RuntimeError) as exc:
        raise InvalidPathError(f"Cannot canonicalize repository root {str(root)!r}: {exc}") from exc
    if not resolved.is_dir():
        raise InvalidPathError(f"Repository root is not a directory: {resolved!s}")
    return resolved


def resolve(root: Path | str, relative_path: str) -> SandboxedPath:
    """Confine ``relative_path`` to ``root``.

    Raises ``PathTraversalError`` for absolute inputs and for any path whose
    canonical form is not a descendant of the canonical root.
    """

    if not isinstance(relative_path, str):
        raise InvalidPathError("path must be a string")
    if _is_absolute(relative_path):
        raise PathTraversalError(f"Absolute paths are not allowed: {relative_path}")

    base = canonical_root(root)

    parts: list[str] = []
    for component in relative_path.replace("\\", "/").split("/"):
        if component in ("", "."):
            continue
        if component == "..":
            if not parts:
                raise PathTraversalError(f"Path escapes repository root: {relative_path}")
            parts.pop()
            continue
        parts.append(component)

    relative = PurePosixPath(*parts) if parts else PurePosixPath(".")
    candidate = base.joinpath(*parts)

    if os.path.lexists(candidate):
        try:
            canonical = candidate.resolve(strict=True)
        except (OSError, RuntimeError) as exc:
            raise InvalidPathError(f"Cannot canonicalize path {relative_path!r}: {exc}") from exc
        if not _is_relative_to(canonical, base):
            raise PathTraversalError(f"Path resolves outside repository root: {relative_path}")
        return SandboxedPath(root=base, relative=relative, absolute=canonical)

    anchor = _nearest_existing_ancestor(candidate, base)
    if not _is_relative_to(anchor.resolve(), base) or not _is_relative_to(candidate, base):
        raise PathTraversalError(f"Path resolves outside repository root: {relative_path}")
    return SandboxedPath(root=base, relative=relative, absolute=candidate)


def is_within(child: Path | str, parent: Path | str) -> bool:
    """Return ``True`` if resolved ``child`` is within resolved ``parent``."""

    try:
        resolved_parent = Path(parent).resolve(strict=True)
        resolved_child = Path(child).resolve(strict=True)
    except (OSError, RuntimeError):
        return False
    return _is_relative_to(resolved_child, resolved_parent)


def _is_absolute(raw: str) -> bool:
    stripped = raw.strip()
    if stripped.startswith(("/", "\\")):
        return True
    if _DRIVE_PREFIX.match(stripped):
        return True
    return Path(stripped).is_absolute()


def _nearest_existing_ancestor(candidate: Path, base: Path) -> Path:
    current = candidate
    while current != base and not current.exists():
        parent = current.parent
        if parent == current:
            break
        current = parent
    return current


def _is_relative_to(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
    except ValueError:
        return False
    return True


__all__ = [
    "InvalidPathError",
    "PathTraversalError",
    "SandboxError",
    "SandboxedPath",
    "canonical_root",
    "is_within",
    "resolve",
]
