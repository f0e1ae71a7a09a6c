"""
repo-agent — sandbox package

File: src/repo_agent/sandbox/__init__.py
Last updated: 2026-10-19

Purpose
- Confine filesystem paths to a repository root and bound external process execution.
"""

from repo_agent.sandbox.paths import (
    InvalidPathError,
    PathTraversalError,
    SandboxedPath,
    SandboxError,
    canonical_root,
    is_within,
    resolve,
)
from repo_agent.sandbox.process import (
    CommandFailedError,
    CommandTimeoutError,
    SpawnResult,
    has_ripgrep,
    spawn_bounded,
    truncate,
)

__all__ = [
    "CommandFailedError",
    "CommandTimeoutError",
    "InvalidPathError",
    "PathTraversalError",
    "SandboxError",
    "SandboxedPath",
    "SpawnResult",
    "canonical_root",
    "has_ripgrep",
    "is_within",
    "resolve",
    "spawn_bounded",
    "truncate",
]
