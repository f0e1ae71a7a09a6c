"""Helpers shared by unit and integration tests."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

GIT_AVAILABLE = shutil.which("git") is not None

requires_git = pytest.mark.skipif(not GIT_AVAILABLE, reason="git executable not available")


def init_git_repo(root: Path) -> None:
    """Create a git repository at ``root`` with one commit of its current contents."""

    def _git(*args: str) -> None:
        subprocess.run(["git", *args], cwd=root, check=True, capture_output=True, text=True)

    _git("init", "-q")
    _git("config", "user.email", "dev@example.com")
    _git("config", "user.name", "Dev")
    _git("config", "commit.gpgsign", "false")
    _git("add", "-A")
    _git("commit", "-q", "-m", "initial commit")
