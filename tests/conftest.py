"""Shared fixtures: a migrated record store and a small on-disk repository."""

from __future__ import annotations

from pathlib import Path

import pytest

from repo_agent.persistence import StateDB


@pytest.fixture()
def state_db(tmp_path: Path) -> StateDB:
    db = StateDB(tmp_path / "state" / "repo_agent.sqlite3")
    db.migrate()
    return db


@pytest.fixture()
def repo_root(tmp_path: Path) -> Path:
    root = tmp_path / "repo"
    (root / "src").mkdir(parents=True)
    (root / "src" / "main.py").write_text("def main():\n    return 'Hello'\n", encoding="utf-8")
    (root / "README.md").write_text("# Demo\n\nhello world\n", encoding="utf-8")
    return root
