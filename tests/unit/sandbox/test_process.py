"""Unit tests for bounded process execution and truncation."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
from hypothesis import given
from hypothesis import strategies as st

from repo_agent.sandbox.process import (
    CommandFailedError,
    CommandTimeoutError,
    spawn_bounded,
    truncate,
)


def test_truncate_leaves_short_text_untouched() -> None:
    assert truncate("abc", 5) == ("abc", False)
    assert truncate("abc", 3) == ("abc", False)


def test_truncate_cuts_long_text() -> None:
    assert truncate("abcdef", 3) == ("abc", True)
    assert truncate("abc", 0) == ("", True)


def test_truncate_rejects_negative_budget() -> None:
    with pytest.raises(ValueError):
        truncate("abc", -1)


@given(text=st.text(max_size=200), limit=st.integers(min_value=0, max_value=250))
def test_truncate_returns_prefix_within_budget(text: str, limit: int) -> None:
    out, cut = truncate(text, limit)

    assert len(out) <= limit
    assert text.startswith(out)
    assert cut == (len(text) > limit)


def test_spawn_captures_output_and_exit_code(tmp_path: Path) -> None:
    result = spawn_bounded(
        sys.executable,
        ["-c", "import sys; print('out'); print('err', file=sys.stderr); sys.exit(3)"],
        cwd=tmp_path,
        timeout_seconds=30,
    )

    assert result.stdout.strip() == "out"
    assert result.stderr.strip() == "err"
    assert result.exit_code == 3
    assert not result.succeeded
    assert result.duration_ms >= 0


def test_spawn_runs_in_given_directory(tmp_path: Path) -> None:
    (tmp_path / "marker.txt").write_text("x", encoding="utf-8")

    result = spawn_bounded(
        sys.executable,
        ["-c", "import os; print(sorted(os.listdir('.')))"],
        cwd=tmp_path,
        timeout_seconds=30,
    )

    assert "marker.txt" in result.stdout
    assert result.succeeded


def test_spawn_kills_process_after_timeout(tmp_path: Path) -> None:
    with pytest.raises(CommandTimeoutError) as excinfo:
        spawn_bounded(
            sys.executable,
            ["-c", "import time; time.sleep(10)"],
            cwd=tmp_path,
            timeout_seconds=0.5,
        )

    assert excinfo.value.timeout_seconds == 0.5
    assert "timed out" in str(excinfo.value)


def test_spawn_reports_missing_program(tmp_path: Path) -> None:
    with pytest.raises(CommandFailedError, match="Failed to execute"):
        spawn_bounded("definitely-not-a-real-program-xyz", [], cwd=tmp_path, timeout_seconds=5)


def test_spawn_rejects_missing_working_directory(tmp_path: Path) -> None:
    with pytest.raises(CommandFailedError, match="Working directory does not exist"):
        spawn_bounded(sys.executable, ["-c", "pass"], cwd=tmp_path / "nope", timeout_seconds=5)


@pytest.mark.parametrize("timeout", [0, -1])
def test_spawn_rejects_non_positive_timeout(tmp_path: Path, timeout: float) -> None:
    with pytest.raises(ValueError):
        spawn_bounded(sys.executable, ["-c", "pass"], cwd=tmp_path, timeout_seconds=timeout)
