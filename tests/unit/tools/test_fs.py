"""Unit tests for the list_files and read_file tools."""

from __future__ import annotations

from pathlib import Path

import pytest

from repo_agent.sandbox.paths import PathTraversalError
from repo_agent.tools.base import ListFilesArgs, ReadFileArgs, RepoContext, ToolError
from repo_agent.tools.fs import is_binary, is_ignored, list_files, parse_gitignore, read_file


def _context(root: Path) -> RepoContext:
    return RepoContext(root=root, project_id="project-1")


def _write(root: Path, relative: str, content: str | bytes = "x\n") -> None:
    target = root / relative
    target.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, bytes):
        target.write_bytes(content)
    else:
        target.write_text(content, encoding="utf-8")


@pytest.fixture()
def layout(tmp_path: Path) -> Path:
    root = tmp_path / "layout"
    _write(root, ".gitignore", "# logs\n*.log\n!keep.log\nbuild_out/\n")
    _write(root, ".hidden")
    _write(root, "README.md")
    _write(root, "app.log")
    _write(root, "keep.log")
    _write(root, "build_out/artifact.txt")
    _write(root, "node_modules/pkg/index.js")
    _write(root, ".git/HEAD", "ref: refs/heads/main\n")
    _write(root, "src/main.py")
    _write(root, "sub/.gitignore", "secret.txt\n")
    _write(root, "sub/secret.txt")
    _write(root, "sub/ok.txt")
    _write(root, "other/secret.txt")
    return root


def test_list_files_honors_gitignore_and_excluded_dirs(layout: Path) -> None:
    result = list_files(_context(layout), ListFilesArgs())

    assert set(result["files"]) == {
        ".gitignore",
        ".hidden",
        "README.md",
        "keep.log",
        "src/main.py",
        "sub/.gitignore",
        "sub/ok.txt",
        "other/secret.txt",
    }
    assert result["count"] == 8
    assert result["truncated"] is False


def test_list_files_returns_posix_relative_paths(layout: Path) -> None:
    result = list_files(_context(layout), ListFilesArgs())

    for path in result["files"]:
        assert not path.startswith("/")
        assert "\\" not in path


def test_list_files_stops_at_max_files(layout: Path) -> None:
    result = list_files(_context(layout), ListFilesArgs(max_files=2))

    assert result["count"] == 2
    assert len(result["files"]) == 2
    assert result["truncated"] is True


def test_list_files_filters_by_glob(layout: Path) -> None:
    result = list_files(_context(layout), ListFilesArgs(globs=("*.py",)))

    assert result["files"] == ["src/main.py"]
    assert result["truncated"] is False


def test_list_files_glob_matches_full_relative_path(layout: Path) -> None:
    result = list_files(_context(layout), ListFilesArgs(globs=("sub/*",)))

    assert set(result["files"]) == {"sub/.gitignore", "sub/ok.txt"}


def test_gitignore_rules_last_match_wins() -> None:
    rules = parse_gitignore("*.log\n!keep.log\n")

    assert is_ignored(rules, "debug.log", is_dir=False)
    assert not is_ignored(rules, "keep.log", is_dir=False)
    assert not is_ignored(rules, "main.py", is_dir=False)


def test_gitignore_directory_only_and_anchored_rules() -> None:
    rules = parse_gitignore("out/\n/docs/*.md\n")

    assert is_ignored(rules, "out", is_dir=True)
    assert not is_ignored(rules, "out", is_dir=False)
    assert is_ignored(rules, "docs/guide.md", is_dir=False)
    assert not is_ignored(rules, "src/docs/guide.md", is_dir=False)


def test_nested_gitignore_is_scoped_to_its_directory() -> None:
    rules = parse_gitignore("secret.txt\n", base="sub")

    assert is_ignored(rules, "sub/secret.txt", is_dir=False)
    assert not is_ignored(rules, "secret.txt", is_dir=False)


def test_read_file_returns_text_content(repo_root: Path) -> None:
    result = read_file(_context(repo_root), ReadFileArgs(path="src/main.py"))

    assert result == {
        "path": "src/main.py",
        "content": "def main():\n    return 'Hello'\n",
        "bytes": 31,
        "truncated": False,
    }


def test_read_file_truncates_to_byte_budget(repo_root: Path) -> None:
    _write(repo_root, "long.txt", "hello world")

    result = read_file(_context(repo_root), ReadFileArgs(path="long.txt", max_bytes=5))

    assert result["content"] == "hello"
    assert result["bytes"] == 11
    assert result["truncated"] is True


def test_read_file_does_not_split_multibyte_characters(repo_root: Path) -> None:
    _write(repo_root, "accents.txt", "ééé")

    result = read_file(_context(repo_root), ReadFileArgs(path="accents.txt", max_bytes=3))

    assert result["content"] == "é"
    assert result["truncated"] is True


def test_read_file_reports_binary_without_content(repo_root: Path) -> None:
    _write(repo_root, "image.bin", b"\x89PNG\x00\x01\x02\x03")

    result = read_file(_context(repo_root), ReadFileArgs(path="image.bin"))

    assert result == {"path": "image.bin", "binary": True, "bytes": 8, "truncated": False}
    assert "content" not in result


def test_read_file_rejects_invalid_utf8(repo_root: Path) -> None:
    _write(repo_root, "latin1.txt", "caf\xe9 au lait".encode("latin-1"))

    with pytest.raises(ToolError, match="not valid UTF-8"):
        read_file(_context(repo_root), ReadFileArgs(path="latin1.txt"))


def test_read_file_rejects_directories_and_missing_files(repo_root: Path) -> None:
    with pytest.raises(ToolError, match="Not a file"):
        read_file(_context(repo_root), ReadFileArgs(path="src"))
    with pytest.raises(ToolError, match="Not a file"):
        read_file(_context(repo_root), ReadFileArgs(path="missing.txt"))


def test_read_file_rejects_traversal(repo_root: Path) -> None:
    with pytest.raises(PathTraversalError):
        read_file(_context(repo_root), ReadFileArgs(path="../outside.txt"))


def test_is_binary_classification() -> None:
    assert is_binary(b"\x00")
    assert is_binary(b"abc\x07")
    assert not is_binary(b"plain text\twith tabs\r\n")
    assert not is_binary("ünïcödé".encode())
