"""Module entrypoint for ``python -m repo_agent``."""

from __future__ import annotations

from repo_agent.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
