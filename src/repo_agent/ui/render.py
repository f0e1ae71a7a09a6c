"""Output rendering for the repo-agent CLI.

File: src/repo_agent/ui/render.py
Last updated: 2026-10-19

Purpose
- Provide a thin rendering layer over ``rich`` for CLI output: key/value lines,
  tables, and Markdown documents such as plans and verification reports.
- Respect the NO_COLOR environment variable and the --no-color CLI flag.

Functional requirements
- JSON output never goes through this layer.
- Output is written to the current ``sys.stdout`` at call time.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table

if TYPE_CHECKING:
    from collections.abc import Sequence


def _color_allowed(no_color_flag: bool) -> bool:
    if no_color_flag:
        return False
    return not os.environ.get("NO_COLOR", "")


class CLIRenderer:
    """Thin CLI output renderer."""

    def __init__(self, *, no_color: bool = False) -> None:
        self._console = Console(
            no_color=not _color_allowed(no_color),
            highlight=False,
            soft_wrap=True,
        )

    def heading(self, text: str) -> None:
        self._console.print(text, style="bold", markup=False)

    def kv(self, key: str, value: object) -> None:
        self._console.print(f"{key}: {value}", markup=False)

    def text(self, line: str) -> None:
        self._console.print(line, markup=False)

    def section(self, title: str) -> None:
        self._console.print()
        self.heading(title)

    def warning(self, text: str) -> None:
        self._console.print(f"Warning: {text}", style="yellow", markup=False)

    def markdown(self, document: str) -> None:
        """Render a Markdown document (plans, verification reports)."""

        self._console.print(Markdown(document))

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[str]],
        *,
        title: str | None = None,
    ) -> None:
        if not rows:
            self.text("(none)")
            return
        table = Table(title=title, show_edge=False, header_style="bold")
        for header in headers:
            table.add_column(header, overflow="fold")
        for row in rows:
            table.add_row(*(str(cell) for cell in row))
        self._console.print(table)


def create_renderer(*, no_color: bool = False) -> CLIRenderer:
    return CLIRenderer(no_color=no_color)


__all__ = ["CLIRenderer", "create_renderer"]
