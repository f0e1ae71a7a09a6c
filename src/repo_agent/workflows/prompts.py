"""
repo-agent — workflow prompt rendering

File: src/repo_agent/workflows/prompts.py
Last updated: 2026-10-19

Purpose
- Loads the plan and verify prompt templates shipped beside this module and renders
  them with strict placeholders.
- Applies the per-section character caps of the verification prompt.

Functional requirements
- Rendering is deterministic for the same inputs; undefined variables raise.
- Untrusted inputs (titles, diffs, command output) are substituted verbatim and never
  evaluated as template source.
- Any capped section marks the rendered verification prompt as truncated.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Final

from jinja2 import Environment, StrictUndefined, Template

from repo_agent.constants import (
    CONTEXT_MAX_CHARS,
    VERIFY_BUILD_MAX_CHARS,
    VERIFY_DIFF_MAX_CHARS,
    VERIFY_LINT_MAX_CHARS,
    VERIFY_PLAN_MAX_CHARS,
    VERIFY_TESTS_MAX_CHARS,
)

PLAN_SYSTEM_TEMPLATE: Final[str] = "plan_system.md.j2"
PLAN_USER_TEMPLATE: Final[str] = "plan_user.md.j2"
VERIFY_SYSTEM_TEMPLATE: Final[str] = "verify_system.md.j2"
VERIFY_USER_TEMPLATE: Final[str] = "verify_user.md.j2"

PROMPT_TRUNCATED_SUFFIX: Final[str] = "\n\n[Content truncated due to size limits]"

_TEMPLATE_ROOT: Final[Path] = Path(__file__).resolve().parent / "templates"

_ENVIRONMENT: Final[Environment] = Environment(
    undefined=StrictUndefined,
    autoescape=False,
    trim_blocks=True,
    lstrip_blocks=False,
    newline_sequence="\n",
    keep_trailing_newline=False,
)


class PromptTemplateError(RuntimeError):
    """Raised when a bundled template is missing or cannot be read."""


@dataclass(frozen=True, slots=True)
class CheckSection:
    title: str
    body: str


@dataclass(frozen=True, slots=True)
class VerifyPrompt:
    """Rendered verification prompt and whether any input was cut to fit."""

    text: str
    truncated: bool


def render_prompt(template_name: str, **variables: object) -> str:
    return _load_template(template_name).render(**variables)


def template_hash(template_name: str) -> str:
    """sha256 of a template's source, logged beside the run for reproducibility."""

    return hashlib.sha256(_read_source(template_name).encode("utf-8")).hexdigest()


def plan_system_prompt() -> str:
    return render_prompt(PLAN_SYSTEM_TEMPLATE)


def plan_user_prompt(*, title: str, repo_path: str) -> str:
    return render_prompt(PLAN_USER_TEMPLATE, title=title, repo_path=repo_path)


def verify_system_prompt() -> str:
    return render_prompt(VERIFY_SYSTEM_TEMPLATE)


def build_verify_user_prompt(
    *,
    title: str,
    plan_md: str | None,
    git_status: str,
    git_diff: str,
    staged: bool,
    test_output: str = "",
    lint_output: str = "",
    build_output: str = "",
    inputs_truncated: bool = False,
    max_chars: int = CONTEXT_MAX_CHARS,
) -> VerifyPrompt:
    """Assemble the verification request from repository state and check output.

    Empty check outputs are omitted. ``inputs_truncated`` reports that a tool already
    cut its own output; it adds the truncation note like any cap applied here. The
    whole prompt is cut to ``max_chars`` with a trailing marker when it still exceeds
    that bound.
    """

    truncated = inputs_truncated

    plan: str | None = None
    if plan_md is not None:
        plan, cut = _cap(plan_md, VERIFY_PLAN_MAX_CHARS)
        truncated = truncated or cut

    diff, cut = _cap(git_diff, VERIFY_DIFF_MAX_CHARS)
    truncated = truncated or cut

    sections: list[CheckSection] = []
    for title_text, output, limit in (
        ("Test Results", test_output, VERIFY_TESTS_MAX_CHARS),
        ("Lint Results", lint_output, VERIFY_LINT_MAX_CHARS),
        ("Build Results", build_output, VERIFY_BUILD_MAX_CHARS),
    ):
        if not output:
            continue
        body, cut = _cap(output, limit)
        truncated = truncated or cut
        sections.append(CheckSection(title=title_text, body=body))

    text = render_prompt(
        VERIFY_USER_TEMPLATE,
        title=title,
        plan=plan,
        git_status=git_status,
        diff_label="Staged Changes" if staged else "Unstaged Changes",
        git_diff=diff,
        sections=sections,
        truncated=truncated,
    )
    if len(text) > max_chars:
        text = text[:max_chars] + PROMPT_TRUNCATED_SUFFIX
        truncated = True
    return VerifyPrompt(text=text, truncated=truncated)


def _cap(text: str, limit: int) -> tuple[str, bool]:
    if len(text) > limit:
        return text[:limit], True
    return text, False


@lru_cache(maxsize=None)
def _load_template(template_name: str) -> Template:
    return _ENVIRONMENT.from_string(_read_source(template_name))


def _read_source(template_name: str) -> str:
    path = _TEMPLATE_ROOT / template_name
    try:
        return path.read_text(encoding="utf-8").replace("\r\n", "\n")
    except OSError as exc:
        raise PromptTemplateError(f"prompt template not readable: {path}: {exc}") from exc


__all__ = [
    "PLAN_SYSTEM_TEMPLATE",
    "PLAN_USER_TEMPLATE",
    "PROMPT_TRUNCATED_SUFFIX",
    "VERIFY_SYSTEM_TEMPLATE",
    "VERIFY_USER_TEMPLATE",
    "CheckSection",
    "PromptTemplateError",
    "VerifyPrompt",
    "build_verify_user_prompt",
    "plan_system_prompt",
    "plan_user_prompt",
    "render_prompt",
    "template_hash",
    "verify_system_prompt",
]
