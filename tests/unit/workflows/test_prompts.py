"""Unit tests for prompt template rendering and verification caps."""

from __future__ import annotations

import re

from repo_agent.constants import VERIFY_DIFF_MAX_CHARS, VERIFY_PLAN_MAX_CHARS
from repo_agent.workflows.prompts import (
    PLAN_SYSTEM_TEMPLATE,
    PROMPT_TRUNCATED_SUFFIX,
    VERIFY_USER_TEMPLATE,
    build_verify_user_prompt,
    plan_system_prompt,
    plan_user_prompt,
    template_hash,
    verify_system_prompt,
)

_NOTE = "\n*Note: Some inputs were truncated due to size limits.*\n"


def _verify(**overrides: object) -> str:
    kwargs: dict[str, object] = {
        "title": "T",
        "plan_md": "P",
        "git_status": "S",
        "git_diff": "D",
        "staged": False,
    }
    kwargs.update(overrides)
    return build_verify_user_prompt(**kwargs).text  # type: ignore[arg-type]


def test_plan_user_prompt_text() -> None:
    assert plan_user_prompt(title="Add flag", repo_path="/work/demo") == (
        "Task: Add flag\n\nRepository: /work/demo\n\n"
        "Please explore this codebase and create a detailed implementation plan.\n\n"
        "Start by listing files to understand the project structure, then read key files "
        "to understand the codebase before writing your plan."
    )


def test_system_prompts_describe_required_sections() -> None:
    plan = plan_system_prompt()
    verify = verify_system_prompt()

    assert plan.startswith("You are a senior technical lead")
    assert "## 7. Validation Steps" in plan
    assert verify.startswith("You are a senior code reviewer")
    assert "# Verification Report" in verify


def test_verify_prompt_with_plan() -> None:
    assert _verify() == (
        "Task: T\n\n## Implementation Plan\n\nP\n\n---\n\n"
        "## Repository State\n\n### Git Status\n```\nS\n```\n\n"
        "### Unstaged Changes\n```diff\nD\n```\n\n"
    )


def test_verify_prompt_without_plan_switches_to_general_review() -> None:
    text = _verify(plan_md=None)

    assert text.startswith(
        "Task: T\n\n*No implementation plan provided. Conducting general code review.*\n\n"
        "## Repository State\n"
    )
    assert "## Implementation Plan" not in text


def test_verify_prompt_staged_label() -> None:
    assert "### Staged Changes\n```diff\nD\n```" in _verify(staged=True)


def test_check_sections_follow_diff_and_skip_empty_output() -> None:
    text = _verify(test_output="3 passed", lint_output="", build_output="built")

    assert text.endswith(
        "### Test Results\n```\n3 passed\n```\n\n### Build Results\n```\nbuilt\n```\n\n"
    )
    assert "Lint Results" not in text


def test_long_plan_is_capped_and_flagged() -> None:
    prompt = build_verify_user_prompt(
        title="T",
        plan_md="p" * (VERIFY_PLAN_MAX_CHARS + 10),
        git_status="",
        git_diff="",
        staged=False,
    )

    assert prompt.truncated is True
    assert "p" * VERIFY_PLAN_MAX_CHARS + "\n" in prompt.text
    assert "p" * (VERIFY_PLAN_MAX_CHARS + 1) not in prompt.text
    assert prompt.text.endswith(_NOTE)


def test_long_diff_is_capped_and_flagged() -> None:
    prompt = build_verify_user_prompt(
        title="T",
        plan_md=None,
        git_status="",
        git_diff="d" * (VERIFY_DIFF_MAX_CHARS + 1),
        staged=False,
    )

    assert prompt.truncated is True
    assert prompt.text.count("d") >= VERIFY_DIFF_MAX_CHARS
    assert "d" * (VERIFY_DIFF_MAX_CHARS + 1) not in prompt.text


def test_tool_side_truncation_adds_note() -> None:
    prompt = build_verify_user_prompt(
        title="T",
        plan_md="P",
        git_status="S",
        git_diff="D",
        staged=False,
        inputs_truncated=True,
    )

    assert prompt.truncated is True
    assert prompt.text.endswith(_NOTE)


def test_untruncated_prompt_has_no_note() -> None:
    prompt = build_verify_user_prompt(
        title="T", plan_md="P", git_status="S", git_diff="D", staged=False
    )

    assert prompt.truncated is False
    assert "truncated" not in prompt.text


def test_whole_prompt_cap_appends_marker() -> None:
    prompt = build_verify_user_prompt(
        title="T",
        plan_md="P",
        git_status="S" * 500,
        git_diff="D",
        staged=False,
        max_chars=100,
    )

    assert prompt.truncated is True
    assert len(prompt.text) == 100 + len(PROMPT_TRUNCATED_SUFFIX)
    assert prompt.text.endswith(PROMPT_TRUNCATED_SUFFIX)


def test_untrusted_inputs_are_not_evaluated() -> None:
    title = "{{ 7 * 7 }} {% if true %}x{% endif %}"
    text = _verify(title=title, git_diff="{{ git_status }}")

    assert text.startswith(f"Task: {title}\n")
    assert "```diff\n{{ git_status }}\n```" in text
    assert "49" not in text


def test_template_hash_is_stable_sha256() -> None:
    digest = template_hash(PLAN_SYSTEM_TEMPLATE)

    assert re.fullmatch(r"[0-9a-f]{64}", digest)
    assert digest == template_hash(PLAN_SYSTEM_TEMPLATE)
    assert digest != template_hash(VERIFY_USER_TEMPLATE)
