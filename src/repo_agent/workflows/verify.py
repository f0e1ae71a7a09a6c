"""
repo-agent — verify workflow

File: src/repo_agent/workflows/verify.py
Last updated: 2026-10-19

Purpose
- Collect repository state (status, diff, optional test/lint/build output), ask the
  model for one verification report against the task's plan, and store it as the
  task's ``verification_report``.

Functional requirements
- Tool calls are issued by the workflow itself, never by the model, and respect
  ``max_tool_calls``.
- A failing tool contributes its ``{"error": ...}`` payload to the prompt.
- A missing plan artifact switches the report to a general review.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Final

import structlog

from repo_agent.constants import VERIFY_DEFAULT_MAX_TOOL_CALLS
from repo_agent.llm.base import ChatMessage, LlmError
from repo_agent.observability.logging import bind_run_context
from repo_agent.tools.base import CommandKind, RepoContext, ToolError, ToolName
from repo_agent.workflows.plan import PLAN_ARTIFACT_KIND, format_tool_content
from repo_agent.workflows.prompts import (
    VERIFY_USER_TEMPLATE,
    build_verify_user_prompt,
    template_hash,
    verify_system_prompt,
)
from repo_agent.workflows.runtime import StateTracker, WorkflowRuntime, llm_failure
from repo_agent.workflows.state import TERMINAL_STATES, WorkflowError, WorkflowEvent

logger = structlog.get_logger(__name__)

VERIFY_ARTIFACT_KIND: Final[str] = "verification_report"
VERIFY_RUN_TYPE: Final[str] = "verify"
NO_RESPONSE_TEXT: Final[str] = "**Error**: No response from LLM"


@dataclass(frozen=True, slots=True)
class VerifyOptions:
    run_tests: bool = True
    run_lint: bool = False
    run_build: bool = False
    staged: bool = False
    max_tool_calls: int = VERIFY_DEFAULT_MAX_TOOL_CALLS

    def __post_init__(self) -> None:
        if self.max_tool_calls < 0:
            raise ValueError("max_tool_calls must be >= 0")


@dataclass(frozen=True, slots=True)
class RanChecks:
    tests: bool = False
    lint: bool = False
    build: bool = False

    def to_dict(self) -> dict[str, bool]:
        return {"tests": self.tests, "lint": self.lint, "build": self.build}


@dataclass(frozen=True, slots=True)
class VerifyResult:
    run_id: str
    report_md: str
    ran_checks: RanChecks
    truncated: bool


@dataclass(slots=True)
class _Evidence:
    git_status: str = ""
    git_diff: str = ""
    outputs: dict[CommandKind, str] = field(default_factory=dict)
    tool_calls: int = 0
    truncated: bool = False


class VerifyWorkflow:
    """Single-shot review of the working tree against the stored plan."""

    def __init__(self, runtime: WorkflowRuntime) -> None:
        self._runtime = runtime

    async def run(
        self,
        project_id: str,
        task_id: str,
        options: VerifyOptions | None = None,
    ) -> VerifyResult:
        opts = options if options is not None else VerifyOptions()
        tracker = StateTracker(VERIFY_RUN_TYPE)
        run_id: str | None = None
        try:
            subject = await self._runtime.load_subject(project_id, task_id)
            settings = await self._runtime.load_settings()
            run = await self._runtime.create_run(task_id, VERIFY_RUN_TYPE, settings)
            run_id = run.id
            tracker.advance(WorkflowEvent.LOADED)

            with bind_run_context(run_id=run.id, task_id=task_id, workflow=VERIFY_RUN_TYPE):
                logger.info(
                    "verify_started",
                    project_id=project_id,
                    model=settings.model,
                    staged=opts.staged,
                    template_sha256=template_hash(VERIFY_USER_TEMPLATE),
                )
                plan = await self._runtime.load_artifact(task_id, PLAN_ARTIFACT_KIND)
                context = subject.context.for_run(run.id)
                evidence, ran = await self._gather(context, opts)

                prompt = build_verify_user_prompt(
                    title=subject.task.title,
                    plan_md=plan.content if plan is not None else None,
                    git_status=evidence.git_status,
                    git_diff=evidence.git_diff,
                    staged=opts.staged,
                    test_output=_output(evidence, CommandKind.TESTS),
                    lint_output=_output(evidence, CommandKind.LINT),
                    build_output=_output(evidence, CommandKind.BUILD),
                    inputs_truncated=evidence.truncated,
                )
                messages = [
                    ChatMessage.system(verify_system_prompt()),
                    ChatMessage.user(prompt.text),
                ]
                for message in messages:
                    await self._runtime.log_message(run.id, message.role, message.content or "")
                tracker.advance(WorkflowEvent.PROMPT_READY)

                try:
                    response = await self._runtime.chat_client(settings).chat(messages)
                except LlmError as exc:
                    raise llm_failure(exc) from exc
                report = response.content if response.content is not None else NO_RESPONSE_TEXT
                await self._runtime.log_message(run.id, "assistant", report)
                tracker.advance(WorkflowEvent.FINAL_ANSWER)
                tracker.advance(WorkflowEvent.FINALIZED)

                await self._runtime.save_artifact(task_id, VERIFY_ARTIFACT_KIND, report)
                await self._runtime.finish_run(run.id)
                tracker.advance(WorkflowEvent.PERSISTED)

                logger.info(
                    "verify_finished",
                    tool_calls=evidence.tool_calls,
                    truncated=prompt.truncated,
                    **ran.to_dict(),
                )
                return VerifyResult(
                    run_id=run.id,
                    report_md=report,
                    ran_checks=ran,
                    truncated=prompt.truncated,
                )
        except WorkflowError as exc:
            if tracker.state not in TERMINAL_STATES:
                tracker.advance(WorkflowEvent.FAILED)
            await self._runtime.close_failed_run(run_id, exc)
            raise

    async def _gather(
        self, context: RepoContext, options: VerifyOptions
    ) -> tuple[_Evidence, RanChecks]:
        evidence = _Evidence()

        evidence.git_status = await self._call(evidence, context, ToolName.GIT_STATUS, {})
        evidence.git_diff = await self._call(
            evidence, context, ToolName.GIT_DIFF, {"staged": options.staged}
        )

        ran: dict[CommandKind, bool] = {}
        for kind, enabled in (
            (CommandKind.TESTS, options.run_tests),
            (CommandKind.LINT, options.run_lint),
            (CommandKind.BUILD, options.run_build),
        ):
            if not enabled or evidence.tool_calls >= options.max_tool_calls:
                continue
            evidence.outputs[kind] = await self._call(
                evidence, context, ToolName.RUN_COMMAND, {"kind": kind.value}
            )
            ran[kind] = True

        return evidence, RanChecks(
            tests=ran.get(CommandKind.TESTS, False),
            lint=ran.get(CommandKind.LINT, False),
            build=ran.get(CommandKind.BUILD, False),
        )

    async def _call(
        self,
        evidence: _Evidence,
        context: RepoContext,
        name: ToolName,
        args: Mapping[str, object],
    ) -> str:
        payload = {**args, "project_id": context.project_id}
        evidence.tool_calls += 1
        try:
            result = await self._runtime.run_tool(name.value, payload, context)
        except ToolError as exc:
            return format_tool_content({"error": str(exc)})
        if result.get("truncated") is True:
            evidence.truncated = True
        return format_tool_content(result)


def _output(evidence: _Evidence, kind: CommandKind) -> str:
    return evidence.outputs.get(kind, "")


__all__ = [
    "NO_RESPONSE_TEXT",
    "VERIFY_ARTIFACT_KIND",
    "RanChecks",
    "VerifyOptions",
    "VerifyResult",
    "VerifyWorkflow",
]
