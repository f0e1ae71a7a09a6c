"""
repo-agent — plan workflow

File: src/repo_agent/workflows/plan.py
Last updated: 2026-10-19

Purpose
- Drive a bounded tool-calling conversation in which the model explores a repository
  and answers with a Markdown implementation plan, stored as the task's ``plan_md``.

Functional requirements
- At most ``max_iterations`` model turns; tool calls run one at a time in the order
  the model issued them.
- The assistant turn that requested tools precedes its tool results in the history.
- Tool failures become ``{"error": ...}`` tool messages and never end the run.
- When the conversation outgrows the context budget only the first message and the
  most recent ones are sent, and the plan is flagged as truncated.
- Every message is written to the run log as it is produced.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Final

import structlog

from repo_agent.constants import CONTEXT_MAX_CHARS, PLAN_HISTORY_KEEP_RECENT, PLAN_MAX_ITERATIONS
from repo_agent.llm.base import (
    ChatMessage,
    ChatProvider,
    LlmError,
    ToolCall,
    parse_tool_arguments,
)
from repo_agent.observability.logging import bind_run_context
from repo_agent.tools.base import RepoContext, ToolError
from repo_agent.tools.schemas import tool_schemas
from repo_agent.workflows.prompts import (
    PLAN_SYSTEM_TEMPLATE,
    plan_system_prompt,
    plan_user_prompt,
    template_hash,
)
from repo_agent.workflows.runtime import StateTracker, WorkflowRuntime, llm_failure
from repo_agent.workflows.state import (
    TERMINAL_STATES,
    WorkflowError,
    WorkflowEvent,
    WorkflowState,
)

logger = structlog.get_logger(__name__)

PLAN_ARTIFACT_KIND: Final[str] = "plan_md"
PLAN_RUN_TYPE: Final[str] = "plan"

TRUNCATION_NOTE: Final[str] = (
    "\n\n---\n\n**Note**: This plan was truncated due to context size limits. "
    "Some details may be incomplete."
)


def exhausted_plan_text(max_iterations: int) -> str:
    return (
        f"**Error**: Reached maximum tool call limit ({max_iterations}). "
        "Unable to complete plan.\n\n"
        "Please try:\n"
        "1. Breaking this task into smaller, more specific tasks\n"
        "2. Providing more context about what needs to be done\n"
        "3. Checking if the repository is accessible and contains the expected files"
    )


@dataclass(frozen=True, slots=True)
class PlanResult:
    run_id: str
    plan_md: str
    tool_calls_count: int
    truncated: bool


def trim_history(
    messages: Sequence[ChatMessage],
    *,
    max_chars: int = CONTEXT_MAX_CHARS,
    keep_recent: int = PLAN_HISTORY_KEEP_RECENT,
) -> tuple[list[ChatMessage], bool]:
    """Return the history to send and whether it was cut.

    Over budget, the first message is kept together with the last ``keep_recent``
    of the remainder. Histories shorter than three messages are never cut.
    """

    history = list(messages)
    total = sum(message.content_length for message in history)
    if total <= max_chars:
        return history, False
    if len(history) < 3:
        return history, True
    return [history[0], *history[1:][-keep_recent:]], True


def format_tool_content(result: object) -> str:
    return json.dumps(result, ensure_ascii=False, separators=(",", ":"))


class PlanWorkflow:
    """Explore-then-answer planning loop over the repository tools."""

    def __init__(
        self,
        runtime: WorkflowRuntime,
        *,
        max_iterations: int = PLAN_MAX_ITERATIONS,
        context_max_chars: int = CONTEXT_MAX_CHARS,
        keep_recent: int = PLAN_HISTORY_KEEP_RECENT,
    ) -> None:
        if max_iterations <= 0:
            raise ValueError("max_iterations must be > 0")
        self._runtime = runtime
        self._max_iterations = max_iterations
        self._context_max_chars = context_max_chars
        self._keep_recent = keep_recent

    async def run(self, project_id: str, task_id: str) -> PlanResult:
        tracker = StateTracker(PLAN_RUN_TYPE)
        run_id: str | None = None
        try:
            subject = await self._runtime.load_subject(project_id, task_id)
            settings = await self._runtime.load_settings()
            run = await self._runtime.create_run(task_id, PLAN_RUN_TYPE, settings)
            run_id = run.id
            tracker.advance(WorkflowEvent.LOADED)

            with bind_run_context(run_id=run.id, task_id=task_id, workflow=PLAN_RUN_TYPE):
                logger.info(
                    "plan_started",
                    project_id=project_id,
                    model=settings.model,
                    template_sha256=template_hash(PLAN_SYSTEM_TEMPLATE),
                )
                result = await self._converse(
                    tracker,
                    run_id=run.id,
                    task_id=task_id,
                    title=subject.task.title,
                    repo_path=subject.project.repo_path,
                    context=subject.context.for_run(run.id),
                    client=self._runtime.chat_client(settings),
                )
                logger.info(
                    "plan_finished",
                    tool_calls=result.tool_calls_count,
                    truncated=result.truncated,
                )
                return result
        except WorkflowError as exc:
            if tracker.state not in TERMINAL_STATES:
                tracker.advance(WorkflowEvent.FAILED)
            await self._runtime.close_failed_run(run_id, exc)
            raise

    async def _converse(
        self,
        tracker: StateTracker,
        *,
        run_id: str,
        task_id: str,
        title: str,
        repo_path: str,
        context: RepoContext,
        client: ChatProvider,
    ) -> PlanResult:
        messages: list[ChatMessage] = [
            ChatMessage.system(plan_system_prompt()),
            ChatMessage.user(plan_user_prompt(title=title, repo_path=repo_path)),
        ]
        for message in messages:
            await self._runtime.log_message(run_id, message.role, message.content or "")
        tracker.advance(WorkflowEvent.PROMPT_READY)

        schemas = tool_schemas()
        tool_calls_count = 0
        truncated = False
        final_plan: str | None = None

        for iteration in range(self._max_iterations):
            if tracker.state is WorkflowState.EXECUTE_TOOLS:
                tracker.advance(WorkflowEvent.TOOLS_EXECUTED)

            messages, cut = trim_history(
                messages, max_chars=self._context_max_chars, keep_recent=self._keep_recent
            )
            if cut:
                truncated = True
                logger.info("plan_history_trimmed", iteration=iteration, kept=len(messages))

            try:
                response = await client.chat(messages, schemas)
            except LlmError as exc:
                raise llm_failure(exc) from exc

            if not response.has_tool_calls:
                final_plan = response.content or ""
                await self._runtime.log_message(run_id, "assistant", final_plan)
                tracker.advance(WorkflowEvent.FINAL_ANSWER)
                break

            tracker.advance(WorkflowEvent.TOOL_CALLS_RECEIVED)
            tool_calls_count += len(response.tool_calls)
            names = ", ".join(call.name for call in response.tool_calls)
            await self._runtime.log_message(
                run_id,
                "assistant",
                response.content if response.content is not None else f"Calling tools: {names}",
            )
            messages.append(ChatMessage.assistant(response.content, response.tool_calls))

            for call in response.tool_calls:
                content = await self._execute_call(call, context)
                messages.append(ChatMessage.tool(call.id, content))
                await self._runtime.log_message(run_id, "tool", content)

        if final_plan is None:
            tracker.advance(WorkflowEvent.BUDGET_EXHAUSTED)
            logger.warning("plan_iterations_exhausted", tool_calls=tool_calls_count)
            final_plan = exhausted_plan_text(self._max_iterations)
            truncated = True

        if truncated:
            final_plan += TRUNCATION_NOTE
        tracker.advance(WorkflowEvent.FINALIZED)

        await self._runtime.save_artifact(task_id, PLAN_ARTIFACT_KIND, final_plan)
        await self._runtime.finish_run(run_id)
        tracker.advance(WorkflowEvent.PERSISTED)

        return PlanResult(
            run_id=run_id,
            plan_md=final_plan,
            tool_calls_count=tool_calls_count,
            truncated=truncated,
        )

    async def _execute_call(self, call: ToolCall, context: RepoContext) -> str:
        try:
            args = parse_tool_arguments(call.arguments)
        except ValueError as exc:
            return format_tool_content({"error": str(exc)})
        # Executors act on ``context``; a model-supplied project_id only reaches the audit row.
        args.setdefault("project_id", context.project_id)

        try:
            result = await self._runtime.run_tool(call.name, args, context)
        except ToolError as exc:
            return format_tool_content({"error": str(exc)})
        return format_tool_content(result)


__all__ = [
    "PLAN_ARTIFACT_KIND",
    "TRUNCATION_NOTE",
    "PlanResult",
    "PlanWorkflow",
    "exhausted_plan_text",
    "format_tool_content",
    "trim_history",
]
