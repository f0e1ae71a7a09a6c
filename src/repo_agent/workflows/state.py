"""
repo-agent — workflow state machine and error codes

File: src/repo_agent/workflows/state.py
Last updated: 2026-10-19

Purpose
- Explicit states and events for the plan and verify orchestrators.
- Pure transition function shared by both workflows.
- Workflow failure codes surfaced to callers.

Functional requirements
- ``transition`` has no side effects and raises ``InvalidTransitionError`` for any
  pair not in the table.
- ``FAILED`` is reachable from every non-terminal state; ``DONE`` and ``FAILED``
  accept no further events.
"""

from __future__ import annotations

from enum import StrEnum
from types import MappingProxyType
from typing import Final


class WorkflowState(StrEnum):
    INIT = "init"
    BUILD_PROMPT = "build_prompt"
    LLM_TURN = "llm_turn"
    EXECUTE_TOOLS = "execute_tools"
    FINALIZE = "finalize"
    PERSIST = "persist"
    DONE = "done"
    FAILED = "failed"


class WorkflowEvent(StrEnum):
    LOADED = "loaded"
    PROMPT_READY = "prompt_ready"
    TOOL_CALLS_RECEIVED = "tool_calls_received"
    TOOLS_EXECUTED = "tools_executed"
    FINAL_ANSWER = "final_answer"
    BUDGET_EXHAUSTED = "budget_exhausted"
    FINALIZED = "finalized"
    PERSISTED = "persisted"
    FAILED = "failed"


class WorkflowErrorCode(StrEnum):
    DB_ERROR = "DB_ERROR"
    RUN_ERROR = "RUN_ERROR"
    LOG_ERROR = "LOG_ERROR"
    ARTIFACT_ERROR = "ARTIFACT_ERROR"
    LLM_ERROR = "LLM_ERROR"
    NO_API_KEY = "NO_API_KEY"


TERMINAL_STATES: Final[frozenset[WorkflowState]] = frozenset(
    {WorkflowState.DONE, WorkflowState.FAILED}
)

_TRANSITIONS: Final[MappingProxyType[tuple[WorkflowState, WorkflowEvent], WorkflowState]] = (
    MappingProxyType(
        {
            (WorkflowState.INIT, WorkflowEvent.LOADED): WorkflowState.BUILD_PROMPT,
            (WorkflowState.BUILD_PROMPT, WorkflowEvent.PROMPT_READY): WorkflowState.LLM_TURN,
            (
                WorkflowState.LLM_TURN,
                WorkflowEvent.TOOL_CALLS_RECEIVED,
            ): WorkflowState.EXECUTE_TOOLS,
            (WorkflowState.LLM_TURN, WorkflowEvent.FINAL_ANSWER): WorkflowState.FINALIZE,
            (WorkflowState.LLM_TURN, WorkflowEvent.BUDGET_EXHAUSTED): WorkflowState.FINALIZE,
            (WorkflowState.EXECUTE_TOOLS, WorkflowEvent.TOOLS_EXECUTED): WorkflowState.LLM_TURN,
            (
                WorkflowState.EXECUTE_TOOLS,
                WorkflowEvent.BUDGET_EXHAUSTED,
            ): WorkflowState.FINALIZE,
            (WorkflowState.FINALIZE, WorkflowEvent.FINALIZED): WorkflowState.PERSIST,
            (WorkflowState.PERSIST, WorkflowEvent.PERSISTED): WorkflowState.DONE,
        }
    )
)


class InvalidTransitionError(RuntimeError):
    def __init__(self, state: WorkflowState, event: WorkflowEvent) -> None:
        super().__init__(f"invalid workflow transition: {state.value} --{event.value}-->")
        self.state = state
        self.event = event


class WorkflowError(RuntimeError):
    """Workflow failure carrying a machine-readable code; ``str()`` is ``[CODE] message``."""

    def __init__(self, code: WorkflowErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"


def transition(state: WorkflowState, event: WorkflowEvent) -> WorkflowState:
    """Return the state reached from ``state`` on ``event``."""

    if event is WorkflowEvent.FAILED:
        if state in TERMINAL_STATES:
            raise InvalidTransitionError(state, event)
        return WorkflowState.FAILED
    target = _TRANSITIONS.get((state, event))
    if target is None:
        raise InvalidTransitionError(state, event)
    return target


__all__ = [
    "TERMINAL_STATES",
    "InvalidTransitionError",
    "WorkflowError",
    "WorkflowErrorCode",
    "WorkflowEvent",
    "WorkflowState",
    "transition",
]
