"""Unit tests for the workflow state machine."""

from __future__ import annotations

import pytest
from structlog.testing import capture_logs

from repo_agent.workflows import InvalidTransitionError, WorkflowEvent, WorkflowState, transition
from repo_agent.workflows.runtime import StateTracker
from repo_agent.workflows.state import TERMINAL_STATES, WorkflowError, WorkflowErrorCode


def test_plan_path_with_one_tool_round() -> None:
    events = [
        WorkflowEvent.LOADED,
        WorkflowEvent.PROMPT_READY,
        WorkflowEvent.TOOL_CALLS_RECEIVED,
        WorkflowEvent.TOOLS_EXECUTED,
        WorkflowEvent.FINAL_ANSWER,
        WorkflowEvent.FINALIZED,
        WorkflowEvent.PERSISTED,
    ]
    tracker = StateTracker("plan")
    visited = [tracker.advance(event) for event in events]

    assert visited == [
        WorkflowState.BUILD_PROMPT,
        WorkflowState.LLM_TURN,
        WorkflowState.EXECUTE_TOOLS,
        WorkflowState.LLM_TURN,
        WorkflowState.FINALIZE,
        WorkflowState.PERSIST,
        WorkflowState.DONE,
    ]


@pytest.mark.parametrize("state", [WorkflowState.LLM_TURN, WorkflowState.EXECUTE_TOOLS])
def test_budget_exhaustion_finalizes(state: WorkflowState) -> None:
    assert transition(state, WorkflowEvent.BUDGET_EXHAUSTED) is WorkflowState.FINALIZE


@pytest.mark.parametrize(
    "state", [state for state in WorkflowState if state not in TERMINAL_STATES]
)
def test_failure_is_reachable_from_every_live_state(state: WorkflowState) -> None:
    assert transition(state, WorkflowEvent.FAILED) is WorkflowState.FAILED


@pytest.mark.parametrize("state", sorted(TERMINAL_STATES))
def test_terminal_states_accept_nothing(state: WorkflowState) -> None:
    for event in WorkflowEvent:
        with pytest.raises(InvalidTransitionError):
            transition(state, event)


def test_out_of_order_event_is_rejected() -> None:
    with pytest.raises(InvalidTransitionError, match="init --persisted-->") as excinfo:
        transition(WorkflowState.INIT, WorkflowEvent.PERSISTED)

    assert excinfo.value.state is WorkflowState.INIT
    assert excinfo.value.event is WorkflowEvent.PERSISTED


def test_workflow_error_string_carries_code() -> None:
    error = WorkflowError(WorkflowErrorCode.DB_ERROR, "Task not found: t1")

    assert str(error) == "[DB_ERROR] Task not found: t1"
    assert error.message == "Task not found: t1"


def test_tracker_logs_each_transition() -> None:
    tracker = StateTracker("verify")

    with capture_logs() as logs:
        tracker.advance(WorkflowEvent.LOADED)
        tracker.advance(WorkflowEvent.FAILED)

    assert [(e["from_state"], e["transition_event"], e["to_state"]) for e in logs] == [
        (WorkflowState.INIT.value, WorkflowEvent.LOADED.value, WorkflowState.BUILD_PROMPT.value),
        (WorkflowState.BUILD_PROMPT.value, WorkflowEvent.FAILED.value, WorkflowState.FAILED.value),
    ]
    assert {e["event"] for e in logs} == {"workflow_transition"}
