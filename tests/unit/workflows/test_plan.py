"""Unit tests for the plan workflow driven by a scripted chat provider."""

from __future__ import annotations

import json
import shutil
import sqlite3
from collections.abc import Sequence
from pathlib import Path

import pytest

from repo_agent.llm.base import ApiStatusError, ChatMessage, MissingApiKeyError
from repo_agent.persistence import (
    ArtifactRepo,
    MessageRepo,
    RunRepo,
    SettingsRepo,
    StateDB,
    ToolCallRepo,
)
from repo_agent.sandbox.process import CommandTimeoutError, SpawnResult
from repo_agent.tools import git
from repo_agent.tools.schemas import tool_schemas
from repo_agent.workflows import PlanWorkflow, WorkflowError, WorkflowErrorCode
from repo_agent.workflows.plan import (
    PLAN_ARTIFACT_KIND,
    TRUNCATION_NOTE,
    exhausted_plan_text,
    format_tool_content,
    trim_history,
)
from tests.unit.workflows.fakes import (
    TEST_API_KEY,
    ScriptedChat,
    answer,
    call,
    make_runtime,
    make_subject,
    tool_turn,
)


@pytest.mark.asyncio
async def test_immediate_answer_is_stored_as_plan(state_db: StateDB, repo_root: Path) -> None:
    subject = make_subject(state_db, repo_root)
    chat = ScriptedChat([answer("# Implementation Plan: Greeting")])

    result = await PlanWorkflow(make_runtime(state_db, chat)).run(
        subject.project_id, subject.task_id
    )

    assert result.plan_md == "# Implementation Plan: Greeting"
    assert result.tool_calls_count == 0
    assert result.truncated is False
    assert len(chat.requests) == 1
    assert chat.requests[0].tools == tool_schemas()
    assert [m.role for m in chat.requests[0].messages] == ["system", "user"]
    assert chat.settings_seen[0].api_key == TEST_API_KEY

    artifact = ArtifactRepo(state_db).get(subject.task_id, PLAN_ARTIFACT_KIND)
    assert artifact is not None
    assert artifact.content == result.plan_md

    run = RunRepo(state_db).get(result.run_id)
    assert run is not None
    assert run.run_type == "plan"
    assert run.provider == "openai"
    assert run.model == "z-ai/glm-4.7-flash"
    assert run.ended_at is not None

    logged = MessageRepo(state_db).list_for_run(result.run_id)
    assert [m.role for m in logged] == ["system", "user", "assistant"]
    assert logged[1].content.startswith("Task: Add a greeting flag\n\nRepository: ")


@pytest.mark.asyncio
async def test_tool_round_trip_keeps_assistant_turn_before_results(
    state_db: StateDB, repo_root: Path
) -> None:
    subject = make_subject(state_db, repo_root)
    chat = ScriptedChat(
        [
            tool_turn(call("read_file", '{"path": "README.md"}', call_id="call_readme")),
            answer("# Plan"),
        ]
    )

    result = await PlanWorkflow(make_runtime(state_db, chat)).run(
        subject.project_id, subject.task_id
    )

    second = chat.requests[1].messages
    assert [m.role for m in second] == ["system", "user", "assistant", "tool"]
    assert second[2].tool_calls is not None
    assert second[2].tool_calls[0].id == "call_readme"
    assert second[3].tool_call_id == "call_readme"
    tool_payload = json.loads(second[3].content or "")
    assert tool_payload["content"] == "# Demo\n\nhello world\n"
    assert tool_payload["truncated"] is False

    assert result.tool_calls_count == 1
    logged = MessageRepo(state_db).list_for_run(result.run_id)
    assert [m.role for m in logged] == ["system", "user", "assistant", "tool", "assistant"]
    assert logged[2].content == "Calling tools: read_file"

    audited = ToolCallRepo(state_db).list_for_run(result.run_id)
    assert [record.name for record in audited] == ["read_file"]
    assert json.loads(audited[0].args_json) == {
        "path": "README.md",
        "project_id": subject.project_id,
    }


@pytest.mark.asyncio
async def test_assistant_text_alongside_tool_calls_is_logged(
    state_db: StateDB, repo_root: Path
) -> None:
    subject = make_subject(state_db, repo_root)
    chat = ScriptedChat(
        [
            tool_turn(call("git_status"), content="Let me look around."),
            answer("# Plan"),
        ]
    )

    result = await PlanWorkflow(make_runtime(state_db, chat)).run(
        subject.project_id, subject.task_id
    )

    logged = MessageRepo(state_db).list_for_run(result.run_id)
    assert logged[2].content == "Let me look around."


@pytest.mark.asyncio
async def test_tool_failures_become_error_messages(state_db: StateDB, repo_root: Path) -> None:
    subject = make_subject(state_db, repo_root)
    chat = ScriptedChat(
        [
            tool_turn(
                call("read_file", "{not json", call_id="c1"),
                call("drop_database", "{}", call_id="c2"),
                call("read_file", '{"path": "../../etc/passwd"}', call_id="c3"),
            ),
            answer("# Plan"),
        ]
    )

    result = await PlanWorkflow(make_runtime(state_db, chat)).run(
        subject.project_id, subject.task_id
    )

    tool_messages = [m for m in chat.requests[1].messages if m.role == "tool"]
    assert [m.tool_call_id for m in tool_messages] == ["c1", "c2", "c3"]
    errors = [json.loads(m.content or "")["error"] for m in tool_messages]
    assert errors[0].startswith("Failed to parse tool args")
    assert errors[1] == "Unknown tool: drop_database"
    assert "escapes repository root" in errors[2]

    assert result.tool_calls_count == 3
    audited = ToolCallRepo(state_db).list_for_run(result.run_id)
    assert [record.name for record in audited] == ["read_file"]


@pytest.mark.asyncio
async def test_iteration_budget_exhaustion_stores_fallback(
    state_db: StateDB, repo_root: Path
) -> None:
    subject = make_subject(state_db, repo_root)
    chat = ScriptedChat([tool_turn(call("git_status"))])

    result = await PlanWorkflow(make_runtime(state_db, chat), max_iterations=3).run(
        subject.project_id, subject.task_id
    )

    assert len(chat.requests) == 3
    assert result.tool_calls_count == 3
    assert result.truncated is True
    assert result.plan_md == exhausted_plan_text(3) + TRUNCATION_NOTE
    assert result.plan_md.startswith("**Error**: Reached maximum tool call limit (3).")
    artifact = ArtifactRepo(state_db).get(subject.task_id, PLAN_ARTIFACT_KIND)
    assert artifact is not None
    assert artifact.content == result.plan_md


@pytest.mark.asyncio
async def test_context_overflow_trims_history_and_marks_plan(
    state_db: StateDB, repo_root: Path
) -> None:
    subject = make_subject(state_db, repo_root)
    chat = ScriptedChat(
        [
            tool_turn(call("git_status", call_id="a")),
            tool_turn(call("list_files", call_id="b")),
            answer("# Plan"),
        ]
    )

    result = await PlanWorkflow(
        make_runtime(state_db, chat), context_max_chars=1, keep_recent=2
    ).run(subject.project_id, subject.task_id)

    assert [m.role for m in chat.requests[0].messages] == ["system", "user"]
    assert [m.role for m in chat.requests[1].messages] == ["system", "assistant", "tool"]
    assert [m.role for m in chat.requests[2].messages] == ["system", "assistant", "tool"]
    assert chat.requests[2].messages[2].tool_call_id == "b"
    assert result.truncated is True
    assert result.plan_md == "# Plan" + TRUNCATION_NOTE


@pytest.mark.asyncio
async def test_none_content_final_answer_is_empty_plan(state_db: StateDB, repo_root: Path) -> None:
    subject = make_subject(state_db, repo_root)
    chat = ScriptedChat([answer(None)])

    result = await PlanWorkflow(make_runtime(state_db, chat)).run(
        subject.project_id, subject.task_id
    )

    assert result.plan_md == ""


@pytest.mark.asyncio
async def test_rerun_replaces_plan_artifact(state_db: StateDB, repo_root: Path) -> None:
    subject = make_subject(state_db, repo_root)

    await PlanWorkflow(make_runtime(state_db, ScriptedChat([answer("first")]))).run(
        subject.project_id, subject.task_id
    )
    await PlanWorkflow(make_runtime(state_db, ScriptedChat([answer("second")]))).run(
        subject.project_id, subject.task_id
    )

    artifacts = ArtifactRepo(state_db).list_for_task(subject.task_id)
    assert [(a.kind, a.content) for a in artifacts] == [(PLAN_ARTIFACT_KIND, "second")]
    assert len(RunRepo(state_db).list_for_task(subject.task_id)) == 2


@pytest.mark.asyncio
async def test_missing_api_key_fails_before_run_exists(
    state_db: StateDB, repo_root: Path
) -> None:
    subject = make_subject(state_db, repo_root)
    chat = ScriptedChat([answer("unused")])

    with pytest.raises(WorkflowError) as excinfo:
        await PlanWorkflow(make_runtime(state_db, chat, environ={})).run(
            subject.project_id, subject.task_id
        )

    assert excinfo.value.code is WorkflowErrorCode.NO_API_KEY
    assert "REPO_AGENT_API_KEY" in str(excinfo.value)
    assert chat.requests == []
    assert RunRepo(state_db).list_for_task(subject.task_id) == []


@pytest.mark.asyncio
async def test_stored_api_key_takes_precedence(state_db: StateDB, repo_root: Path) -> None:
    subject = make_subject(state_db, repo_root)
    SettingsRepo(state_db).set("api_key", "sk-stored-key-00000000")
    chat = ScriptedChat([answer("plan")])

    await PlanWorkflow(make_runtime(state_db, chat)).run(subject.project_id, subject.task_id)

    assert chat.settings_seen[0].api_key == "sk-stored-key-00000000"


@pytest.mark.asyncio
async def test_unknown_task_and_project_are_db_errors(state_db: StateDB, repo_root: Path) -> None:
    subject = make_subject(state_db, repo_root)
    workflow = PlanWorkflow(make_runtime(state_db, ScriptedChat([answer("x")])))

    with pytest.raises(WorkflowError, match="Task not found: nope") as task_error:
        await workflow.run(subject.project_id, "nope")
    with pytest.raises(WorkflowError, match="Project not found: nope") as project_error:
        await workflow.run("nope", subject.task_id)

    assert task_error.value.code is WorkflowErrorCode.DB_ERROR
    assert project_error.value.code is WorkflowErrorCode.DB_ERROR


@pytest.mark.asyncio
async def test_vanished_repository_is_db_error(state_db: StateDB, repo_root: Path) -> None:
    subject = make_subject(state_db, repo_root)
    shutil.rmtree(repo_root)

    with pytest.raises(WorkflowError, match="not accessible") as excinfo:
        await PlanWorkflow(make_runtime(state_db, ScriptedChat([answer("x")]))).run(
            subject.project_id, subject.task_id
        )

    assert excinfo.value.code is WorkflowErrorCode.DB_ERROR


@pytest.mark.asyncio
async def test_provider_failure_closes_run_without_artifact(
    state_db: StateDB, repo_root: Path
) -> None:
    subject = make_subject(state_db, repo_root)
    chat = ScriptedChat([ApiStatusError(500, "upstream exploded")])

    with pytest.raises(WorkflowError) as excinfo:
        await PlanWorkflow(make_runtime(state_db, chat)).run(subject.project_id, subject.task_id)

    assert excinfo.value.code is WorkflowErrorCode.LLM_ERROR
    assert str(excinfo.value) == "[LLM_ERROR] API error 500: upstream exploded"
    runs = RunRepo(state_db).list_for_task(subject.task_id)
    assert len(runs) == 1
    assert runs[0].ended_at is not None
    assert ArtifactRepo(state_db).get(subject.task_id, PLAN_ARTIFACT_KIND) is None


@pytest.mark.asyncio
async def test_client_side_missing_key_maps_to_no_api_key(
    state_db: StateDB, repo_root: Path
) -> None:
    subject = make_subject(state_db, repo_root)
    chat = ScriptedChat([MissingApiKeyError()])

    with pytest.raises(WorkflowError) as excinfo:
        await PlanWorkflow(make_runtime(state_db, chat)).run(subject.project_id, subject.task_id)

    assert excinfo.value.code is WorkflowErrorCode.NO_API_KEY


def test_trim_history_under_budget_is_untouched() -> None:
    history = [ChatMessage.system("s"), ChatMessage.user("u")]

    assert trim_history(history, max_chars=100) == (history, False)


def test_trim_history_keeps_first_and_recent_messages() -> None:
    history = [ChatMessage.system("s" * 10)] + [ChatMessage.user(str(i) * 10) for i in range(10)]

    trimmed, cut = trim_history(history, max_chars=50, keep_recent=6)

    assert cut is True
    assert trimmed[0] is history[0]
    assert trimmed[1:] == history[-6:]


def test_trim_history_never_duplicates_the_first_message() -> None:
    history = [ChatMessage.system("s" * 10), ChatMessage.user("u" * 10), ChatMessage.user("v" * 10)]

    trimmed, cut = trim_history(history, max_chars=5, keep_recent=6)

    assert cut is True
    assert trimmed == history


def test_trim_history_short_history_over_budget_is_flagged() -> None:
    history = [ChatMessage.system("s" * 100)]

    assert trim_history(history, max_chars=10) == (history, True)


def test_format_tool_content_is_compact_json() -> None:
    assert format_tool_content({"path": "é", "n": [1, 2]}) == '{"path":"é","n":[1,2]}'


@pytest.mark.asyncio
async def test_tool_timeout_becomes_error_message_and_loop_continues(
    state_db: StateDB, repo_root: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    def hanging_git(program: str, args: Sequence[str], **_: object) -> SpawnResult:
        raise CommandTimeoutError(
            f"Command timed out after 10s: {program} {' '.join(args)}", timeout_seconds=10.0
        )

    monkeypatch.setattr(git, "spawn_bounded", hanging_git)
    subject = make_subject(state_db, repo_root)
    chat = ScriptedChat([tool_turn(call("git_status", call_id="slow")), answer("# Plan")])

    result = await PlanWorkflow(make_runtime(state_db, chat)).run(
        subject.project_id, subject.task_id
    )

    assert len(chat.requests) == 2
    tool_message = chat.requests[1].messages[-1]
    assert tool_message.tool_call_id == "slow"
    error = json.loads(tool_message.content or "")["error"]
    assert error.startswith("Command timed out after 10s: git status")
    assert result.plan_md == "# Plan"

    audited = ToolCallRepo(state_db).list_for_run(result.run_id)
    assert json.loads(audited[0].result_json) == {"error": error}


@pytest.mark.asyncio
async def test_audit_write_failure_is_log_error_and_closes_run(
    state_db: StateDB, repo_root: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    def broken_add(self: ToolCallRepo, *args: object, **kwargs: object) -> None:
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(ToolCallRepo, "add", broken_add)
    subject = make_subject(state_db, repo_root)
    chat = ScriptedChat([tool_turn(call("list_files")), answer("# Plan")])

    with pytest.raises(WorkflowError, match="disk I/O error") as excinfo:
        await PlanWorkflow(make_runtime(state_db, chat)).run(subject.project_id, subject.task_id)

    assert excinfo.value.code is WorkflowErrorCode.LOG_ERROR
    assert len(chat.requests) == 1
    runs = RunRepo(state_db).list_for_task(subject.task_id)
    assert len(runs) == 1
    assert runs[0].ended_at is not None
    assert ArtifactRepo(state_db).get(subject.task_id, PLAN_ARTIFACT_KIND) is None


@pytest.mark.asyncio
async def test_malformed_numeric_setting_uses_default(state_db: StateDB, repo_root: Path) -> None:
    subject = make_subject(state_db, repo_root)
    settings = SettingsRepo(state_db)
    settings.set("temperature", "warm")
    settings.set("max_tokens", "lots")
    chat = ScriptedChat([answer("# Plan")])

    result = await PlanWorkflow(make_runtime(state_db, chat)).run(
        subject.project_id, subject.task_id
    )

    assert chat.settings_seen[0].temperature == 0.2
    assert chat.settings_seen[0].max_tokens == 4000
    artifact = ArtifactRepo(state_db).get(subject.task_id, PLAN_ARTIFACT_KIND)
    assert artifact is not None
    assert artifact.content == result.plan_md


@pytest.mark.asyncio
async def test_model_supplied_project_id_is_not_overwritten(
    state_db: StateDB, repo_root: Path
) -> None:
    subject = make_subject(state_db, repo_root)
    chat = ScriptedChat(
        [
            tool_turn(call("read_file", '{"path": "README.md", "project_id": "other"}')),
            answer("# Plan"),
        ]
    )

    result = await PlanWorkflow(make_runtime(state_db, chat)).run(
        subject.project_id, subject.task_id
    )

    tool_payload = json.loads(chat.requests[1].messages[-1].content or "")
    assert tool_payload["content"] == "# Demo\n\nhello world\n"
    audited = ToolCallRepo(state_db).list_for_run(result.run_id)
    assert json.loads(audited[0].args_json)["project_id"] == "other"
