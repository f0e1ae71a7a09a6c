"""
repo-agent — shared workflow plumbing

File: src/repo_agent/workflows/runtime.py
Last updated: 2026-10-19

Purpose
- Record-store access, settings snapshot, chat-client construction, and state
  tracking shared by the plan and verify orchestrators.

Functional requirements
- Every persistence failure is reported as a ``WorkflowError`` with the code of the
  step that failed.
- The provider settings are read once per run; later edits do not affect it.
- A run that fails after its header row exists is still closed.
"""

from __future__ import annotations

import os
import sqlite3
from collections.abc import Callable, Mapping
from dataclasses import dataclass

import structlog

from repo_agent.config.loader import AppConfig
from repo_agent.config.settings import LlmSettings
from repo_agent.constants import (
    COMMAND_TIMEOUT_SECONDS,
    DEFAULT_API_KEY_ENV,
    GIT_TIMEOUT_SECONDS,
    LLM_REQUEST_TIMEOUT_SECONDS,
    SEARCH_TIMEOUT_SECONDS,
)
from repo_agent.llm.base import ChatProvider, LlmError, MissingApiKeyError
from repo_agent.llm.client import ChatClient
from repo_agent.persistence.repositories import (
    ArtifactRecord,
    ArtifactRepo,
    MessageRepo,
    ProjectRecord,
    ProjectRepo,
    RunRecord,
    RunRepo,
    SettingsRepo,
    TaskRecord,
    TaskRepo,
    ToolCallRepo,
)
from repo_agent.persistence.state_db import StateDB, StateDBError
from repo_agent.sandbox.paths import SandboxError
from repo_agent.tools.audit import AuditLog, AuditWriteError
from repo_agent.tools.base import RepoContext, ToolResult
from repo_agent.tools.dispatcher import dispatch
from repo_agent.workflows.state import (
    WorkflowError,
    WorkflowErrorCode,
    WorkflowEvent,
    WorkflowState,
    transition,
)

logger = structlog.get_logger(__name__)

ChatClientFactory = Callable[[LlmSettings], ChatProvider]

# Integrity errors pass through StateDB unwrapped; SettingsError is a ValueError.
_DB_FAILURES = (StateDBError, sqlite3.Error, LookupError, ValueError)


@dataclass(frozen=True, slots=True)
class RunSubject:
    """The task and project a run operates on, plus the confined repository handle."""

    task: TaskRecord
    project: ProjectRecord
    context: RepoContext


class StateTracker:
    """Current workflow state; every move goes through ``transition`` and is logged."""

    def __init__(self, workflow: str) -> None:
        self._workflow = workflow
        self._state = WorkflowState.INIT

    @property
    def state(self) -> WorkflowState:
        return self._state

    def advance(self, event: WorkflowEvent) -> WorkflowState:
        previous = self._state
        self._state = transition(previous, event)
        logger.debug(
            "workflow_transition",
            workflow=self._workflow,
            from_state=previous.value,
            transition_event=event.value,
            to_state=self._state.value,
        )
        return self._state


class WorkflowRuntime:
    """Repositories and collaborators for one orchestrator instance."""

    def __init__(
        self,
        db: StateDB,
        *,
        config: AppConfig | None = None,
        chat_factory: ChatClientFactory | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.db = db
        self.projects = ProjectRepo(db)
        self.tasks = TaskRepo(db)
        self.runs = RunRepo(db)
        self.messages = MessageRepo(db)
        self.artifacts = ArtifactRepo(db)
        self.settings = SettingsRepo(db)
        self.audit = AuditLog(ToolCallRepo(db))
        self._config = config
        self._environ = environ
        self._chat_factory = chat_factory if chat_factory is not None else self._default_client

    @property
    def api_key_env(self) -> str:
        return self._config.api_key_env if self._config is not None else DEFAULT_API_KEY_ENV

    def chat_client(self, settings: LlmSettings) -> ChatProvider:
        return self._chat_factory(settings)

    async def load_subject(self, project_id: str, task_id: str) -> RunSubject:
        try:
            task = await self.tasks.get_async(task_id)
            project = await self.projects.get_async(project_id)
        except _DB_FAILURES as exc:
            raise WorkflowError(WorkflowErrorCode.DB_ERROR, str(exc)) from exc
        if task is None:
            raise WorkflowError(WorkflowErrorCode.DB_ERROR, f"Task not found: {task_id}")
        if project is None:
            raise WorkflowError(WorkflowErrorCode.DB_ERROR, f"Project not found: {project_id}")

        try:
            context = RepoContext(
                root=project.repo_path,
                project_id=project.id,
                git_timeout_seconds=self._timeout("git_timeout_seconds", GIT_TIMEOUT_SECONDS),
                search_timeout_seconds=self._timeout(
                    "search_timeout_seconds", SEARCH_TIMEOUT_SECONDS
                ),
                command_timeout_seconds=self._timeout(
                    "command_timeout_seconds", COMMAND_TIMEOUT_SECONDS
                ),
            )
        except SandboxError as exc:
            raise WorkflowError(
                WorkflowErrorCode.DB_ERROR, f"Project repository is not accessible: {exc}"
            ) from exc
        return RunSubject(task=task, project=project, context=context)

    async def load_settings(self) -> LlmSettings:
        """Snapshot provider settings and require an API key."""

        try:
            values = await self.settings.all_async()
            settings = LlmSettings.from_settings(
                values,
                environ=os.environ if self._environ is None else self._environ,
                api_key_env=self.api_key_env,
            )
        except _DB_FAILURES as exc:
            raise WorkflowError(WorkflowErrorCode.DB_ERROR, str(exc)) from exc
        if not settings.has_api_key:
            raise WorkflowError(
                WorkflowErrorCode.NO_API_KEY,
                f"API key not set in settings or {self.api_key_env} environment variable",
            )
        return settings

    async def create_run(self, task_id: str, run_type: str, settings: LlmSettings) -> RunRecord:
        try:
            return await self.runs.create_async(
                task_id,
                run_type=run_type,
                provider=settings.provider_name,
                model=settings.model,
            )
        except _DB_FAILURES as exc:
            raise WorkflowError(WorkflowErrorCode.RUN_ERROR, str(exc)) from exc

    async def log_message(self, run_id: str, role: str, content: str) -> None:
        try:
            await self.messages.add_async(run_id, role, content)
        except _DB_FAILURES as exc:
            raise WorkflowError(WorkflowErrorCode.LOG_ERROR, str(exc)) from exc

    async def run_tool(
        self, name: str, args: Mapping[str, object], context: RepoContext
    ) -> ToolResult:
        """Dispatch one tool call with auditing; ``ToolError`` passes through to the caller."""

        try:
            return await dispatch(name, args, context, audit=self.audit)
        except AuditWriteError as exc:
            raise WorkflowError(WorkflowErrorCode.LOG_ERROR, str(exc)) from exc

    async def load_artifact(self, task_id: str, kind: str) -> ArtifactRecord | None:
        try:
            return await self.artifacts.get_async(task_id, kind)
        except _DB_FAILURES as exc:
            raise WorkflowError(WorkflowErrorCode.DB_ERROR, str(exc)) from exc

    async def save_artifact(self, task_id: str, kind: str, content: str) -> ArtifactRecord:
        try:
            return await self.artifacts.upsert_async(task_id, kind, content)
        except _DB_FAILURES as exc:
            raise WorkflowError(WorkflowErrorCode.ARTIFACT_ERROR, str(exc)) from exc

    async def finish_run(self, run_id: str) -> None:
        try:
            await self.runs.finish_async(run_id)
        except _DB_FAILURES as exc:
            raise WorkflowError(WorkflowErrorCode.RUN_ERROR, str(exc)) from exc

    async def close_failed_run(self, run_id: str | None, error: WorkflowError) -> None:
        """Stamp ``ended_at`` on a failed run; the original error is what the caller raises."""

        logger.warning("workflow_failed", run_id=run_id, code=error.code.value, error=error.message)
        if run_id is None:
            return
        try:
            await self.runs.finish_async(run_id)
        except _DB_FAILURES as exc:
            logger.warning("run_close_failed", run_id=run_id, error=str(exc))

    def _timeout(self, name: str, default: float) -> float:
        if self._config is None:
            return default
        return float(getattr(self._config, name))

    def _default_client(self, settings: LlmSettings) -> ChatProvider:
        timeout = (
            self._config.request_timeout_seconds
            if self._config is not None
            else LLM_REQUEST_TIMEOUT_SECONDS
        )
        return ChatClient(settings, timeout_seconds=timeout, api_key_env=self.api_key_env)


def llm_failure(exc: LlmError) -> WorkflowError:
    if isinstance(exc, MissingApiKeyError):
        return WorkflowError(WorkflowErrorCode.NO_API_KEY, str(exc))
    return WorkflowError(WorkflowErrorCode.LLM_ERROR, str(exc))


__all__ = [
    "ChatClientFactory",
    "RunSubject",
    "StateTracker",
    "WorkflowRuntime",
    "llm_failure",
]
