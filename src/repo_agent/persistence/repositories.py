"""
repo-agent — record repositories

File: src/repo_agent/persistence/repositories.py
Last updated: 2026-10-19

Purpose
- Repository/DAO classes for projects, tasks, runs, messages, tool calls, artifacts,
  and settings on top of ``StateDB``.

Functional requirements
- Messages and tool calls are append-only and listed in creation order.
- Artifacts are upserted on ``(task_id, phase_id, kind)`` with a NULL phase treated as ''.
- Every sync method has an ``*_async`` counterpart that offloads to a worker thread.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Final

from repo_agent.persistence.state_db import RowValue, StateDB, utc_now_iso

_MAX_PAGE_SIZE: Final[int] = 1_000

MESSAGE_ROLES: Final[frozenset[str]] = frozenset({"system", "user", "assistant", "tool"})


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True, slots=True)
class ProjectRecord:
    id: str
    name: str
    repo_path: str
    created_at: str
    last_opened_at: str

    @classmethod
    def from_row(cls, row: Mapping[str, RowValue]) -> ProjectRecord:
        return cls(
            id=_text(row, "id"),
            name=_text(row, "name"),
            repo_path=_text(row, "repo_path"),
            created_at=_text(row, "created_at"),
            last_opened_at=_text(row, "last_opened_at"),
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "repo_path": self.repo_path,
            "created_at": self.created_at,
            "last_opened_at": self.last_opened_at,
        }


@dataclass(frozen=True, slots=True)
class TaskRecord:
    id: str
    project_id: str
    title: str
    mode: str
    status: str
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: Mapping[str, RowValue]) -> TaskRecord:
        return cls(
            id=_text(row, "id"),
            project_id=_text(row, "project_id"),
            title=_text(row, "title"),
            mode=_text(row, "mode"),
            status=_text(row, "status"),
            created_at=_text(row, "created_at"),
            updated_at=_text(row, "updated_at"),
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "title": self.title,
            "mode": self.mode,
            "status": self.status,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True, slots=True)
class RunRecord:
    id: str
    task_id: str
    phase_id: str | None
    run_type: str
    provider: str
    model: str
    started_at: str
    ended_at: str | None

    @classmethod
    def from_row(cls, row: Mapping[str, RowValue]) -> RunRecord:
        return cls(
            id=_text(row, "id"),
            task_id=_text(row, "task_id"),
            phase_id=_optional_text(row, "phase_id"),
            run_type=_text(row, "run_type"),
            provider=_text(row, "provider"),
            model=_text(row, "model"),
            started_at=_text(row, "started_at"),
            ended_at=_optional_text(row, "ended_at"),
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "phase_id": self.phase_id,
            "run_type": self.run_type,
            "provider": self.provider,
            "model": self.model,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
        }


@dataclass(frozen=True, slots=True)
class MessageRecord:
    id: str
    run_id: str
    role: str
    content: str
    created_at: str

    @classmethod
    def from_row(cls, row: Mapping[str, RowValue]) -> MessageRecord:
        return cls(
            id=_text(row, "id"),
            run_id=_text(row, "run_id"),
            role=_text(row, "role"),
            content=_text(row, "content"),
            created_at=_text(row, "created_at"),
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "run_id": self.run_id,
            "role": self.role,
            "content": self.content,
            "created_at": self.created_at,
        }


@dataclass(frozen=True, slots=True)
class ToolCallRecord:
    id: str
    run_id: str
    name: str
    args_json: str
    result_json: str
    created_at: str

    @classmethod
    def from_row(cls, row: Mapping[str, RowValue]) -> ToolCallRecord:
        return cls(
            id=_text(row, "id"),
            run_id=_text(row, "run_id"),
            name=_text(row, "name"),
            args_json=_text(row, "args_json"),
            result_json=_text(row, "result_json"),
            created_at=_text(row, "created_at"),
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "run_id": self.run_id,
            "name": self.name,
            "args_json": self.args_json,
            "result_json": self.result_json,
            "created_at": self.created_at,
        }


@dataclass(frozen=True, slots=True)
class ArtifactRecord:
    id: str
    task_id: str
    phase_id: str | None
    kind: str
    content: str
    created_at: str
    pinned: bool

    @classmethod
    def from_row(cls, row: Mapping[str, RowValue]) -> ArtifactRecord:
        return cls(
            id=_text(row, "id"),
            task_id=_text(row, "task_id"),
            phase_id=_optional_text(row, "phase_id"),
            kind=_text(row, "kind"),
            content=_text(row, "content"),
            created_at=_text(row, "created_at"),
            pinned=bool(row.get("pinned")),
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "phase_id": self.phase_id,
            "kind": self.kind,
            "content": self.content,
            "created_at": self.created_at,
            "pinned": self.pinned,
        }


class _BaseRepo:
    def __init__(self, db: StateDB) -> None:
        self._db = db
        self._db.ensure_migrated()

    @staticmethod
    def _validate_page(limit: int, offset: int) -> None:
        if limit <= 0 or limit > _MAX_PAGE_SIZE:
            raise ValueError(f"limit must be in [1, {_MAX_PAGE_SIZE}]")
        if offset < 0:
            raise ValueError("offset must be >= 0")


class ProjectRepo(_BaseRepo):
    """Registered repositories the agent may operate on."""

    def create(self, name: str, repo_path: str) -> ProjectRecord:
        now = utc_now_iso()
        record = ProjectRecord(
            id=new_id(),
            name=_non_empty(name, "name"),
            repo_path=_non_empty(repo_path, "repo_path"),
            created_at=now,
            last_opened_at=now,
        )
        self._db.execute(
            """
            INSERT INTO projects (id, name, repo_path, created_at, last_opened_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (record.id, record.name, record.repo_path, record.created_at, record.last_opened_at),
        )
        return record

    def get(self, project_id: str) -> ProjectRecord | None:
        row = self._db.query_one("SELECT * FROM projects WHERE id = ?", (project_id,))
        return None if row is None else ProjectRecord.from_row(row)

    def list(self, *, limit: int = 100, offset: int = 0) -> list[ProjectRecord]:
        self._validate_page(limit, offset)
        rows = self._db.query_all(
            "SELECT * FROM projects ORDER BY last_opened_at DESC, id LIMIT ? OFFSET ?",
            (limit, offset),
        )
        return [ProjectRecord.from_row(row) for row in rows]

    def touch(self, project_id: str) -> None:
        self._db.execute(
            "UPDATE projects SET last_opened_at = ? WHERE id = ?",
            (utc_now_iso(), project_id),
        )

    async def get_async(self, project_id: str) -> ProjectRecord | None:
        return await asyncio.to_thread(self.get, project_id)


class TaskRepo(_BaseRepo):
    def create(self, project_id: str, title: str, *, mode: str = "plan") -> TaskRecord:
        now = utc_now_iso()
        record = TaskRecord(
            id=new_id(),
            project_id=project_id,
            title=_non_empty(title, "title"),
            mode=mode,
            status="open",
            created_at=now,
            updated_at=now,
        )
        self._db.execute(
            """
            INSERT INTO tasks (id, project_id, title, mode, status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.project_id,
                record.title,
                record.mode,
                record.status,
                record.created_at,
                record.updated_at,
            ),
        )
        return record

    def get(self, task_id: str) -> TaskRecord | None:
        row = self._db.query_one("SELECT * FROM tasks WHERE id = ?", (task_id,))
        return None if row is None else TaskRecord.from_row(row)

    def list_for_project(
        self, project_id: str, *, limit: int = 100, offset: int = 0
    ) -> list[TaskRecord]:
        self._validate_page(limit, offset)
        rows = self._db.query_all(
            """
            SELECT * FROM tasks WHERE project_id = ?
            ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?
            """,
            (project_id, limit, offset),
        )
        return [TaskRecord.from_row(row) for row in rows]

    async def get_async(self, task_id: str) -> TaskRecord | None:
        return await asyncio.to_thread(self.get, task_id)


class RunRepo(_BaseRepo):
    """Workflow run headers; one row per plan or verify invocation."""

    def create(
        self,
        task_id: str,
        *,
        run_type: str,
        provider: str,
        model: str,
        phase_id: str | None = None,
    ) -> RunRecord:
        record = RunRecord(
            id=new_id(),
            task_id=task_id,
            phase_id=phase_id,
            run_type=_non_empty(run_type, "run_type"),
            provider=provider,
            model=model,
            started_at=utc_now_iso(),
            ended_at=None,
        )
        self._db.execute(
            """
            INSERT INTO runs (id, task_id, phase_id, run_type, provider, model, started_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.task_id,
                record.phase_id,
                record.run_type,
                record.provider,
                record.model,
                record.started_at,
            ),
        )
        return record

    def get(self, run_id: str) -> RunRecord | None:
        row = self._db.query_one("SELECT * FROM runs WHERE id = ?", (run_id,))
        return None if row is None else RunRecord.from_row(row)

    def list_for_task(self, task_id: str, *, limit: int = 100, offset: int = 0) -> list[RunRecord]:
        self._validate_page(limit, offset)
        rows = self._db.query_all(
            """
            SELECT * FROM runs WHERE task_id = ?
            ORDER BY started_at DESC, rowid DESC LIMIT ? OFFSET ?
            """,
            (task_id, limit, offset),
        )
        return [RunRecord.from_row(row) for row in rows]

    def finish(self, run_id: str) -> None:
        self._db.execute(
            "UPDATE runs SET ended_at = ? WHERE id = ? AND ended_at IS NULL",
            (utc_now_iso(), run_id),
        )

    async def create_async(
        self,
        task_id: str,
        *,
        run_type: str,
        provider: str,
        model: str,
        phase_id: str | None = None,
    ) -> RunRecord:
        return await asyncio.to_thread(
            lambda: self.create(
                task_id, run_type=run_type, provider=provider, model=model, phase_id=phase_id
            )
        )

    async def finish_async(self, run_id: str) -> None:
        await asyncio.to_thread(self.finish, run_id)


class MessageRepo(_BaseRepo):
    def add(self, run_id: str, role: str, content: str) -> MessageRecord:
        if role not in MESSAGE_ROLES:
            raise ValueError(f"invalid message role: {role!r}")
        record = MessageRecord(
            id=new_id(),
            run_id=run_id,
            role=role,
            content=content,
            created_at=utc_now_iso(),
        )
        self._db.execute(
            "INSERT INTO messages (id, run_id, role, content, created_at) VALUES (?, ?, ?, ?, ?)",
            (record.id, record.run_id, record.role, record.content, record.created_at),
        )
        return record

    def list_for_run(self, run_id: str) -> list[MessageRecord]:
        rows = self._db.query_all(
            "SELECT * FROM messages WHERE run_id = ? ORDER BY created_at, rowid",
            (run_id,),
        )
        return [MessageRecord.from_row(row) for row in rows]

    async def add_async(self, run_id: str, role: str, content: str) -> MessageRecord:
        return await asyncio.to_thread(self.add, run_id, role, content)


class ToolCallRepo(_BaseRepo):
    """Append-only audit rows for executed tool calls."""

    def add(self, run_id: str, name: str, args_json: str, result_json: str) -> ToolCallRecord:
        record = ToolCallRecord(
            id=new_id(),
            run_id=run_id,
            name=name,
            args_json=args_json,
            result_json=result_json,
            created_at=utc_now_iso(),
        )
        self._db.execute(
            """
            INSERT INTO tool_calls (id, run_id, name, args_json, result_json, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.run_id,
                record.name,
                record.args_json,
                record.result_json,
                record.created_at,
            ),
        )
        return record

    def list_for_run(self, run_id: str) -> list[ToolCallRecord]:
        rows = self._db.query_all(
            "SELECT * FROM tool_calls WHERE run_id = ? ORDER BY created_at, rowid",
            (run_id,),
        )
        return [ToolCallRecord.from_row(row) for row in rows]


class ArtifactRepo(_BaseRepo):
    """Task outputs such as ``plan_md`` and ``verification_report``."""

    def upsert(
        self,
        task_id: str,
        kind: str,
        content: str,
        *,
        phase_id: str | None = None,
    ) -> ArtifactRecord:
        _non_empty(kind, "kind")
        with self._db.transaction() as tx:
            existing = self._db.query_one(
                """
                SELECT id FROM artifacts
                WHERE task_id = ? AND COALESCE(phase_id, '') = COALESCE(?, '') AND kind = ?
                """,
                (task_id, phase_id, kind),
                conn=tx,
            )
            now = utc_now_iso()
            if existing is None:
                artifact_id = new_id()
                self._db.execute(
                    """
                    INSERT INTO artifacts (id, task_id, phase_id, kind, content, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (artifact_id, task_id, phase_id, kind, content, now),
                    conn=tx,
                )
            else:
                artifact_id = _text(existing, "id")
                self._db.execute(
                    "UPDATE artifacts SET content = ?, created_at = ? WHERE id = ?",
                    (content, now, artifact_id),
                    conn=tx,
                )
            row = self._db.query_one(
                "SELECT * FROM artifacts WHERE id = ?", (artifact_id,), conn=tx
            )
        if row is None:
            raise LookupError(f"artifact vanished during upsert: {artifact_id}")
        return ArtifactRecord.from_row(row)

    def get(self, task_id: str, kind: str, *, phase_id: str | None = None) -> ArtifactRecord | None:
        row = self._db.query_one(
            """
            SELECT * FROM artifacts
            WHERE task_id = ? AND COALESCE(phase_id, '') = COALESCE(?, '') AND kind = ?
            """,
            (task_id, phase_id, kind),
        )
        return None if row is None else ArtifactRecord.from_row(row)

    def list_for_task(self, task_id: str) -> list[ArtifactRecord]:
        rows = self._db.query_all(
            "SELECT * FROM artifacts WHERE task_id = ? ORDER BY created_at, rowid",
            (task_id,),
        )
        return [ArtifactRecord.from_row(row) for row in rows]

    async def upsert_async(
        self,
        task_id: str,
        kind: str,
        content: str,
        *,
        phase_id: str | None = None,
    ) -> ArtifactRecord:
        return await asyncio.to_thread(
            lambda: self.upsert(task_id, kind, content, phase_id=phase_id)
        )

    async def get_async(
        self, task_id: str, kind: str, *, phase_id: str | None = None
    ) -> ArtifactRecord | None:
        return await asyncio.to_thread(lambda: self.get(task_id, kind, phase_id=phase_id))


class SettingsRepo(_BaseRepo):
    """String key/value settings; values are parsed by ``LlmSettings``."""

    def all(self) -> dict[str, str]:
        rows = self._db.query_all("SELECT key, value FROM settings ORDER BY key")
        return {_text(row, "key"): _text(row, "value") for row in rows}

    def get(self, key: str) -> str | None:
        row = self._db.query_one("SELECT value FROM settings WHERE key = ?", (key,))
        return None if row is None else _text(row, "value")

    def set(self, key: str, value: str) -> None:
        self.set_many({key: value})

    def set_many(self, values: Mapping[str, str]) -> None:
        now = utc_now_iso()
        self._db.executemany(
            """
            INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            [(_non_empty(key, "key"), str(value), now) for key, value in values.items()],
        )

    async def all_async(self) -> dict[str, str]:
        return await asyncio.to_thread(self.all)


def _text(row: Mapping[str, RowValue], key: str) -> str:
    value = row.get(key)
    if not isinstance(value, str):
        raise ValueError(f"column {key} must be text, got {type(value).__name__}")
    return value


def _optional_text(row: Mapping[str, RowValue], key: str) -> str | None:
    value = row.get(key)
    if value is None:
        return None
    return _text(row, key)


def _non_empty(value: str, path: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{path} must be a non-empty string")
    return value


__all__ = [
    "MESSAGE_ROLES",
    "ArtifactRecord",
    "ArtifactRepo",
    "MessageRecord",
    "MessageRepo",
    "ProjectRecord",
    "ProjectRepo",
    "RunRecord",
    "RunRepo",
    "SettingsRepo",
    "TaskRecord",
    "TaskRepo",
    "ToolCallRecord",
    "ToolCallRepo",
    "new_id",
]
