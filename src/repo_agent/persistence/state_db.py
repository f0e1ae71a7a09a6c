"""
repo-agent — SQLite record store

File: src/repo_agent/persistence/state_db.py
Last updated: 2026-10-19

Purpose
- Own the on-disk layout of projects, tasks, runs, messages, tool calls, artifacts,
  and provider settings, plus the short-lived connections that read and write them.

Functional requirements
- Migrations are ordered, checksummed, and recorded in ``schema_versions``; a
  recorded migration whose checksum differs from the shipped one is refused.
- A database written by a newer build is refused rather than downgraded.
- The ``settings`` table is seeded with provider defaults exactly once; later
  migrations never overwrite values the user changed.
- Every connection runs with ``foreign_keys=ON`` and WAL journaling.

Non-functional requirements
- SQLITE_BUSY is retried with bounded exponential backoff, then surfaced as
  ``StateDBBusyError``. Constraint violations pass through as ``sqlite3.IntegrityError``.
"""

from __future__ import annotations

import hashlib
import json
import sqlite3
import time
from collections.abc import Callable, Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Final, TypeVar

from repo_agent.constants import STATE_DB_SCHEMA_VERSION

RowValue = str | int | float | bytes | None
SQLParams = Sequence[RowValue]
Row = dict[str, RowValue]

_T = TypeVar("_T")

DEFAULT_BUSY_TIMEOUT_MS: Final[int] = 5_000
DEFAULT_BUSY_RETRY_LIMIT: Final[int] = 4
DEFAULT_BUSY_RETRY_BACKOFF_MS: Final[int] = 25

# Provider defaults written on first migration. Values are stored as text.
DEFAULT_SETTINGS: Final[tuple[tuple[str, str], ...]] = (
    ("provider_name", "openai"),
    ("base_url", "https://openrouter.ai/api/v1"),
    ("model", "z-ai/glm-4.7-flash"),
    ("temperature", "0.2"),
    ("max_tokens", "4000"),
    ("extra_headers_json", "{}"),
)


class StateDBError(RuntimeError):
    """Base class for record store errors."""


class StateDBBusyError(StateDBError):
    """The database stayed locked after every retry."""


class StateDBMigrationError(StateDBError):
    """The schema on disk cannot be brought to this build's version."""


class StateDBCorruptionError(StateDBError):
    """SQLite reported a malformed or foreign file."""


@dataclass(frozen=True, slots=True)
class Migration:
    """One schema step: a ``;``-separated DDL script and an optional data hook."""

    version: int
    name: str
    script: str
    seed: Callable[[sqlite3.Connection], None] | None = None

    @property
    def statements(self) -> tuple[str, ...]:
        return tuple(part.strip() for part in self.script.split(";") if part.strip())

    @property
    def checksum(self) -> str:
        # Whitespace-insensitive so reformatting the script does not trip the check.
        body = "\n".join(" ".join(stmt.split()) for stmt in self.statements)
        return hashlib.sha256(f"{self.version}:{self.name}\n{body}".encode()).hexdigest()


@dataclass(frozen=True, slots=True)
class AppliedMigration:
    version: int
    name: str
    checksum: str
    applied_at: str


_LEDGER_DDL: Final[str] = """
CREATE TABLE IF NOT EXISTS schema_versions (
    version INTEGER PRIMARY KEY CHECK (version > 0),
    name TEXT NOT NULL,
    checksum TEXT NOT NULL CHECK (length(checksum) = 64),
    applied_at TEXT NOT NULL
)
"""

_CORE_RECORDS_DDL: Final[str] = """
CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    repo_path TEXT NOT NULL,
    created_at TEXT NOT NULL,
    last_opened_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    title TEXT NOT NULL,
    mode TEXT NOT NULL DEFAULT 'plan',
    status TEXT NOT NULL DEFAULT 'open',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_tasks_project_created ON tasks(project_id, created_at DESC);
CREATE TABLE IF NOT EXISTS runs (
    id TEXT PRIMARY KEY,
    task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
    phase_id TEXT,
    run_type TEXT NOT NULL,
    provider TEXT NOT NULL,
    model TEXT NOT NULL,
    started_at TEXT NOT NULL,
    ended_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_runs_task_started ON runs(task_id, started_at DESC);
CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    run_id TEXT NOT NULL REFERENCES runs(id) ON DELETE CASCADE,
    role TEXT NOT NULL CHECK (role IN ('system','user','assistant','tool')),
    content TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_messages_run_created ON messages(run_id, created_at);
CREATE TABLE IF NOT EXISTS tool_calls (
    id TEXT PRIMARY KEY,
    run_id TEXT NOT NULL REFERENCES runs(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    args_json TEXT NOT NULL,
    result_json TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_tool_calls_run_created ON tool_calls(run_id, created_at);
CREATE TABLE IF NOT EXISTS artifacts (
    id TEXT PRIMARY KEY,
    task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
    phase_id TEXT,
    kind TEXT NOT NULL,
    content TEXT NOT NULL,
    created_at TEXT NOT NULL,
    pinned INTEGER NOT NULL DEFAULT 0 CHECK (pinned IN (0, 1))
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_artifacts_task_phase_kind
    ON artifacts(task_id, COALESCE(phase_id, ''), kind)
"""

_SETTINGS_DDL: Final[str] = """
CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""


def _seed_default_settings(conn: sqlite3.Connection) -> None:
    stamp = utc_now_iso()
    conn.executemany(
        "INSERT OR IGNORE INTO settings (key, value, updated_at) VALUES (?, ?, ?)",
        [(key, value, stamp) for key, value in DEFAULT_SETTINGS],
    )


MIGRATIONS: Final[tuple[Migration, ...]] = (
    Migration(1, "core_records", _CORE_RECORDS_DDL),
    Migration(2, "provider_settings", _SETTINGS_DDL, seed=_seed_default_settings),
)


def _sqlite_codes(*names: str) -> frozenset[int]:
    values = (getattr(sqlite3, name, None) for name in names)
    return frozenset(value for value in values if isinstance(value, int))


_BUSY_CODES: Final[frozenset[int]] = _sqlite_codes(
    "SQLITE_BUSY", "SQLITE_BUSY_RECOVERY", "SQLITE_BUSY_SNAPSHOT", "SQLITE_LOCKED"
)
_CORRUPT_CODES: Final[frozenset[int]] = _sqlite_codes("SQLITE_CORRUPT", "SQLITE_NOTADB")
_BUSY_HINTS: Final[tuple[str, ...]] = ("is locked",)
_CORRUPT_HINTS: Final[tuple[str, ...]] = ("malformed", "not a database")


def _classify(exc: sqlite3.Error) -> type[StateDBError]:
    code = getattr(exc, "sqlite_errorcode", None)
    message = str(exc).lower()
    if code in _CORRUPT_CODES or any(hint in message for hint in _CORRUPT_HINTS):
        return StateDBCorruptionError
    if code in _BUSY_CODES or any(hint in message for hint in _BUSY_HINTS):
        return StateDBBusyError
    return StateDBError


class StateDB:
    """Migration-aware front door to the SQLite record store.

    Methods accept an optional ``conn`` so callers can group several statements in
    one ``transaction()``; without it each call opens and closes its own connection.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        busy_retry_limit: int = DEFAULT_BUSY_RETRY_LIMIT,
        busy_retry_backoff_ms: int = DEFAULT_BUSY_RETRY_BACKOFF_MS,
    ) -> None:
        for label, value in (
            ("busy_timeout_ms", busy_timeout_ms),
            ("busy_retry_limit", busy_retry_limit),
            ("busy_retry_backoff_ms", busy_retry_backoff_ms),
        ):
            if value < 0:
                raise ValueError(f"{label} must be >= 0")

        self._path = Path(path).expanduser()
        self._timeout_s = busy_timeout_ms / 1000.0
        self._busy_timeout_ms = busy_timeout_ms
        self._retries = busy_retry_limit
        self._backoff_s = busy_retry_backoff_ms / 1000.0
        self._savepoints = 0
        self._migrated = False

    @property
    def path(self) -> Path:
        return self._path

    # -- connections -----------------------------------------------------------------

    def connect(self) -> sqlite3.Connection:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            self._path,
            timeout=self._timeout_s,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys=ON")
            conn.execute(f"PRAGMA busy_timeout={self._busy_timeout_ms}")
            mode = conn.execute("PRAGMA journal_mode=WAL").fetchone()
        except sqlite3.Error as exc:
            conn.close()
            raise _classify(exc)(f"cannot open record store {self._path}: {exc}") from exc
        if mode is None or str(mode[0]).lower() != "wal":
            conn.close()
            raise StateDBError(f"record store {self._path} refused WAL journaling")
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self.connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _borrow(self, conn: sqlite3.Connection | None) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
            return
        with self.connection() as owned:
            yield owned

    @contextmanager
    def transaction(
        self,
        *,
        conn: sqlite3.Connection | None = None,
        immediate: bool = True,
    ) -> Iterator[sqlite3.Connection]:
        """Atomic block; nests as a SAVEPOINT when a transaction is already open."""

        with self._borrow(conn) as active:
            if active.in_transaction:
                self._savepoints += 1
                label = f"sp_{self._savepoints}"
                begin, commit = f"SAVEPOINT {label}", f"RELEASE SAVEPOINT {label}"
                undo: tuple[str, ...] = (f"ROLLBACK TO SAVEPOINT {label}", commit)
            else:
                begin = "BEGIN IMMEDIATE" if immediate else "BEGIN"
                commit, undo = "COMMIT", ("ROLLBACK",)

            self._run(active, begin)
            try:
                yield active
            except Exception:
                for statement in undo:
                    self._run(active, statement)
                raise
            self._run(active, commit)

    # -- statements ------------------------------------------------------------------

    def execute(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        """Run one write statement; returns the affected row count."""

        with self.transaction(conn=conn) as active:
            return self._run(active, sql, params).rowcount

    def executemany(
        self,
        sql: str,
        params_iter: Iterable[SQLParams],
        *,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        batch = [tuple(params) for params in params_iter]
        with self.transaction(conn=conn) as active:
            return self._retrying(sql, lambda: active.executemany(sql, batch)).rowcount

    def query_all(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        conn: sqlite3.Connection | None = None,
    ) -> list[Row]:
        with self._borrow(conn) as active:
            return [dict(row) for row in self._run(active, sql, params).fetchall()]

    def query_one(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        conn: sqlite3.Connection | None = None,
    ) -> Row | None:
        with self._borrow(conn) as active:
            row = self._run(active, sql, params).fetchone()
        return None if row is None else dict(row)

    # -- schema ----------------------------------------------------------------------

    def migrate(self) -> int:
        """Bring the schema to ``STATE_DB_SCHEMA_VERSION``; safe to call repeatedly."""

        wanted = [m for m in MIGRATIONS if m.version <= STATE_DB_SCHEMA_VERSION]
        if [m.version for m in wanted] != list(range(1, STATE_DB_SCHEMA_VERSION + 1)):
            raise StateDBMigrationError(
                f"migrations do not cover versions 1..{STATE_DB_SCHEMA_VERSION}"
            )

        with self.connection() as conn:
            self._run(conn, _LEDGER_DDL)
            applied = {record.version: record for record in self._history(conn)}
            on_disk = max(applied, default=0)
            if on_disk > STATE_DB_SCHEMA_VERSION:
                raise StateDBMigrationError(
                    f"record store schema v{on_disk} is newer than this build "
                    f"supports (v{STATE_DB_SCHEMA_VERSION})"
                )

            for migration in wanted:
                recorded = applied.get(migration.version)
                if recorded is not None:
                    if recorded.checksum != migration.checksum:
                        raise StateDBMigrationError(
                            f"checksum mismatch for migration {migration.version} "
                            f"({migration.name}): stored {recorded.checksum[:12]}, "
                            f"shipped {migration.checksum[:12]}"
                        )
                    continue
                self._apply(conn, migration)

            self._migrated = True
            return self.schema_version(conn=conn)

    def ensure_migrated(self) -> None:
        if not self._migrated:
            self.migrate()

    def schema_version(self, *, conn: sqlite3.Connection | None = None) -> int:
        row = self.query_one(
            "SELECT COALESCE(MAX(version), 0) AS version FROM schema_versions", conn=conn
        )
        version = 0 if row is None else row["version"]
        if not isinstance(version, int):
            raise StateDBMigrationError("schema_versions.version is not an integer")
        return version

    def schema_history(self) -> list[AppliedMigration]:
        with self.connection() as conn:
            return self._history(conn)

    def _history(self, conn: sqlite3.Connection) -> list[AppliedMigration]:
        rows = self.query_all(
            "SELECT version, name, checksum, applied_at FROM schema_versions ORDER BY version",
            conn=conn,
        )
        history: list[AppliedMigration] = []
        for row in rows:
            version = row["version"]
            if not isinstance(version, int):
                raise StateDBMigrationError("schema_versions.version is not an integer")
            history.append(
                AppliedMigration(
                    version=version,
                    name=str(row["name"]),
                    checksum=str(row["checksum"]),
                    applied_at=str(row["applied_at"]),
                )
            )
        return history

    def _apply(self, conn: sqlite3.Connection, migration: Migration) -> None:
        with self.transaction(conn=conn) as tx:
            for statement in migration.statements:
                self._run(tx, statement)
            seed = migration.seed
            if seed is not None:
                self._retrying(migration.name, lambda: seed(tx))
            self._run(
                tx,
                "INSERT INTO schema_versions (version, name, checksum, applied_at) "
                "VALUES (?, ?, ?, ?)",
                (migration.version, migration.name, migration.checksum, utc_now_iso()),
            )

    # -- retry -----------------------------------------------------------------------

    def _run(self, conn: sqlite3.Connection, sql: str, params: SQLParams = ()) -> sqlite3.Cursor:
        bound = tuple(params)
        return self._retrying(sql, lambda: conn.execute(sql, bound))

    def _retrying(self, what: str, action: Callable[[], _T]) -> _T:
        attempt = 0
        while True:
            try:
                return action()
            except sqlite3.IntegrityError:
                raise
            except sqlite3.Error as exc:
                kind = _classify(exc)
                if kind is StateDBBusyError and attempt < self._retries:
                    time.sleep(self._backoff_s * (2**attempt))
                    attempt += 1
                    continue
                summary = " ".join(what.split())[:80]
                raise kind(f"{self._path}: {exc} (while running: {summary})") from exc


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def canonical_json(value: object) -> str:
    """Deterministic JSON for persistence payloads."""

    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


__all__ = [
    "DEFAULT_BUSY_RETRY_BACKOFF_MS",
    "DEFAULT_BUSY_RETRY_LIMIT",
    "DEFAULT_BUSY_TIMEOUT_MS",
    "DEFAULT_SETTINGS",
    "MIGRATIONS",
    "AppliedMigration",
    "Migration",
    "Row",
    "RowValue",
    "SQLParams",
    "StateDB",
    "StateDBBusyError",
    "StateDBCorruptionError",
    "StateDBError",
    "StateDBMigrationError",
    "canonical_json",
    "utc_now_iso",
]
