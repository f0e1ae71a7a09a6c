"""Persistence layer: SQLite record store, migrations, and repositories."""

from repo_agent.persistence.repositories import (
    ArtifactRecord,
    ArtifactRepo,
    MessageRecord,
    MessageRepo,
    ProjectRecord,
    ProjectRepo,
    RunRecord,
    RunRepo,
    SettingsRepo,
    TaskRecord,
    TaskRepo,
    ToolCallRecord,
    ToolCallRepo,
)
from repo_agent.persistence.state_db import (
    StateDB,
    StateDBBusyError,
    StateDBCorruptionError,
    StateDBError,
    StateDBMigrationError,
)

__all__ = [
    "ArtifactRecord",
    "ArtifactRepo",
    "MessageRecord",
    "MessageRepo",
    "ProjectRecord",
    "ProjectRepo",
    "RunRecord",
    "RunRepo",
    "SettingsRepo",
    "StateDB",
    "StateDBBusyError",
    "StateDBCorruptionError",
    "StateDBError",
    "StateDBMigrationError",
    "TaskRecord",
    "TaskRepo",
    "ToolCallRecord",
    "ToolCallRepo",
]
