"""
repo-agent — repository tools offered to the model

File: src/repo_agent/tools/__init__.py
Last updated: 2026-10-19

Purpose
- Public surface for tool schemas, dispatch, and the audit log.
"""

from repo_agent.tools.audit import AuditLog, AuditWriteError, bound_result_json
from repo_agent.tools.base import (
    CommandKind,
    RepoContext,
    Runner,
    ToolArgumentError,
    ToolError,
    ToolName,
    ToolResult,
    UnknownToolError,
)
from repo_agent.tools.dispatcher import dispatch
from repo_agent.tools.schemas import REGISTRY, tool_schemas

__all__ = [
    "REGISTRY",
    "AuditLog",
    "AuditWriteError",
    "CommandKind",
    "RepoContext",
    "Runner",
    "ToolArgumentError",
    "ToolError",
    "ToolName",
    "ToolResult",
    "UnknownToolError",
    "bound_result_json",
    "dispatch",
    "tool_schemas",
]
