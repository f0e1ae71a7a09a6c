"""
repo-agent — tool dispatcher

File: src/repo_agent/tools/dispatcher.py
Last updated: 2026-10-19

Purpose
- Route a model-issued tool call by name to its executor, off the event loop.

Functional requirements
- Unknown names fail before anything is executed or audited.
- Sandbox failures surface as ``ToolError`` carrying the original message.
- When an audit log and run id are present, every executed call is recorded,
  including calls that fail with a tool error.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping

import structlog

from repo_agent.sandbox.paths import SandboxError
from repo_agent.tools.audit import AuditLog
from repo_agent.tools.base import RepoContext, ToolError, ToolName, ToolResult, UnknownToolError
from repo_agent.tools.schemas import TOOLS_BY_NAME

logger = structlog.get_logger(__name__)


def parse_tool_name(name: str) -> ToolName:
    try:
        return ToolName(name)
    except ValueError as exc:
        raise UnknownToolError(name) from exc


async def dispatch(
    name: str,
    args: Mapping[str, object],
    context: RepoContext,
    *,
    audit: AuditLog | None = None,
) -> ToolResult:
    """Execute tool ``name`` with JSON ``args`` inside ``context``.

    Raises ``UnknownToolError`` or another ``ToolError`` subclass. The audit entry
    for a failed call stores ``{"error": message}``.
    """

    tool_name = parse_tool_name(name)
    spec = TOOLS_BY_NAME[tool_name]
    started = time.monotonic()

    try:
        parsed = spec.parse_args(args)
        result = await asyncio.to_thread(spec.execute, context, parsed)
    except ToolError as exc:
        await _audit(audit, context, tool_name, args, {"error": str(exc)})
        logger.info("tool_failed", tool=tool_name.value, run_id=context.run_id, error=str(exc))
        raise
    except SandboxError as exc:
        await _audit(audit, context, tool_name, args, {"error": str(exc)})
        logger.info("tool_failed", tool=tool_name.value, run_id=context.run_id, error=str(exc))
        raise ToolError(str(exc)) from exc

    await _audit(audit, context, tool_name, args, result)
    logger.info(
        "tool_dispatched",
        tool=tool_name.value,
        run_id=context.run_id,
        duration_ms=int((time.monotonic() - started) * 1000),
    )
    return result


async def _audit(
    audit: AuditLog | None,
    context: RepoContext,
    tool_name: ToolName,
    args: Mapping[str, object],
    result: object,
) -> None:
    if audit is None or context.run_id is None:
        return
    await audit.record_async(context.run_id, tool_name.value, args, result)


__all__ = ["dispatch", "parse_tool_name"]
