"""
repo-agent — tool call audit log

File: src/repo_agent/tools/audit.py
Last updated: 2026-10-19

Purpose
- Persist one append-only record per executed tool call, bounding the stored result size.

Functional requirements
- Results longer than the audit budget are stored as a wrapper object carrying
  the raw prefix and the original size.
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
from collections.abc import Mapping

import structlog

from repo_agent.constants import AUDIT_RESULT_MAX_CHARS
from repo_agent.persistence.repositories import ToolCallRecord, ToolCallRepo
from repo_agent.persistence.state_db import StateDBError

logger = structlog.get_logger(__name__)


class AuditWriteError(RuntimeError):
    """The record store rejected a tool call audit entry."""


def bound_result_json(result: object, *, max_chars: int = AUDIT_RESULT_MAX_CHARS) -> str:
    """Serialize ``result`` and cut it to ``max_chars``, keeping the stored text valid JSON.

    A strict prefix of serialized JSON never parses as an object, so an oversized
    result is always wrapped as ``{_truncated, _original_size, _content}``.
    """

    serialized = json.dumps(result, ensure_ascii=False)
    if len(serialized) <= max_chars:
        return serialized

    return json.dumps(
        {
            "_truncated": True,
            "_original_size": len(serialized),
            "_content": serialized[:max_chars],
        },
        ensure_ascii=False,
    )


class AuditLog:
    """Records tool invocations against a run."""

    def __init__(
        self, repo: ToolCallRepo, *, max_result_chars: int = AUDIT_RESULT_MAX_CHARS
    ) -> None:
        if max_result_chars <= 0:
            raise ValueError("max_result_chars must be > 0")
        self._repo = repo
        self._max_result_chars = max_result_chars

    def record(
        self,
        run_id: str,
        name: str,
        args: Mapping[str, object],
        result: object,
    ) -> ToolCallRecord:
        args_json = json.dumps(dict(args), ensure_ascii=False)
        result_json = bound_result_json(result, max_chars=self._max_result_chars)
        try:
            record = self._repo.add(run_id, name, args_json, result_json)
        except (StateDBError, sqlite3.Error) as exc:
            raise AuditWriteError(f"failed to audit tool call {name!r}: {exc}") from exc
        logger.debug(
            "tool_call_audited",
            run_id=run_id,
            tool=name,
            result_chars=len(result_json),
        )
        return record

    def list_for_run(self, run_id: str) -> list[ToolCallRecord]:
        return self._repo.list_for_run(run_id)

    async def record_async(
        self,
        run_id: str,
        name: str,
        args: Mapping[str, object],
        result: object,
    ) -> ToolCallRecord:
        return await asyncio.to_thread(self.record, run_id, name, args, result)

    async def list_for_run_async(self, run_id: str) -> list[ToolCallRecord]:
        return await asyncio.to_thread(self.list_for_run, run_id)


__all__ = ["AuditLog", "AuditWriteError", "bound_result_json"]
