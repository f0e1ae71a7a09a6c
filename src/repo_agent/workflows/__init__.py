"""
repo-agent — plan and verify orchestrators

File: src/repo_agent/workflows/__init__.py
Last updated: 2026-10-19

Purpose
- Public surface for the workflow entry points, results, and failure codes.
"""

from repo_agent.workflows.plan import PlanResult, PlanWorkflow
from repo_agent.workflows.runtime import ChatClientFactory, WorkflowRuntime
from repo_agent.workflows.state import (
    InvalidTransitionError,
    WorkflowError,
    WorkflowErrorCode,
    WorkflowEvent,
    WorkflowState,
    transition,
)
from repo_agent.workflows.verify import RanChecks, VerifyOptions, VerifyResult, VerifyWorkflow

__all__ = [
    "ChatClientFactory",
    "InvalidTransitionError",
    "PlanResult",
    "PlanWorkflow",
    "RanChecks",
    "VerifyOptions",
    "VerifyResult",
    "VerifyWorkflow",
    "WorkflowError",
    "WorkflowErrorCode",
    "WorkflowEvent",
    "WorkflowRuntime",
    "WorkflowState",
    "transition",
]
