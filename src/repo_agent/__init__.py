"""
repo-agent — package root

File: src/repo_agent/__init__.py
Last updated: 2026-10-19

Purpose
- Package root. Bounded LLM agent over a local repository with Plan and Verify workflows.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
