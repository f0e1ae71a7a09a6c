"""Command-line interface router for repo-agent."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from collections.abc import Coroutine, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar

from repo_agent.config import (
    SETTINGS_KEYS,
    AppConfig,
    ConfigLoadError,
    LlmSettings,
    SettingsError,
    load_config,
    validate_setting,
)
from repo_agent.main import ExitCode
from repo_agent.observability import LoggingConfig, configure_logging
from repo_agent.persistence import (
    ArtifactRepo,
    MessageRepo,
    ProjectRecord,
    ProjectRepo,
    RunRepo,
    SettingsRepo,
    StateDB,
    TaskRepo,
    ToolCallRepo,
)
from repo_agent.sandbox import SandboxError
from repo_agent.tools import REGISTRY, RepoContext, ToolError, dispatch, tool_schemas
from repo_agent.ui.render import CLIRenderer, create_renderer
from repo_agent.workflows import (
    PlanWorkflow,
    VerifyOptions,
    VerifyWorkflow,
    WorkflowError,
    WorkflowErrorCode,
    WorkflowRuntime,
)

_ResultT = TypeVar("_ResultT")

_PROVIDER_ERROR_CODES = frozenset({WorkflowErrorCode.LLM_ERROR, WorkflowErrorCode.NO_API_KEY})


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = ExitCode.WORKFLOW_FAILED

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True, slots=True)
class _Session:
    config: AppConfig
    db: StateDB


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="repo-agent",
        description=(
            "repo-agent — plan and verify code changes with an LLM that explores a repository\n"
            "through read-only tools.\n\n"
            "Common workflows:\n"
            "  repo-agent project add demo ./repo     Register a repository\n"
            "  repo-agent task add <PROJECT> \"title\"  Describe a change\n"
            "  repo-agent plan <PROJECT> <TASK>       Generate an implementation plan\n"
            "  repo-agent verify <PROJECT> <TASK>     Review the working tree against the plan\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to TOML config (default: ./repo_agent.toml if present).",
    )
    common.add_argument(
        "--state-db",
        default=None,
        help="Override paths.state_db for this invocation.",
    )
    common.add_argument(
        "--log-level",
        default=None,
        help="Override observability.log_level for this invocation.",
    )
    common.add_argument(
        "--json", action="store_true", default=False, help="Emit deterministic JSON output"
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # project -------------------------------------------------------------
    project_parser = subparsers.add_parser("project", help="Manage registered repositories")
    project_sub = project_parser.add_subparsers(dest="project_command", required=True)
    project_add = project_sub.add_parser("add", parents=[common], help="Register a repository")
    project_add.add_argument("name", help="Display name")
    project_add.add_argument("repo_path", help="Path to the repository root")
    project_add.set_defaults(handler=_cmd_project_add)
    project_list = project_sub.add_parser("list", parents=[common], help="List projects")
    project_list.set_defaults(handler=_cmd_project_list)

    # task ----------------------------------------------------------------
    task_parser = subparsers.add_parser("task", help="Manage tasks")
    task_sub = task_parser.add_subparsers(dest="task_command", required=True)
    task_add = task_sub.add_parser("add", parents=[common], help="Create a task")
    task_add.add_argument("project_id")
    task_add.add_argument("title")
    task_add.add_argument("--mode", default="plan", help="Task mode label (default: plan)")
    task_add.set_defaults(handler=_cmd_task_add)
    task_list = task_sub.add_parser("list", parents=[common], help="List tasks of a project")
    task_list.add_argument("project_id")
    task_list.set_defaults(handler=_cmd_task_list)

    # plan ----------------------------------------------------------------
    plan_parser = subparsers.add_parser(
        "plan",
        parents=[common],
        help="Generate an implementation plan for a task",
        description=(
            "Let the model explore the repository with tools and write a Markdown plan.\n"
            "The plan is stored as the task's plan_md artifact.\n\n"
            "Examples:\n"
            "  repo-agent plan <PROJECT> <TASK>\n"
            "  repo-agent plan <PROJECT> <TASK> --json\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    plan_parser.add_argument("project_id")
    plan_parser.add_argument("task_id")
    plan_parser.set_defaults(handler=_cmd_plan)

    # verify --------------------------------------------------------------
    verify_parser = subparsers.add_parser(
        "verify",
        parents=[common],
        help="Review repository changes against the task's plan",
        description=(
            "Collect git status, diff, and optional check output, then ask the model for a\n"
            "verification report. The report is stored as verification_report.\n\n"
            "Examples:\n"
            "  repo-agent verify <PROJECT> <TASK>\n"
            "  repo-agent verify <PROJECT> <TASK> --staged --lint --build\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    verify_parser.add_argument("project_id")
    verify_parser.add_argument("task_id")
    verify_parser.add_argument(
        "--no-tests", dest="run_tests", action="store_false", help="Skip the test command"
    )
    verify_parser.add_argument("--lint", dest="run_lint", action="store_true", help="Run lint")
    verify_parser.add_argument("--build", dest="run_build", action="store_true", help="Run build")
    verify_parser.add_argument(
        "--staged", action="store_true", help="Review the staged diff instead of the unstaged one"
    )
    verify_parser.add_argument(
        "--max-tool-calls",
        type=int,
        default=VerifyOptions().max_tool_calls,
        help="Upper bound on repository tool invocations",
    )
    verify_parser.set_defaults(handler=_cmd_verify)

    # run -----------------------------------------------------------------
    run_parser = subparsers.add_parser("run", help="Inspect workflow runs")
    run_sub = run_parser.add_subparsers(dest="run_command", required=True)
    run_list = run_sub.add_parser("list", parents=[common], help="List runs of a task")
    run_list.add_argument("task_id")
    run_list.set_defaults(handler=_cmd_run_list)
    run_messages = run_sub.add_parser("messages", parents=[common], help="Show a run's messages")
    run_messages.add_argument("run_id")
    run_messages.set_defaults(handler=_cmd_run_messages)
    run_tools = run_sub.add_parser(
        "tool-calls", parents=[common], help="Show a run's audited tool calls"
    )
    run_tools.add_argument("run_id")
    run_tools.set_defaults(handler=_cmd_run_tool_calls)

    # artifact ------------------------------------------------------------
    artifact_parser = subparsers.add_parser("artifact", help="Inspect task artifacts")
    artifact_sub = artifact_parser.add_subparsers(dest="artifact_command", required=True)
    artifact_list = artifact_sub.add_parser("list", parents=[common], help="List artifacts")
    artifact_list.add_argument("task_id")
    artifact_list.set_defaults(handler=_cmd_artifact_list)
    artifact_show = artifact_sub.add_parser("show", parents=[common], help="Render an artifact")
    artifact_show.add_argument("task_id")
    artifact_show.add_argument("kind", help="Artifact kind, e.g. plan_md or verification_report")
    artifact_show.set_defaults(handler=_cmd_artifact_show)

    # tool ----------------------------------------------------------------
    tool_parser = subparsers.add_parser("tool", help="Inspect or invoke repository tools")
    tool_sub = tool_parser.add_subparsers(dest="tool_command", required=True)
    tool_schemas_parser = tool_sub.add_parser(
        "schemas", parents=[common], help="Print the tool schemas offered to the model"
    )
    tool_schemas_parser.set_defaults(handler=_cmd_tool_schemas)
    tool_run = tool_sub.add_parser("run", parents=[common], help="Invoke one tool directly")
    tool_run.add_argument("project_id")
    tool_run.add_argument("name", choices=[spec.name.value for spec in REGISTRY])
    tool_run.add_argument(
        "--args", dest="tool_args", default="{}", help="JSON object of tool arguments"
    )
    tool_run.set_defaults(handler=_cmd_tool_run)

    # settings ------------------------------------------------------------
    settings_parser = subparsers.add_parser("settings", help="Provider settings")
    settings_sub = settings_parser.add_subparsers(dest="settings_command", required=True)
    settings_show = settings_sub.add_parser(
        "show", parents=[common], help="Show effective provider settings"
    )
    settings_show.set_defaults(handler=_cmd_settings_show)
    settings_set = settings_sub.add_parser("set", parents=[common], help="Store a setting")
    settings_set.add_argument("key", choices=SETTINGS_KEYS)
    settings_set.add_argument("value")
    settings_set.set_defaults(handler=_cmd_settings_set)

    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return int(ExitCode.CONFIG_ERROR)

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_project_add(args: argparse.Namespace) -> int:
    session = _open_session(args)
    repo_path = Path(args.repo_path).expanduser().resolve()
    if not repo_path.is_dir():
        raise CLIError(
            f"repository path is not a directory: {repo_path}",
            exit_code=ExitCode.CONFIG_ERROR,
        )

    project = ProjectRepo(session.db).create(args.name, repo_path.as_posix())

    if _flag(args, "json"):
        _emit_json(project.to_dict())
        return 0
    renderer = _get_renderer(args)
    renderer.kv("Project", project.id)
    renderer.kv("Repository", project.repo_path)
    return 0


def _cmd_project_list(args: argparse.Namespace) -> int:
    session = _open_session(args)
    projects = ProjectRepo(session.db).list()

    if _flag(args, "json"):
        _emit_json({"projects": [project.to_dict() for project in projects]})
        return 0
    _get_renderer(args).table(
        ("ID", "Name", "Repository", "Last opened"),
        [(p.id, p.name, p.repo_path, p.last_opened_at) for p in projects],
    )
    return 0


def _cmd_task_add(args: argparse.Namespace) -> int:
    session = _open_session(args)
    _require_project(session, args.project_id)
    task = TaskRepo(session.db).create(args.project_id, args.title, mode=args.mode)

    if _flag(args, "json"):
        _emit_json(task.to_dict())
        return 0
    _get_renderer(args).kv("Task", task.id)
    return 0


def _cmd_task_list(args: argparse.Namespace) -> int:
    session = _open_session(args)
    tasks = TaskRepo(session.db).list_for_project(args.project_id)

    if _flag(args, "json"):
        _emit_json({"tasks": [task.to_dict() for task in tasks]})
        return 0
    _get_renderer(args).table(
        ("ID", "Title", "Mode", "Status"),
        [(t.id, t.title, t.mode, t.status) for t in tasks],
    )
    return 0


def _cmd_plan(args: argparse.Namespace) -> int:
    session = _open_session(args)
    workflow = PlanWorkflow(WorkflowRuntime(session.db, config=session.config))
    result = _run_workflow(workflow.run(args.project_id, args.task_id))

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "plan",
                "run_id": result.run_id,
                "plan_md": result.plan_md,
                "tool_calls_count": result.tool_calls_count,
                "truncated": result.truncated,
            }
        )
        return 0
    renderer = _get_renderer(args)
    renderer.markdown(result.plan_md)
    renderer.section("Run")
    renderer.kv("Run", result.run_id)
    renderer.kv("Tool calls", result.tool_calls_count)
    if result.truncated:
        renderer.warning("plan was truncated")
    return 0


def _cmd_verify(args: argparse.Namespace) -> int:
    session = _open_session(args)
    try:
        options = VerifyOptions(
            run_tests=args.run_tests,
            run_lint=args.run_lint,
            run_build=args.run_build,
            staged=args.staged,
            max_tool_calls=args.max_tool_calls,
        )
    except ValueError as exc:
        raise CLIError(str(exc), exit_code=ExitCode.CONFIG_ERROR) from exc
    workflow = VerifyWorkflow(WorkflowRuntime(session.db, config=session.config))
    result = _run_workflow(workflow.run(args.project_id, args.task_id, options))

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "verify",
                "run_id": result.run_id,
                "report_md": result.report_md,
                "ran_checks": result.ran_checks.to_dict(),
                "truncated": result.truncated,
            }
        )
        return 0
    renderer = _get_renderer(args)
    renderer.markdown(result.report_md)
    renderer.section("Run")
    renderer.kv("Run", result.run_id)
    ran = [name for name, value in result.ran_checks.to_dict().items() if value]
    renderer.kv("Checks", ", ".join(ran) if ran else "none")
    if result.truncated:
        renderer.warning("some inputs were truncated")
    return 0


def _cmd_run_list(args: argparse.Namespace) -> int:
    session = _open_session(args)
    runs = RunRepo(session.db).list_for_task(args.task_id)

    if _flag(args, "json"):
        _emit_json({"runs": [run.to_dict() for run in runs]})
        return 0
    _get_renderer(args).table(
        ("ID", "Type", "Model", "Started", "Ended"),
        [(r.id, r.run_type, r.model, r.started_at, r.ended_at or "-") for r in runs],
    )
    return 0


def _cmd_run_messages(args: argparse.Namespace) -> int:
    session = _open_session(args)
    messages = MessageRepo(session.db).list_for_run(args.run_id)

    if _flag(args, "json"):
        _emit_json({"messages": [message.to_dict() for message in messages]})
        return 0
    renderer = _get_renderer(args)
    for message in messages:
        renderer.section(f"[{message.role}] {message.created_at}")
        renderer.text(_truncate(message.content, 2_000))
    return 0


def _cmd_run_tool_calls(args: argparse.Namespace) -> int:
    session = _open_session(args)
    calls = ToolCallRepo(session.db).list_for_run(args.run_id)

    if _flag(args, "json"):
        _emit_json({"tool_calls": [call.to_dict() for call in calls]})
        return 0
    _get_renderer(args).table(
        ("Tool", "Args", "Result", "At"),
        [
            (c.name, _truncate(c.args_json, 80), _truncate(c.result_json, 80), c.created_at)
            for c in calls
        ],
    )
    return 0


def _cmd_artifact_list(args: argparse.Namespace) -> int:
    session = _open_session(args)
    artifacts = ArtifactRepo(session.db).list_for_task(args.task_id)

    if _flag(args, "json"):
        _emit_json({"artifacts": [artifact.to_dict() for artifact in artifacts]})
        return 0
    _get_renderer(args).table(
        ("Kind", "Phase", "Created", "Chars"),
        [(a.kind, a.phase_id or "-", a.created_at, str(len(a.content))) for a in artifacts],
    )
    return 0


def _cmd_artifact_show(args: argparse.Namespace) -> int:
    session = _open_session(args)
    artifact = ArtifactRepo(session.db).get(args.task_id, args.kind)
    if artifact is None:
        raise CLIError(
            f"no {args.kind} artifact for task {args.task_id}",
            exit_code=ExitCode.WORKFLOW_FAILED,
        )


    if _flag(args, "json"):
        _emit_json(artifact.to_dict())
        return 0
    _get_renderer(args).markdown(artifact.content)
    return 0


def _cmd_tool_schemas(args: argparse.Namespace) -> int:
    schemas = tool_schemas()
    if _flag(args, "json"):
        _emit_json({"tools": schemas})
        return 0
    renderer = _get_renderer(args)
    for schema in schemas:
        function = schema["function"]
        assert isinstance(function, Mapping)
        renderer.kv(str(function["name"]), function["description"])
    return 0


def _cmd_tool_run(args: argparse.Namespace) -> int:
    session = _open_session(args)
    project = _require_project(session, args.project_id)
    try:
        tool_args = json.loads(args.tool_args)
    except json.JSONDecodeError as exc:
        raise CLIError(f"--args is not valid JSON: {exc}", exit_code=ExitCode.CONFIG_ERROR) from exc
    if not isinstance(tool_args, dict):
        raise CLIError("--args must be a JSON object", exit_code=ExitCode.CONFIG_ERROR)

    try:
        context = RepoContext(
            root=project.repo_path,
            project_id=project.id,
            git_timeout_seconds=session.config.git_timeout_seconds,
            search_timeout_seconds=session.config.search_timeout_seconds,
            command_timeout_seconds=session.config.command_timeout_seconds,
        )
        result = asyncio.run(dispatch(args.name, {**tool_args, "project_id": project.id}, context))
    except (SandboxError, ToolError) as exc:
        raise CLIError(str(exc), exit_code=ExitCode.WORKFLOW_FAILED) from exc

    if _flag(args, "json"):
        _emit_json(result)
        return 0
    _get_renderer(args).text(json.dumps(result, indent=2, sort_keys=True, ensure_ascii=False))
    return 0


def _cmd_settings_show(args: argparse.Namespace) -> int:
    session = _open_session(args)
    settings = _settings_snapshot(SettingsRepo(session.db).all(), session.config)
    payload = settings.to_public_dict()

    if _flag(args, "json"):
        _emit_json(payload)
        return 0
    renderer = _get_renderer(args)
    for key in sorted(payload):
        renderer.kv(key, payload[key])
    return 0


def _cmd_settings_set(args: argparse.Namespace) -> int:
    session = _open_session(args)
    repo = SettingsRepo(session.db)
    try:
        validate_setting(args.key, args.value)
    except SettingsError as exc:
        raise CLIError(str(exc), exit_code=ExitCode.CONFIG_ERROR) from exc
    _settings_snapshot({**repo.all(), args.key: args.value}, session.config)
    repo.set(args.key, args.value)

    if _flag(args, "json"):
        _emit_json({"key": args.key, "updated": True})
        return 0
    shown = "(hidden)" if args.key == "api_key" else args.value
    _get_renderer(args).kv(args.key, shown)
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _open_session(args: argparse.Namespace) -> _Session:
    overrides: dict[str, object] = {
        "paths.state_db": getattr(args, "state_db", None),
        "observability.log_level": getattr(args, "log_level", None),
    }
    try:
        config = load_config(getattr(args, "config_path", None), cli_overrides=overrides)
    except ConfigLoadError as exc:
        raise CLIError(str(exc), exit_code=ExitCode.CONFIG_ERROR) from exc

    configure_logging(
        LoggingConfig(
            level=config.log_level,
            json_logs=config.json_logs,
            log_file=config.log_file,
        )
    )
    db = StateDB(config.state_db)
    db.ensure_migrated()
    return _Session(config=config, db=db)


def _run_workflow(coro: Coroutine[Any, Any, _ResultT]) -> _ResultT:
    try:
        return asyncio.run(coro)
    except WorkflowError as exc:
        exit_code = (
            ExitCode.PROVIDER_ERROR
            if exc.code in _PROVIDER_ERROR_CODES
            else ExitCode.WORKFLOW_FAILED
        )
        raise CLIError(str(exc), exit_code=exit_code) from exc


def _require_project(session: _Session, project_id: str) -> ProjectRecord:
    project = ProjectRepo(session.db).get(project_id)
    if project is None:
        raise CLIError(f"project not found: {project_id}", exit_code=ExitCode.CONFIG_ERROR)
    return project


def _settings_snapshot(values: Mapping[str, str], config: AppConfig) -> LlmSettings:
    try:
        return LlmSettings.from_settings(values, environ=os.environ, api_key_env=config.api_key_env)
    except SettingsError as exc:
        raise CLIError(str(exc), exit_code=ExitCode.CONFIG_ERROR) from exc


def _emit_json(payload: object) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=_flag(args, "no_color"))


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


def _truncate(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


__all__ = ["CLIError", "build_parser", "run_cli"]
