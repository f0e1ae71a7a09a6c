"""
repo-agent — runtime config loader

File: src/repo_agent/config/loader.py
Last updated: 2026-10-19

Purpose
- Load effective runtime config from defaults, TOML file, env vars, and CLI overrides.

What should be included in this file
- Precedence logic: CLI > env (REPO_AGENT_) > file > defaults.
- TOML loading via ``tomllib``.
- Deterministic environment variable mapping and coercion.
- Path normalization relative to the config file location.

Functional requirements
- Unknown sections/keys and wrongly typed values are rejected with ``ConfigLoadError``.
- A missing default config file is not an error; a missing explicit one is.
"""

from __future__ import annotations

import copy
import json
import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final, Literal

from repo_agent.constants import (
    COMMAND_TIMEOUT_SECONDS,
    DEFAULT_API_KEY_ENV,
    DEFAULT_CONFIG_FILE,
    DEFAULT_STATE_DB_PATH,
    GIT_TIMEOUT_SECONDS,
    LLM_REQUEST_TIMEOUT_SECONDS,
    SEARCH_TIMEOUT_SECONDS,
)

ENV_PREFIX: Final[str] = "REPO_AGENT_"
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_BOOLEAN_TRUE: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_BOOLEAN_FALSE: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})

ValueType = Literal["str", "float", "bool"]

# (section, key) -> expected type; also the closed set of accepted keys.
_SCHEMA: Final[dict[tuple[str, str], ValueType]] = {
    ("paths", "state_db"): "str",
    ("observability", "log_level"): "str",
    ("observability", "log_file"): "str",
    ("observability", "json_logs"): "bool",
    ("llm", "api_key_env"): "str",
    ("llm", "request_timeout_seconds"): "float",
    ("tools", "git_timeout_seconds"): "float",
    ("tools", "search_timeout_seconds"): "float",
    ("tools", "command_timeout_seconds"): "float",
}

PATH_FIELDS: Final[tuple[tuple[str, str], ...]] = (
    ("paths", "state_db"),
    ("observability", "log_file"),
)


class ConfigLoadError(ValueError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


@dataclass(frozen=True, slots=True)
class AppConfig:
    state_db: Path
    log_level: str = "INFO"
    log_file: Path | None = None
    json_logs: bool = False
    api_key_env: str = DEFAULT_API_KEY_ENV
    request_timeout_seconds: float = LLM_REQUEST_TIMEOUT_SECONDS
    git_timeout_seconds: float = GIT_TIMEOUT_SECONDS
    search_timeout_seconds: float = SEARCH_TIMEOUT_SECONDS
    command_timeout_seconds: float = COMMAND_TIMEOUT_SECONDS

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Mapping[str, Any]]) -> AppConfig:
        log_file = str(payload["observability"]["log_file"])
        return cls(
            state_db=Path(str(payload["paths"]["state_db"])),
            log_level=str(payload["observability"]["log_level"]).upper(),
            log_file=Path(log_file) if log_file else None,
            json_logs=bool(payload["observability"]["json_logs"]),
            api_key_env=str(payload["llm"]["api_key_env"]),
            request_timeout_seconds=float(payload["llm"]["request_timeout_seconds"]),
            git_timeout_seconds=float(payload["tools"]["git_timeout_seconds"]),
            search_timeout_seconds=float(payload["tools"]["search_timeout_seconds"]),
            command_timeout_seconds=float(payload["tools"]["command_timeout_seconds"]),
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "paths": {"state_db": self.state_db.as_posix()},
            "observability": {
                "log_level": self.log_level,
                "log_file": self.log_file.as_posix() if self.log_file is not None else "",
                "json_logs": self.json_logs,
            },
            "llm": {
                "api_key_env": self.api_key_env,
                "request_timeout_seconds": self.request_timeout_seconds,
            },
            "tools": {
                "git_timeout_seconds": self.git_timeout_seconds,
                "search_timeout_seconds": self.search_timeout_seconds,
                "command_timeout_seconds": self.command_timeout_seconds,
            },
        }


def default_config() -> dict[str, dict[str, Any]]:
    return {
        "paths": {"state_db": DEFAULT_STATE_DB_PATH},
        "observability": {"log_level": "INFO", "log_file": "", "json_logs": False},
        "llm": {
            "api_key_env": DEFAULT_API_KEY_ENV,
            "request_timeout_seconds": LLM_REQUEST_TIMEOUT_SECONDS,
        },
        "tools": {
            "git_timeout_seconds": GIT_TIMEOUT_SECONDS,
            "search_timeout_seconds": SEARCH_TIMEOUT_SECONDS,
            "command_timeout_seconds": COMMAND_TIMEOUT_SECONDS,
        },
    }


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> AppConfig:
    """Load effective config with deterministic precedence: CLI > env > file > defaults."""

    resolved_path = _resolve_config_path(config_path)
    env_map = dict(os.environ if environ is None else environ)

    merged = default_config()
    _merge_validated(merged, _load_toml_file(resolved_path, required=config_path is not None))
    _merge_validated(merged, _collect_env_overrides(env_map))
    _merge_validated(merged, _materialize_cli_overrides(dict(cli_overrides or {})))
    _assert_valid(merged)

    for section, key in PATH_FIELDS:
        raw = merged[section][key]
        if raw:
            merged[section][key] = _normalize_one_path(raw, resolved_path.parent)

    return AppConfig.from_mapping(merged)


def dump_effective_config(config: AppConfig) -> str:
    """Return a deterministic JSON dump of the effective config."""

    return json.dumps(config.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _resolve_config_path(config_path: str | Path | None) -> Path:
    if config_path is None:
        return (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
    return Path(config_path).expanduser().resolve()


def _load_toml_file(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}

    try:
        with path.open("rb") as handle:
            parsed = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc

    return parsed


def _merge_validated(target: dict[str, dict[str, Any]], source: Mapping[str, object]) -> None:
    for section in sorted(source):
        values = source[section]
        if not isinstance(values, Mapping):
            raise ConfigLoadError(f"config section {section!r} must be a table")
        for key in sorted(values):
            expected = _SCHEMA.get((section, key))
            if expected is None:
                raise ConfigLoadError(f"unknown config key: {section}.{key}")
            target.setdefault(section, {})[key] = _check_type(
                values[key], expected, f"{section}.{key}"
            )


def _check_type(value: object, expected: ValueType, path: str) -> object:
    if expected == "bool":
        if not isinstance(value, bool):
            raise ConfigLoadError(f"{path} must be a boolean")
        return value
    if expected == "float":
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigLoadError(f"{path} must be a number")
        return float(value)
    if not isinstance(value, str):
        raise ConfigLoadError(f"{path} must be a string")
    return value


def _assert_valid(config: Mapping[str, Mapping[str, Any]]) -> None:
    level = str(config["observability"]["log_level"]).upper()
    if level not in LOG_LEVELS:
        raise ConfigLoadError(
            f"observability.log_level must be one of {', '.join(LOG_LEVELS)}; got {level!r}"
        )
    if not str(config["paths"]["state_db"]).strip():
        raise ConfigLoadError("paths.state_db must not be empty")
    if not str(config["llm"]["api_key_env"]).strip():
        raise ConfigLoadError("llm.api_key_env must not be empty")
    for section, key in (
        ("llm", "request_timeout_seconds"),
        ("tools", "git_timeout_seconds"),
        ("tools", "search_timeout_seconds"),
        ("tools", "command_timeout_seconds"),
    ):
        if config[section][key] <= 0:
            raise ConfigLoadError(f"{section}.{key} must be > 0")


def _collect_env_overrides(environ: Mapping[str, str]) -> dict[str, dict[str, object]]:
    overrides: dict[str, dict[str, object]] = {}
    for (section, key), value_type in sorted(_SCHEMA.items()):
        env_name = _env_name_for_path((section, key))
        raw = environ.get(env_name)
        if raw is None:
            continue
        overrides.setdefault(section, {})[key] = _coerce_env(raw, value_type, env_name)
    return overrides


def _coerce_env(raw: str, value_type: ValueType, env_name: str) -> object:
    value = raw.strip()
    if value_type == "str":
        return value
    if value_type == "float":
        try:
            return float(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{env_name} must be a number") from exc

    lowered = value.lower()
    if lowered in _BOOLEAN_TRUE:
        return True
    if lowered in _BOOLEAN_FALSE:
        return False
    raise ConfigLoadError(f"{env_name} must be a boolean (true/false/1/0/yes/no/on/off)")


def _materialize_cli_overrides(cli_overrides: Mapping[str, object]) -> dict[str, dict[str, object]]:
    payload: dict[str, dict[str, object]] = {}
    for dotted in sorted(cli_overrides):
        value = cli_overrides[dotted]
        if value is None:
            continue
        parts = tuple(part for part in dotted.split(".") if part)
        if len(parts) != 2:
            raise ConfigLoadError(f"invalid CLI override key {dotted!r}")
        payload.setdefault(parts[0], {})[parts[1]] = copy.deepcopy(value)
    return payload


def _normalize_one_path(raw: str, base_dir: Path) -> str:
    expanded = os.path.expandvars(raw)
    candidate = Path(expanded).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    normalized = Path(os.path.normpath(str(candidate)))
    return normalized.as_posix()


def _env_name_for_path(path: tuple[str, ...]) -> str:
    return ENV_PREFIX + "_".join(part.upper() for part in path)


__all__ = [
    "ENV_PREFIX",
    "LOG_LEVELS",
    "AppConfig",
    "ConfigLoadError",
    "default_config",
    "dump_effective_config",
    "load_config",
]
