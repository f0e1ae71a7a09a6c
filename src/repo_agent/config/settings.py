"""
repo-agent — provider settings snapshot

File: src/repo_agent/config/settings.py
Last updated: 2026-10-19

Purpose
- Build an immutable ``LlmSettings`` value from the string key/value settings store,
  once per workflow run.

Functional requirements
- Missing keys fall back to the seeded defaults.
- An empty stored ``api_key`` falls back to the configured environment variable.
- Malformed numeric or JSON values fall back to their defaults with a warning;
  a run still gets a usable snapshot. ``validate_setting`` rejects them on write.
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Final, TypeVar

import structlog

from repo_agent.constants import DEFAULT_API_KEY_ENV

logger = structlog.get_logger(__name__)

_DefaultT = TypeVar("_DefaultT")

DEFAULT_PROVIDER_NAME: Final[str] = "openai"
DEFAULT_BASE_URL: Final[str] = "https://openrouter.ai/api/v1"
DEFAULT_MODEL: Final[str] = "z-ai/glm-4.7-flash"
DEFAULT_TEMPERATURE: Final[float] = 0.2
DEFAULT_MAX_TOKENS: Final[int] = 4000

SETTINGS_KEYS: Final[tuple[str, ...]] = (
    "provider_name",
    "base_url",
    "model",
    "temperature",
    "max_tokens",
    "extra_headers_json",
    "api_key",
)


class SettingsError(ValueError):
    """Raised when a stored setting cannot be interpreted."""


@dataclass(frozen=True, slots=True)
class LlmSettings:
    provider_name: str = DEFAULT_PROVIDER_NAME
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    extra_headers: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    api_key: str = field(default="", repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "extra_headers", MappingProxyType(dict(self.extra_headers)))
        if self.max_tokens <= 0:
            raise SettingsError("max_tokens must be > 0")
        if not self.base_url.strip():
            raise SettingsError("base_url must not be empty")
        if not self.model.strip():
            raise SettingsError("model must not be empty")

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key.strip())

    @property
    def chat_completions_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/chat/completions"

    def with_api_key(self, api_key: str) -> LlmSettings:
        return replace(self, api_key=api_key)

    @classmethod
    def from_settings(
        cls,
        values: Mapping[str, str],
        *,
        environ: Mapping[str, str] | None = None,
        api_key_env: str = DEFAULT_API_KEY_ENV,
    ) -> LlmSettings:
        env = os.environ if environ is None else environ
        api_key = values.get("api_key", "").strip()
        if not api_key:
            api_key = env.get(api_key_env, "").strip()

        return cls(
            provider_name=values.get("provider_name") or DEFAULT_PROVIDER_NAME,
            base_url=values.get("base_url") or DEFAULT_BASE_URL,
            model=values.get("model") or DEFAULT_MODEL,
            temperature=_parse_float(values, "temperature", DEFAULT_TEMPERATURE),
            max_tokens=_parse_int(values, "max_tokens", DEFAULT_MAX_TOKENS),
            extra_headers=_parse_headers(values.get("extra_headers_json")),
            api_key=api_key,
        )

    def to_public_dict(self) -> dict[str, object]:
        """Settings as shown to users; the key itself is never included."""

        return {
            "provider_name": self.provider_name,
            "base_url": self.base_url,
            "model": self.model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "extra_headers": dict(self.extra_headers),
            "api_key_set": self.has_api_key,
        }


def validate_setting(key: str, value: str) -> None:
    """Strict check for a user-written value; reading stored values stays lenient.

    A blank value is accepted and means "use the default".
    """

    if key not in SETTINGS_KEYS:
        raise SettingsError(f"unknown setting {key!r}")
    if not value.strip():
        return
    if key == "temperature":
        try:
            float(value)
        except ValueError as exc:
            raise SettingsError(f"setting 'temperature' must be a number, got {value!r}") from exc
    elif key == "max_tokens":
        try:
            parsed = int(value)
        except ValueError as exc:
            raise SettingsError(f"setting 'max_tokens' must be an integer, got {value!r}") from exc
        if parsed <= 0:
            raise SettingsError("setting 'max_tokens' must be > 0")
    elif key == "extra_headers_json":
        try:
            headers = json.loads(value)
        except json.JSONDecodeError as exc:
            raise SettingsError(f"setting 'extra_headers_json' is not valid JSON: {exc}") from exc
        if not isinstance(headers, dict):
            raise SettingsError("setting 'extra_headers_json' must be a JSON object")


def _parse_float(values: Mapping[str, str], key: str, default: float) -> float:
    raw = values.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return _fallback(key, raw, default, "not a number")


def _parse_int(values: Mapping[str, str], key: str, default: int) -> int:
    raw = values.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        parsed = int(raw)
    except ValueError:
        return _fallback(key, raw, default, "not an integer")
    if parsed <= 0:
        return _fallback(key, raw, default, "must be > 0")
    return parsed


def _parse_headers(raw: str | None) -> dict[str, str]:
    """Keep only string-valued headers from the stored JSON object."""

    if raw is None or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return _fallback("extra_headers_json", raw, {}, "not valid JSON")
    if not isinstance(parsed, dict):
        return _fallback("extra_headers_json", raw, {}, "not a JSON object")
    return {str(key): value for key, value in parsed.items() if isinstance(value, str)}


def _fallback(key: str, raw: str, default: _DefaultT, reason: str) -> _DefaultT:
    logger.warning("setting_ignored", key=key, value=raw, reason=reason, using=default)
    return default


__all__ = [
    "DEFAULT_BASE_URL",
    "DEFAULT_MAX_TOKENS",
    "DEFAULT_MODEL",
    "DEFAULT_PROVIDER_NAME",
    "DEFAULT_TEMPERATURE",
    "SETTINGS_KEYS",
    "LlmSettings",
    "SettingsError",
    "validate_setting",
]
