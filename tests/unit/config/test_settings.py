"""Provider settings snapshot parsing tests."""

from __future__ import annotations

import pytest
from structlog.testing import capture_logs

from repo_agent.config import SETTINGS_KEYS, LlmSettings, SettingsError, validate_setting
from repo_agent.persistence.state_db import DEFAULT_SETTINGS


def test_seeded_defaults_parse() -> None:
    settings = LlmSettings.from_settings(dict(DEFAULT_SETTINGS), environ={})

    assert settings.provider_name == "openai"
    assert settings.model == "z-ai/glm-4.7-flash"
    assert dict(settings.extra_headers) == {}
    assert settings.max_tokens == 4000
    assert settings.temperature == 0.2
    assert settings.has_api_key is False
    assert settings.chat_completions_url == "https://openrouter.ai/api/v1/chat/completions"


def test_every_seeded_key_is_known() -> None:
    assert {key for key, _ in DEFAULT_SETTINGS} <= set(SETTINGS_KEYS)


def test_stored_key_wins_over_environment() -> None:
    settings = LlmSettings.from_settings(
        {"api_key": "sk-stored"}, environ={"REPO_AGENT_API_KEY": "sk-env"}
    )

    assert settings.api_key == "sk-stored"


def test_blank_stored_key_falls_back_to_named_variable() -> None:
    settings = LlmSettings.from_settings(
        {"api_key": "   "},
        environ={"REPO_AGENT_API_KEY": "sk-default", "ALT_KEY": " sk-alt "},
        api_key_env="ALT_KEY",
    )

    assert settings.api_key == "sk-alt"


def test_extra_headers_keep_only_string_values() -> None:
    settings = LlmSettings.from_settings(
        {"extra_headers_json": '{"HTTP-Referer": "https://example.test", "X-Count": 3}'},
        environ={},
    )

    assert dict(settings.extra_headers) == {"HTTP-Referer": "https://example.test"}
    with pytest.raises(TypeError):
        settings.extra_headers["X-New"] = "v"  # type: ignore[index]


@pytest.mark.parametrize(
    "values,key",
    [
        ({"temperature": "warm"}, "temperature"),
        ({"max_tokens": "lots"}, "max_tokens"),
        ({"max_tokens": "0"}, "max_tokens"),
        ({"extra_headers_json": "{"}, "extra_headers_json"),
        ({"extra_headers_json": "[1]"}, "extra_headers_json"),
    ],
)
def test_malformed_values_fall_back_with_warning(values: dict[str, str], key: str) -> None:
    with capture_logs() as logs:
        settings = LlmSettings.from_settings(values, environ={})

    assert settings.temperature == 0.2
    assert settings.max_tokens == 4000
    assert dict(settings.extra_headers) == {}
    assert [(entry["event"], entry["key"]) for entry in logs] == [("setting_ignored", key)]
    assert logs[0]["log_level"] == "warning"


def test_direct_construction_still_validates() -> None:
    with pytest.raises(SettingsError, match="max_tokens must be > 0"):
        LlmSettings(max_tokens=0)
    with pytest.raises(SettingsError, match="model must not be empty"):
        LlmSettings(model=" ")


def test_blank_values_fall_back_to_defaults() -> None:
    settings = LlmSettings.from_settings(
        {"model": "", "temperature": " ", "base_url": ""}, environ={}
    )

    assert settings.model == "z-ai/glm-4.7-flash"
    assert settings.temperature == 0.2
    assert settings.base_url == "https://openrouter.ai/api/v1"


def test_public_dict_never_contains_the_key() -> None:
    settings = LlmSettings(api_key="sk-very-secret")

    public = settings.to_public_dict()

    assert public["api_key_set"] is True
    assert "sk-very-secret" not in repr(public)
    assert "sk-very-secret" not in repr(settings)


def test_with_api_key_returns_copy() -> None:
    base = LlmSettings()

    updated = base.with_api_key("sk-new")

    assert updated.api_key == "sk-new"
    assert base.api_key == ""


@pytest.mark.parametrize(
    "key,value,message",
    [
        ("temperature", "warm", "'temperature' must be a number"),
        ("max_tokens", "lots", "'max_tokens' must be an integer"),
        ("max_tokens", "0", "'max_tokens' must be > 0"),
        ("extra_headers_json", "{", "not valid JSON"),
        ("extra_headers_json", "[1]", "must be a JSON object"),
        ("colour", "blue", "unknown setting"),
    ],
)
def test_writes_are_validated_strictly(key: str, value: str, message: str) -> None:
    with pytest.raises(SettingsError, match=message):
        validate_setting(key, value)


@pytest.mark.parametrize(
    "key,value",
    [("temperature", "0.7"), ("max_tokens", "8000"), ("extra_headers_json", "{}"), ("model", "")],
)
def test_valid_writes_pass(key: str, value: str) -> None:
    validate_setting(key, value)
