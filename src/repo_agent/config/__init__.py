"""Runtime configuration and provider settings snapshot."""

from repo_agent.config.loader import (
    ENV_PREFIX,
    AppConfig,
    ConfigLoadError,
    default_config,
    dump_effective_config,
    load_config,
)
from repo_agent.config.settings import (
    SETTINGS_KEYS,
    LlmSettings,
    SettingsError,
    validate_setting,
)

__all__ = [
    "ENV_PREFIX",
    "SETTINGS_KEYS",
    "AppConfig",
    "ConfigLoadError",
    "LlmSettings",
    "SettingsError",
    "default_config",
    "dump_effective_config",
    "load_config",
    "validate_setting",
]
