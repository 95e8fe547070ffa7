from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, cast

from profix.engine.types import Severity
from profix.errors import ConfigError
from profix.findings import normalize_severity

DEFAULT_PROFILE = "review"
DEFAULT_PROVIDER = "gemini"
DEFAULT_TIMEOUT_SECONDS = 60
DEFAULT_MAX_ATTEMPTS = 3

# Per-provider defaults; anything set in `[tool.profix.model]` wins.
PROVIDER_DEFAULTS: Mapping[str, Mapping[str, str]] = {
    "gemini": {
        "name": "gemini-2.5-flash",
        "api_key_env": "GEMINI_API_KEY",
        "base_url": "https://generativelanguage.googleapis.com",
    },
    "openai": {
        "name": "gpt-4o-mini",
        "api_key_env": "OPENAI_API_KEY",
        "base_url": "https://api.openai.com/v1",
    },
}


@dataclass(frozen=True, slots=True)
class ModelConfig:
    """
    Model collaborator settings.

    `provider` is a built-in name (`gemini`, `openai`, `static`) or a plugin
    spec `module:attr` resolving to a client or a client factory.
    """

    provider: str = DEFAULT_PROVIDER
    name: str | None = None
    api_key_env: str | None = None
    base_url: str | None = None
    timeout: int = DEFAULT_TIMEOUT_SECONDS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    temperature: float = 0.0

    def resolved(self, key: str) -> str | None:
        value = getattr(self, key)
        if value is not None:
            return cast(str, value)
        return PROVIDER_DEFAULTS.get(self.provider, {}).get(key)


@dataclass(frozen=True, slots=True)
class DisplayConfig:
    # None means "use the analysis profile's own presentation filter".
    hide_severities: tuple[Severity, ...] | None = None


@dataclass(frozen=True, slots=True)
class ProFixConfig:
    profile: str = DEFAULT_PROFILE
    backup: bool = False
    model: ModelConfig = field(default_factory=ModelConfig)
    display: DisplayConfig = field(default_factory=DisplayConfig)


def load_config(project_dir: Path | str = ".", *, environ: Mapping[str, str] | None = None) -> ProFixConfig:
    """
    Load ProFix configuration from `pyproject.toml` within `project_dir`.

    If no file / no `[tool.profix]` table exists, returns defaults. The
    `PROFIX_PROVIDER` and `PROFIX_MODEL` environment variables override the
    model provider and name.
    """

    config = _load_file_config(Path(project_dir))
    return _apply_env_overrides(config, os.environ if environ is None else environ)


def _load_file_config(project_dir: Path) -> ProFixConfig:
    pyproject_path = project_dir / "pyproject.toml"
    if not pyproject_path.exists():
        return ProFixConfig()

    try:
        data = tomllib.loads(pyproject_path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {pyproject_path}: {exc}") from exc

    tool_table = data.get("tool", {})
    if not isinstance(tool_table, dict):
        return ProFixConfig()

    profix_table = tool_table.get("profix", {})
    if not isinstance(profix_table, dict) or not profix_table:
        return ProFixConfig()

    return _parse_profix_table(profix_table)


def _get(table: Mapping[str, Any], key: str, default: Any = None) -> Any:
    # Accept both kebab-case and snake_case keys.
    if key in table:
        return table[key]
    return table.get(key.replace("-", "_"), default)


def _parse_profix_table(table: dict[str, Any]) -> ProFixConfig:
    from profix.pipeline import PROFILES

    profile = _get(table, "profile", DEFAULT_PROFILE)
    if not isinstance(profile, str) or profile.strip().lower() not in PROFILES:
        raise ConfigError(f"`tool.profix.profile` must be one of: {', '.join(sorted(PROFILES))}.")

    backup = _get(table, "backup", False)
    if not isinstance(backup, bool):
        raise ConfigError("`tool.profix.backup` must be a boolean.")

    return ProFixConfig(
        profile=profile.strip().lower(),
        backup=backup,
        model=_parse_model_config(_get(table, "model", {})),
        display=_parse_display_config(_get(table, "display", {})),
    )


def _optional_str(table: Mapping[str, Any], key: str, *, field_name: str) -> str | None:
    value = _get(table, key)
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"`{field_name}` must be a non-empty string.")
    return value.strip()


def _parse_model_config(value: Any) -> ModelConfig:
    if value is None:
        return ModelConfig()
    if not isinstance(value, dict):
        raise ConfigError("`tool.profix.model` must be a table.")

    provider = _optional_str(value, "provider", field_name="tool.profix.model.provider") or DEFAULT_PROVIDER

    timeout = _get(value, "timeout", DEFAULT_TIMEOUT_SECONDS)
    if isinstance(timeout, bool) or not isinstance(timeout, int) or timeout <= 0:
        raise ConfigError("`tool.profix.model.timeout` must be a positive integer (seconds).")

    max_attempts = _get(value, "max-attempts", DEFAULT_MAX_ATTEMPTS)
    if isinstance(max_attempts, bool) or not isinstance(max_attempts, int) or not (1 <= max_attempts <= 10):
        raise ConfigError("`tool.profix.model.max-attempts` must be an integer between 1 and 10.")

    temperature = _get(value, "temperature", 0.0)
    if isinstance(temperature, bool) or not isinstance(temperature, int | float) or not (0 <= temperature <= 2):
        raise ConfigError("`tool.profix.model.temperature` must be a number between 0 and 2.")

    return ModelConfig(
        provider=provider.lower() if ":" not in provider else provider,
        name=_optional_str(value, "name", field_name="tool.profix.model.name"),
        api_key_env=_optional_str(value, "api-key-env", field_name="tool.profix.model.api-key-env"),
        base_url=_optional_str(value, "base-url", field_name="tool.profix.model.base-url"),
        timeout=timeout,
        max_attempts=max_attempts,
        temperature=float(temperature),
    )


def _parse_display_config(value: Any) -> DisplayConfig:
    if value is None:
        return DisplayConfig()
    if not isinstance(value, dict):
        raise ConfigError("`tool.profix.display` must be a table.")

    raw = _get(value, "hide-severities")
    if raw is None:
        return DisplayConfig()
    if not isinstance(raw, list) or any(not isinstance(v, str) for v in raw):
        raise ConfigError("`tool.profix.display.hide-severities` must be a list of strings.")

    hidden: list[Severity] = []
    for item in raw:
        severity = normalize_severity(item)
        if severity is None:
            raise ConfigError("`tool.profix.display.hide-severities` entries must be one of: error, warning, info.")
        if severity not in hidden:
            hidden.append(severity)
    return DisplayConfig(hide_severities=tuple(hidden))


def _apply_env_overrides(config: ProFixConfig, environ: Mapping[str, str]) -> ProFixConfig:
    model = config.model
    provider = environ.get("PROFIX_PROVIDER", "").strip()
    if provider:
        # A different provider invalidates provider-specific file settings.
        if provider != model.provider:
            model = ModelConfig(timeout=model.timeout, max_attempts=model.max_attempts, temperature=model.temperature)
        model = replace(model, provider=provider)
    name = environ.get("PROFIX_MODEL", "").strip()
    if name:
        model = replace(model, name=name)
    if model is config.model:
        return config
    return replace(config, model=model)
