from __future__ import annotations

from pathlib import Path

import pytest

from profix.config import ProFixConfig, load_config
from profix.errors import ConfigError


def _write(tmp_path: Path, body: str) -> None:
    (tmp_path / "pyproject.toml").write_text(body.lstrip(), encoding="utf-8")


def test_defaults_without_pyproject(tmp_path: Path) -> None:
    config = load_config(tmp_path, environ={})
    assert config == ProFixConfig()
    assert config.model.resolved("name") == "gemini-2.5-flash"
    assert config.model.resolved("api_key_env") == "GEMINI_API_KEY"


def test_full_table(tmp_path: Path) -> None:
    _write(
        tmp_path,
        """
[tool.profix]
profile = "Edge-Cases"
backup = true

[tool.profix.model]
provider = "OpenAI"
name = "gpt-4.1-mini"
api-key-env = "MY_KEY"
timeout = 30
max-attempts = 5
temperature = 0.2

[tool.profix.display]
hide-severities = ["info", "WARNING", "info"]
""",
    )
    config = load_config(tmp_path, environ={})
    assert config.profile == "edge-cases"
    assert config.backup is True
    assert config.model.provider == "openai"
    assert config.model.resolved("name") == "gpt-4.1-mini"
    assert config.model.resolved("api_key_env") == "MY_KEY"
    assert config.model.resolved("base_url") == "https://api.openai.com/v1"
    assert (config.model.timeout, config.model.max_attempts, config.model.temperature) == (30, 5, 0.2)
    assert config.display.hide_severities == ("Info", "Warning")


def test_snake_case_keys_are_accepted(tmp_path: Path) -> None:
    _write(tmp_path, '[tool.profix.model]\nmax_attempts = 2\napi_key_env = "K"\n')
    config = load_config(tmp_path, environ={})
    assert config.model.max_attempts == 2
    assert config.model.api_key_env == "K"


@pytest.mark.parametrize(
    "body",
    [
        '[tool.profix]\nprofile = "nitpick"\n',
        '[tool.profix]\nbackup = "yes"\n',
        "[tool.profix]\nmodel = 3\n",
        "[tool.profix.model]\ntimeout = 0\n",
        "[tool.profix.model]\nmax-attempts = 50\n",
        "[tool.profix.model]\ntemperature = true\n",
        '[tool.profix.model]\nname = ""\n',
        '[tool.profix.display]\nhide-severities = ["fatal"]\n',
        '[tool.profix.display]\nhide-severities = "info"\n',
        "[tool.profix\n",
    ],
)
def test_invalid_values_raise(tmp_path: Path, body: str) -> None:
    _write(tmp_path, body)
    with pytest.raises(ConfigError):
        load_config(tmp_path, environ={})


def test_environment_overrides(tmp_path: Path) -> None:
    _write(tmp_path, '[tool.profix.model]\nprovider = "gemini"\napi-key-env = "G"\ntimeout = 12\n')
    config = load_config(tmp_path, environ={"PROFIX_PROVIDER": "openai", "PROFIX_MODEL": "gpt-x"})
    assert config.model.provider == "openai"
    assert config.model.name == "gpt-x"
    assert config.model.resolved("api_key_env") == "OPENAI_API_KEY"
    assert config.model.timeout == 12


def test_other_tools_tables_are_ignored(tmp_path: Path) -> None:
    _write(tmp_path, '[tool.black]\nline-length = 100\n')
    assert load_config(tmp_path, environ={}) == ProFixConfig()
