"""Tests for env and YAML configuration loading."""
from __future__ import annotations

import pytest

from vibebridge.engine.config import BridgeConfig, fire_event, parse_permission_mode
from vibebridge.engine.errors import ConfigError
from vibebridge.engine.models import PermissionMode
from vibebridge.engine.yaml_config import load_yaml_config

_ENV_KEYS = [
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_ALLOWED_USER_ID",
    "VIBEBRIDGE_PROJECT_ROOT",
    "VIBEBRIDGE_BACKEND",
    "VIBEBRIDGE_PERMISSION_MODE",
    "VIBEBRIDGE_FOLLOW_UP_WAIT",
    "VIBEBRIDGE_LOG_LEVEL",
    "VIBEBRIDGE_LOG_DIR",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults():
    config = BridgeConfig.from_env()
    assert config.telegram_bot_token == ""
    assert config.allowed_user_id is None
    assert config.backend == "claude"
    assert config.permission_mode is PermissionMode.ACCEPT_EDITS
    assert config.follow_up_wait_seconds == 600.0


def test_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
    monkeypatch.setenv("TELEGRAM_ALLOWED_USER_ID", "42")
    monkeypatch.setenv("VIBEBRIDGE_BACKEND", "opencode")
    monkeypatch.setenv("VIBEBRIDGE_PERMISSION_MODE", "plan")
    monkeypatch.setenv("VIBEBRIDGE_LOG_LEVEL", "debug")
    monkeypatch.setenv("VIBEBRIDGE_PROJECT_ROOT", str(tmp_path))

    config = BridgeConfig.from_env()
    assert config.telegram_bot_token == "123:abc"
    assert config.allowed_user_id == 42
    assert config.backend == "opencode"
    assert config.permission_mode is PermissionMode.PLAN
    assert config.log_level == "DEBUG"
    config.validate()


def test_bad_user_id(monkeypatch):
    monkeypatch.setenv("TELEGRAM_ALLOWED_USER_ID", "me")
    with pytest.raises(ConfigError):
        BridgeConfig.from_env()


def test_unknown_permission_mode():
    with pytest.raises(ConfigError):
        parse_permission_mode("yolo")


@pytest.mark.parametrize("overrides", [
    {"telegram_bot_token": ""},
    {"backend": "aider"},
    {"follow_up_wait_seconds": 0},
    {"project_root": "/definitely/not/here"},
])
def test_validate_rejects(overrides):
    kwargs = {"telegram_bot_token": "t", **overrides}
    with pytest.raises(ConfigError):
        BridgeConfig(**kwargs).validate()


def test_yaml_overrides_env(monkeypatch, tmp_path):
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "from-env")
    monkeypatch.setenv("MY_TOKEN", "from-var")
    path = tmp_path / "config.yaml"
    path.write_text(
        "telegram:\n"
        "  bot_token: ${MY_TOKEN}\n"
        "  allowed_user_id: 7\n"
        "agent:\n"
        "  backend: opencode\n"
        "  permission_mode: bypass\n"
        "  follow_up_wait_seconds: 30\n"
        "  commands:\n"
        "    opencode: /opt/bin/opencode\n"
        "logging:\n"
        "  level: warning\n"
    )
    config = load_yaml_config(path)
    assert config.telegram_bot_token == "from-var"
    assert config.allowed_user_id == 7
    assert config.backend == "opencode"
    assert config.permission_mode is PermissionMode.BYPASS
    assert config.follow_up_wait_seconds == 30.0
    assert config.agent_commands() == {"claude": "claude", "opencode": "/opt/bin/opencode"}
    assert config.log_level == "WARNING"


def test_missing_default_yaml_falls_back_to_env(monkeypatch, tmp_path):
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "env-only")
    assert load_yaml_config().telegram_bot_token == "env-only"


def test_missing_explicit_yaml_is_error(tmp_path):
    with pytest.raises(ConfigError):
        load_yaml_config(tmp_path / "missing.yaml")


def test_invalid_yaml(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("telegram: [unclosed\n")
    with pytest.raises(ConfigError):
        load_yaml_config(path)


def test_section_must_be_mapping(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("agent: claude\n")
    with pytest.raises(ConfigError):
        load_yaml_config(path)


@pytest.mark.asyncio
async def test_fire_event_swallows_callback_errors():
    seen = []

    async def good(event):
        seen.append(event)

    async def bad(event):
        raise RuntimeError("observer broke")

    await fire_event(None, {"type": "text"})
    await fire_event(good, {"type": "text"})
    await fire_event(bad, {"type": "text"})
    assert seen == [{"type": "text"}]
