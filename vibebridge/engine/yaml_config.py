"""YAML configuration loader.

Loads a single YAML file on top of the environment-derived config.
When no YAML file exists, env vars work exactly as before.

Example YAML:
    telegram:
      bot_token: "123:abc"
      allowed_user_id: 123456789
      poll_timeout: 30

    agent:
      backend: claude
      permission_mode: acceptEdits
      project_root: ~/code/myproject
      follow_up_wait_seconds: 600
      commands:
        claude: /usr/local/bin/claude
        opencode: opencode

    logging:
      level: DEBUG
      dir: ~/.vibebridge/logs
"""
from __future__ import annotations

import logging
import os
from dataclasses import replace
from pathlib import Path
from typing import Any

import yaml

from .config import BridgeConfig, parse_permission_mode
from .errors import ConfigError

logger = logging.getLogger(__name__)


def default_config_path() -> Path:
    """Return the per-user config path (~/.vibebridge/config.yaml)."""
    return Path.home() / ".vibebridge" / "config.yaml"


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping")
    return value


def _expand_env(value: Any) -> Any:
    """Expand ``${VAR}`` references in string values."""
    if isinstance(value, str):
        return os.path.expandvars(value)
    return value


def apply_yaml_config(base: BridgeConfig, raw: dict[str, Any]) -> BridgeConfig:
    """Return a copy of *base* with every setting present in *raw* applied."""
    telegram = _section(raw, "telegram")
    agent = _section(raw, "agent")
    logging_raw = _section(raw, "logging")
    commands = agent.get("commands") or {}

    overrides: dict[str, Any] = {}
    try:
        if "bot_token" in telegram:
            overrides["telegram_bot_token"] = str(_expand_env(telegram["bot_token"]))
        if "allowed_user_id" in telegram:
            value = telegram["allowed_user_id"]
            overrides["allowed_user_id"] = int(value) if value is not None else None
        if "poll_timeout" in telegram:
            overrides["poll_timeout_seconds"] = int(telegram["poll_timeout"])
        if "api_base_url" in telegram:
            overrides["api_base_url"] = str(telegram["api_base_url"]).rstrip("/")

        if "backend" in agent:
            overrides["backend"] = str(agent["backend"])
        if "permission_mode" in agent:
            overrides["permission_mode"] = parse_permission_mode(
                str(agent["permission_mode"])
            )
        if "project_root" in agent:
            overrides["project_root"] = str(_expand_env(agent["project_root"]))
        if "follow_up_wait_seconds" in agent:
            overrides["follow_up_wait_seconds"] = float(
                agent["follow_up_wait_seconds"]
            )
        if "claude" in commands:
            overrides["claude_command"] = str(commands["claude"])
        if "opencode" in commands:
            overrides["opencode_command"] = str(commands["opencode"])

        if "level" in logging_raw:
            overrides["log_level"] = str(logging_raw["level"]).upper()
        if "dir" in logging_raw:
            overrides["log_dir"] = os.path.expanduser(
                str(_expand_env(logging_raw["dir"]))
            )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid config value: {exc}") from exc

    if overrides:
        logger.info(
            "apply_yaml_config: overriding %s", ", ".join(sorted(overrides))
        )
    return replace(base, **overrides)


def load_yaml_config(
    path: str | Path | None = None,
    base: BridgeConfig | None = None,
) -> BridgeConfig:
    """Load config from env, then overlay the YAML file at *path*.

    A missing file at the default location is not an error; a missing
    file that was asked for explicitly is.
    """
    explicit = path is not None
    path = Path(path) if path is not None else default_config_path()
    base = base if base is not None else BridgeConfig.from_env()

    if not path.is_file():
        if explicit:
            raise ConfigError(f"Config file not found: {path}")
        logger.debug("load_yaml_config: no config file at %s", path)
        return base

    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise ConfigError(f"Cannot parse {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Cannot read {path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(f"Top level of {path} must be a mapping")

    logger.info(
        "Parsed YAML config %s, sections: %s",
        path.name, ", ".join(sorted(raw)) or "(empty)",
    )
    return apply_yaml_config(base, raw)
