"""Configuration loaded from environment variables.

All settings except the bot token have sensible defaults. Override via
TELEGRAM_* and VIBEBRIDGE_* env vars, or a YAML file (see yaml_config).
"""
from __future__ import annotations

import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import ConfigError
from .models import PermissionMode

logger = logging.getLogger(__name__)


# Optional async callback for observing normalized agent events.
# Signature: async def callback(event: dict[str, Any]) -> None
EventCallback = Callable[[dict[str, Any]], Awaitable[None]]


async def fire_event(
    callback: EventCallback | None,
    event: dict[str, Any],
) -> None:
    """Fire an event callback if set. Errors are logged, never raised."""
    if callback is None:
        return
    try:
        await callback(event)
    except Exception:
        logger.debug("Event callback failed", exc_info=True)


def _default_log_dir() -> str:
    return str(Path.home() / ".vibebridge" / "logs")


def parse_permission_mode(value: str) -> PermissionMode:
    """Parse a permission mode string to enum."""
    mapping = {
        "default": PermissionMode.DEFAULT,
        "acceptEdits": PermissionMode.ACCEPT_EDITS,
        "accept_edits": PermissionMode.ACCEPT_EDITS,
        "bypassPermissions": PermissionMode.BYPASS,
        "bypass": PermissionMode.BYPASS,
        "plan": PermissionMode.PLAN,
    }
    try:
        return mapping[value]
    except KeyError:
        raise ConfigError(f"Unknown permission mode: {value!r}") from None


@dataclass
class BridgeConfig:
    """Bridge configuration."""

    telegram_bot_token: str = ""
    # Only this chat user may drive the agent. None allows nobody.
    allowed_user_id: int | None = None

    # Initial cwd for new sessions. Empty means the user's home.
    project_root: str = ""
    backend: str = "claude"
    permission_mode: PermissionMode = PermissionMode.ACCEPT_EDITS
    claude_command: str = "claude"
    opencode_command: str = "opencode"
    # Upper bound for a queued follow-up turn to wait on the previous
    # opencode process before it is killed.
    follow_up_wait_seconds: float = 600.0

    # Telegram long polling
    poll_timeout_seconds: int = 30
    api_base_url: str = "https://api.telegram.org"

    # Logging
    log_level: str = "INFO"
    log_dir: str = field(default_factory=_default_log_dir)

    # Optional async callback receiving every normalized event as a dict.
    event_callback: EventCallback | None = field(default=None, repr=False)

    @classmethod
    def from_env(cls) -> BridgeConfig:
        """Load configuration from TELEGRAM_* and VIBEBRIDGE_* variables."""
        bridge_vars = sorted(
            k for k in os.environ if k.startswith("VIBEBRIDGE_")
        )
        if bridge_vars:
            logger.info(
                "BridgeConfig.from_env: VIBEBRIDGE_* env overrides: %s",
                ", ".join(bridge_vars),
            )

        allowed = os.getenv("TELEGRAM_ALLOWED_USER_ID", "").strip()
        try:
            allowed_user_id = int(allowed) if allowed else None
        except ValueError:
            raise ConfigError(
                f"TELEGRAM_ALLOWED_USER_ID must be an integer, got {allowed!r}"
            ) from None

        try:
            follow_up_wait = float(os.getenv(
                "VIBEBRIDGE_FOLLOW_UP_WAIT",
                str(cls.follow_up_wait_seconds),
            ))
            poll_timeout = int(os.getenv(
                "VIBEBRIDGE_POLL_TIMEOUT", str(cls.poll_timeout_seconds)
            ))
        except ValueError as exc:
            raise ConfigError(f"Invalid numeric setting: {exc}") from None

        config = cls(
            telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN", ""),
            allowed_user_id=allowed_user_id,
            project_root=os.getenv("VIBEBRIDGE_PROJECT_ROOT", cls.project_root),
            backend=os.getenv("VIBEBRIDGE_BACKEND", cls.backend),
            permission_mode=parse_permission_mode(
                os.getenv("VIBEBRIDGE_PERMISSION_MODE", cls.permission_mode.value)
            ),
            claude_command=os.getenv(
                "VIBEBRIDGE_CLAUDE_COMMAND", cls.claude_command
            ),
            opencode_command=os.getenv(
                "VIBEBRIDGE_OPENCODE_COMMAND", cls.opencode_command
            ),
            follow_up_wait_seconds=follow_up_wait,
            poll_timeout_seconds=poll_timeout,
            log_level=os.getenv("VIBEBRIDGE_LOG_LEVEL", cls.log_level).upper(),
            log_dir=os.getenv("VIBEBRIDGE_LOG_DIR") or _default_log_dir(),
        )
        logger.info(
            "BridgeConfig.from_env: backend=%s project_root=%s allowed_user=%s",
            config.backend, config.project_root or "~", config.allowed_user_id,
        )
        return config

    def validate(self, require_token: bool = True) -> None:
        """Raise ConfigError if the configuration cannot run a bridge."""
        if require_token and not self.telegram_bot_token:
            raise ConfigError("TELEGRAM_BOT_TOKEN is not set")
        if self.backend not in ("claude", "opencode"):
            raise ConfigError(f"Unknown backend: {self.backend!r}")
        if self.follow_up_wait_seconds <= 0:
            raise ConfigError("follow_up_wait_seconds must be positive")
        if self.project_root:
            root = Path(os.path.expanduser(self.project_root))
            if not root.is_dir():
                raise ConfigError(f"Project root does not exist: {root}")

    def agent_commands(self) -> dict[str, str]:
        return {"claude": self.claude_command, "opencode": self.opencode_command}
