"""Bridge engine: sessions, agent process adapters and configuration."""
from .models import PermissionMode, ResumeToken, SessionState
from .config import BridgeConfig
from .errors import (
    BridgeError,
    ConfigError,
    DisplayUpdateError,
    MalformedOutputLine,
    NotStartedError,
    ProcessSpawnError,
    TransportError,
    UnexpectedExitError,
)

__all__ = [
    "BridgeConfig",
    "BridgeError",
    "ConfigError",
    "DisplayUpdateError",
    "MalformedOutputLine",
    "NotStartedError",
    "PermissionMode",
    "ProcessSpawnError",
    "ResumeToken",
    "SessionState",
    "TransportError",
    "UnexpectedExitError",
]
