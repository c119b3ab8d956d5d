"""Core data models shared by the engine and the bot layer.

Enums and small value types only, to avoid circular imports.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class PermissionMode(str, Enum):
    """Permission modes understood by the agent CLI."""
    DEFAULT = "default"
    ACCEPT_EDITS = "acceptEdits"
    BYPASS = "bypassPermissions"
    PLAN = "plan"


class SessionState(str, Enum):
    """Dispatch-level session states."""
    IDLE = "idle"
    BUSY = "busy"


@dataclass(frozen=True)
class ResumeToken:
    """Selects which backend conversation the next process continues.

    Either a concrete backend session id, or the "continue most recent"
    sentinel. Absence of a token (``None`` on the session) means start
    fresh.
    """
    session_id: str | None = None
    continue_recent: bool = False

    @classmethod
    def for_session(cls, session_id: str) -> ResumeToken:
        return cls(session_id=session_id)

    @classmethod
    def most_recent(cls) -> ResumeToken:
        return cls(continue_recent=True)

    def describe(self) -> str:
        if self.continue_recent:
            return "continue most recent"
        return f"{(self.session_id or '')[:8]}..."
