"""Slash command parser and help table."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class ParsedCommand:
    """A parsed slash command."""

    name: str
    args: list[str]
    raw: str

    @property
    def arg_text(self) -> str:
        """Everything after the command word, unsplit (paths may contain spaces)."""
        parts = self.raw.split(None, 1)
        return parts[1].strip() if len(parts) > 1 else ""


def parse_command(text: str) -> ParsedCommand | None:
    """Parse a /command from input text.

    Returns None if text does not start with '/'. A ``@botname`` suffix
    on the command word (group-chat form) is dropped.
    """
    stripped = text.strip()
    if not stripped.startswith("/"):
        return None
    parts = stripped.split()
    name = parts[0][1:].split("@", 1)[0].lower()
    args = parts[1:] if len(parts) > 1 else []
    return ParsedCommand(name=name, args=args, raw=stripped)


def parse_shell_escape(text: str) -> str | None:
    """Return the command of a ``!command`` message, or None."""
    stripped = text.strip()
    if not stripped.startswith("!") or len(stripped) < 2:
        return None
    return stripped[1:].strip() or None


COMMAND_HELP: dict[str, str] = {
    "start": "Welcome and help",
    "new": "Start a new conversation",
    "stop": "Stop the current task",
    "resume": "Continue the most recent conversation in this directory",
    "status": "Show current status",
    "cd": "Change working directory (/cd PATH)",
    "help": "Show this help message",
}
