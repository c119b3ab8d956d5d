"""Exception hierarchy for the bridge core.

Specific exceptions for each failure mode. Process and display
failures are absorbed at component boundaries; these types exist so
each boundary can catch exactly what it is responsible for.
"""
from __future__ import annotations


class BridgeError(Exception):
    """Base exception for all bridge errors."""


class ConfigError(BridgeError):
    """Configuration is missing or invalid."""


class ProcessSpawnError(BridgeError):
    """The agent executable could not be launched."""
    def __init__(self, command: str, reason: str):
        self.command = command
        self.reason = reason
        super().__init__(f"Failed to start '{command}': {reason}")


class NotStartedError(BridgeError):
    """Input was sent to an agent before its process was started."""
    def __init__(self, backend: str):
        self.backend = backend
        super().__init__(f"{backend} process not started")


class MalformedOutputLine(BridgeError):
    """One line of agent stdout could not be parsed as a JSON object."""
    def __init__(self, line: str, reason: str):
        self.line = line
        self.reason = reason
        super().__init__(f"Unparsable agent output ({reason}): {line[:200]!r}")


class UnexpectedExitError(BridgeError):
    """The agent process closed while a task was still in progress."""

    # Longer stderr dumps are replaced by a generic notice.
    MAX_STDERR_DISPLAY = 500

    def __init__(self, exit_code: int | None, stderr: str):
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(f"Agent exited unexpectedly (code={exit_code})")

    def user_message(self) -> str:
        """Crash notice suitable for showing in chat."""
        detail = self.stderr.strip()
        if detail and len(detail) <= self.MAX_STDERR_DISPLAY:
            return f"Agent crashed (exit {self.exit_code}):\n{detail}"
        return f"Agent process exited unexpectedly (exit {self.exit_code})."


class DisplayUpdateError(BridgeError):
    """A chat send/edit call failed."""
    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"{operation} failed: {reason}")


class TransportError(BridgeError):
    """A chat API call failed outside of message display (polling, files)."""
    def __init__(self, method: str, reason: str):
        self.method = method
        self.reason = reason
        super().__init__(f"{method} failed: {reason}")
