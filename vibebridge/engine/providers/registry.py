"""Agent registry: maps backend names to adapter factories."""
from __future__ import annotations

import logging
import shutil

from .base import AgentAdapter, AgentOptions, EventSink
from .claude_provider import ClaudeAdapter
from .opencode_provider import OpenCodeAdapter

logger = logging.getLogger(__name__)

_ADAPTER_TYPES: dict[str, type[AgentAdapter]] = {
    "claude": ClaudeAdapter,
    "opencode": OpenCodeAdapter,
}


class AgentRegistry:
    """Registry of agent backends.

    Adapters are single-use (one per task), so the registry stores the
    adapter class and configured command rather than instances.
    """

    def __init__(self) -> None:
        self._backends: dict[str, tuple[type[AgentAdapter], str]] = {}

    def register(
        self,
        name: str,
        adapter_cls: type[AgentAdapter],
        command: str | None = None,
    ) -> None:
        """Register a backend by name."""
        resolved = command or adapter_cls.default_command
        self._backends[name] = (adapter_cls, resolved)
        logger.info(
            "Agent backend registered: %s (command=%s available=%s)",
            name,
            resolved,
            shutil.which(resolved) is not None,
        )

    def create(
        self,
        name: str,
        options: AgentOptions,
        on_event: EventSink,
    ) -> AgentAdapter:
        """Build a fresh adapter for one task."""
        entry = self._backends.get(name)
        if entry is None:
            available = ", ".join(self._backends)
            raise KeyError(
                f"Agent backend '{name}' not found. "
                f"Available: {available or 'none'}"
            )
        adapter_cls, command = entry
        return adapter_cls(options, on_event, command=command)

    def is_available(self, name: str) -> bool:
        """Check that a backend is registered AND its CLI is on PATH."""
        entry = self._backends.get(name)
        if entry is None:
            return False
        return shutil.which(entry[1]) is not None


def build_agent_registry(commands: dict[str, str] | None = None) -> AgentRegistry:
    """Build a registry with every known backend.

    *commands* optionally overrides the executable per backend name.
    """
    commands = commands or {}
    registry = AgentRegistry()
    for name, adapter_cls in _ADAPTER_TYPES.items():
        registry.register(name, adapter_cls, commands.get(name))
    return registry
