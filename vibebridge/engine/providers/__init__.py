"""Agent backend adapters."""
from .base import AgentAdapter, AgentOptions, JsonLineBuffer
from .registry import AgentRegistry, build_agent_registry
from .claude_provider import ClaudeAdapter
from .opencode_provider import OpenCodeAdapter

__all__ = [
    "AgentAdapter",
    "AgentOptions",
    "JsonLineBuffer",
    "AgentRegistry",
    "build_agent_registry",
    "ClaudeAdapter",
    "OpenCodeAdapter",
]
