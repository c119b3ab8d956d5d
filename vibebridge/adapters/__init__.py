"""Adapters package - normalized agent events and the per-session channel.

Backend-specific event schemas are mapped onto one event model here, and
the EventBus carries those events to the session worker.
"""
from __future__ import annotations

__all__ = [
    "EventBus",
    "AgentOutput",
    "ProcessClosed",
    "normalize_claude_event",
    "normalize_opencode_event",
]

from vibebridge.adapters.event_bus import AgentOutput, EventBus, ProcessClosed
from vibebridge.adapters.normalize import normalize_claude_event, normalize_opencode_event
