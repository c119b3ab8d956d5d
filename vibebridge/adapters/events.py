"""Normalized agent events.

Every backend adapter translates its native output schema into these
dataclasses. Consumers dispatch on ``event_type`` (or ``isinstance``)
and never see backend-specific payloads.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class AgentEvent:
    """Base normalized event."""
    event_type: str = ""
    session_id: str | None = None


@dataclass
class InitEvent(AgentEvent):
    event_type: str = "init"
    model: str | None = None
    cwd: str | None = None


@dataclass
class ToolUseEvent(AgentEvent):
    event_type: str = "tool_use"
    tool: str = ""
    input: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolOutputEvent(AgentEvent):
    event_type: str = "tool_output"
    output: str = ""
    is_error: bool = False


@dataclass
class TextEvent(AgentEvent):
    event_type: str = "text"
    content: str = ""


@dataclass
class ErrorEvent(AgentEvent):
    event_type: str = "error"
    content: str = ""


@dataclass
class DoneEvent(AgentEvent):
    event_type: str = "done"
    duration_ms: int | None = None
    is_error: bool = False
    content: str | None = None


def event_to_dict(event: AgentEvent) -> dict[str, Any]:
    """Convert a typed event to a plain dict for JSON output."""
    d: dict[str, Any] = {}
    for f in event.__dataclass_fields__:
        val = getattr(event, f)
        if val is not None:
            d[f] = val
    if "event_type" in d:
        d["type"] = d.pop("event_type")
    return d

