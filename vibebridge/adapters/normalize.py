"""Backend event schemas -> normalized events.

Each function maps one parsed JSON object from a backend's stdout to
zero or one ``AgentEvent``. Events with nothing user-visible (empty
text deltas, bookkeeping records, unknown kinds) map to ``None``.
"""
from __future__ import annotations

from typing import Any

from .events import (
    AgentEvent,
    DoneEvent,
    ErrorEvent,
    InitEvent,
    TextEvent,
    ToolOutputEvent,
    ToolUseEvent,
)


# ── Claude Code (--output-format stream-json) ──


def normalize_claude_event(event: dict[str, Any]) -> AgentEvent | None:
    """Normalize one Claude stream-json record."""
    kind = event.get("type")
    session_id = event.get("session_id")

    if kind == "system":
        if event.get("subtype") == "init":
            return InitEvent(
                session_id=session_id,
                model=event.get("model"),
                cwd=event.get("cwd"),
            )
        return None

    if kind == "assistant":
        message = event.get("message") or {}
        for block in message.get("content") or []:
            if not isinstance(block, dict):
                continue
            if block.get("type") == "tool_use":
                return ToolUseEvent(
                    session_id=session_id,
                    tool=block.get("name") or "Unknown",
                    input=block.get("input") or {},
                )
            if block.get("type") == "text":
                text = block.get("text") or ""
                if text.strip():
                    return TextEvent(session_id=session_id, content=text)
        return None

    if kind == "user":
        result = event.get("tool_use_result")
        if not isinstance(result, dict):
            return None
        stdout = result.get("stdout") or ""
        stderr = result.get("stderr") or ""
        output = stdout or stderr
        if output.strip():
            return ToolOutputEvent(
                session_id=session_id,
                output=output.strip(),
                is_error=bool(stderr),
            )
        return None

    if kind == "result":
        is_error = bool(event.get("is_error"))
        return DoneEvent(
            session_id=session_id,
            duration_ms=event.get("duration_ms"),
            is_error=is_error,
            content=event.get("result") if is_error else None,
        )

    return None


# ── OpenCode (run --format json) ──


def normalize_opencode_event(event: dict[str, Any]) -> AgentEvent | None:
    """Normalize one OpenCode JSON record."""
    kind = event.get("type")
    session_id = event.get("sessionID")
    part = event.get("part")

    if kind == "tool_use":
        if not isinstance(part, dict):
            return None
        state = part.get("state") or {}
        return ToolUseEvent(
            session_id=session_id,
            tool=part.get("tool") or "Unknown",
            input=state.get("input") or {},
        )

    if kind == "text":
        if not isinstance(part, dict) or not part.get("text"):
            return None
        return TextEvent(session_id=session_id, content=part["text"])

    if kind == "error":
        error = event.get("error") or {}
        message = error.get("name") or "Unknown error"
        data = error.get("data") or {}
        if isinstance(data, dict) and data.get("message"):
            message = data["message"]
        return ErrorEvent(session_id=session_id, content=message)

    # step_start / step_finish carry no user-visible content
    return None
