"""Chat display formatting for agent activity.

Pure functions only: tool invocations become one-line status strings,
tool output and assistant text are trimmed to the chat slot limits.

Adding a new tool format requires only a single decorated function:

    @tool_formatter("MyTool")
    def _format_my_tool(args):
        return f"Doing `{args.get('thing')}`"
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable

MAX_TOOL_OUTPUT = 1000
MAX_RESPONSE = 1500
MAX_BASH_COMMAND = 50

TOOL_OUTPUT_TRUNCATION_MARKER = "\n... (truncated)"
RESPONSE_ELLIPSIS = "\n\n..."

_THINKING_RE = re.compile(r"<thinking>[\s\S]*?</thinking>")


# ── Text helpers ──


def truncate(text: str, max_length: int) -> str:
    """Cut *text* to *max_length* characters, appending ``...`` if cut."""
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."


def strip_thinking_tags(text: str) -> str:
    """Remove every ``<thinking>...</thinking>`` span and trim the rest."""
    return _THINKING_RE.sub("", text).strip()


def format_tool_output(output: str) -> str:
    """Fit tool output into the output slot."""
    if len(output) <= MAX_TOOL_OUTPUT:
        return output
    return output[:MAX_TOOL_OUTPUT] + TOOL_OUTPUT_TRUNCATION_MARKER


@dataclass
class ResponseDisplay:
    """What the response slot shows for one text segment."""

    text: str
    truncated: bool


def format_response(text: str) -> ResponseDisplay:
    """Fit assistant text into the response slot.

    Longer text is cut and flagged so the caller can attach a
    "show full message" control.
    """
    if len(text) <= MAX_RESPONSE:
        return ResponseDisplay(text=text, truncated=False)
    return ResponseDisplay(text=text[:MAX_RESPONSE] + RESPONSE_ELLIPSIS, truncated=True)


def split_message(text: str, limit: int = 4096) -> list[str]:
    """Split *text* into chunks that fit a single chat message."""
    if not text:
        return [""]
    return [text[i:i + limit] for i in range(0, len(text), limit)]


# ── Tool-use formatter registry ──

_FORMATTERS: dict[str, Callable[[dict[str, Any]], str]] = {}
_TOOL_NAME_ALIASES: dict[str, str] = {
    "bash": "Bash",
    "read": "Read",
    "edit": "Edit",
    "multiedit": "Edit",
    "write": "Write",
    "glob": "Glob",
    "list": "Glob",
    "grep": "Grep",
    "task": "Task",
    "webfetch": "WebFetch",
    "todowrite": "TodoWrite",
}


def tool_formatter(name: str):
    """Decorator to register a formatter for a given tool name."""

    def decorator(fn: Callable[[dict[str, Any]], str]):
        _FORMATTERS[name] = fn
        return fn

    return decorator


def _normalize_tool_name(name: str) -> str:
    """Map backend spellings (``bash``, ``read``) to canonical names."""
    return _TOOL_NAME_ALIASES.get(name.lower(), name)


def _path_arg(args: dict[str, Any]) -> str:
    # Claude uses file_path, OpenCode uses filePath
    return str(args.get("file_path") or args.get("filePath") or args.get("path") or "")


def format_tool_use(tool: str, args: dict[str, Any] | None) -> str:
    """One-line status text for a tool invocation.

    Unknown tools render as their bare name.
    """
    formatter = _FORMATTERS.get(_normalize_tool_name(tool))
    if formatter is None:
        return tool
    return formatter(args or {})


@tool_formatter("Bash")
def _format_bash(args: dict[str, Any]) -> str:
    command = str(args.get("command") or "")
    if len(command) > MAX_BASH_COMMAND:
        command = command[:MAX_BASH_COMMAND] + "..."
    return f"`{command}`"


@tool_formatter("Read")
def _format_read(args: dict[str, Any]) -> str:
    return f"Reading `{_path_arg(args)}`"


@tool_formatter("Edit")
def _format_edit(args: dict[str, Any]) -> str:
    return f"Editing `{_path_arg(args)}`"


@tool_formatter("Write")
def _format_write(args: dict[str, Any]) -> str:
    return f"Writing `{_path_arg(args)}`"


@tool_formatter("Glob")
def _format_glob(args: dict[str, Any]) -> str:
    return f"Searching `{args.get('pattern') or _path_arg(args)}`"


@tool_formatter("Grep")
def _format_grep(args: dict[str, Any]) -> str:
    return f"Grepping `{args.get('pattern', '')}`"


@tool_formatter("Task")
def _format_task(args: dict[str, Any]) -> str:
    return "Running task..."


@tool_formatter("WebFetch")
def _format_web_fetch(args: dict[str, Any]) -> str:
    return f"Fetching `{args.get('url', '')}`"


@tool_formatter("TodoWrite")
def _format_todo_write(args: dict[str, Any]) -> str:
    return "Updating todo list"
