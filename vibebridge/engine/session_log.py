"""Read-only access to the agent's own on-disk session logs.

Claude Code keeps one JSONL file per conversation under
``~/.claude/projects/<sanitized cwd>/``. The bridge only reads the
most recent file to show a conversation summary on /resume; every
failure here degrades to "no summary".
"""
from __future__ import annotations

import json
import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9]")


def sanitize_cwd(cwd: str) -> str:
    """Filesystem-safe directory name for *cwd* (``/a/b.c`` -> ``-a-b-c``)."""
    return _UNSAFE_CHARS.sub("-", cwd)


def project_log_dir(cwd: str, root: Path | None = None) -> Path:
    root = root or (Path.home() / ".claude")
    return root / "projects" / sanitize_cwd(cwd)


def latest_log_file(cwd: str, root: Path | None = None) -> Path | None:
    """Most recently modified non-empty session log for *cwd*."""
    directory = project_log_dir(cwd, root)
    try:
        candidates = [
            (path.stat().st_mtime, path)
            for path in directory.glob("*.jsonl")
            if path.is_file() and path.stat().st_size > 0
        ]
    except OSError as exc:
        logger.debug("Cannot list session logs in %s: %s", directory, exc)
        return None
    if not candidates:
        return None
    return max(candidates, key=lambda item: item[0])[1]


def latest_session_summary(cwd: str, root: Path | None = None) -> str | None:
    """Return the last ``summary`` recorded in the newest log for *cwd*."""
    path = latest_log_file(cwd, root)
    if path is None:
        return None
    try:
        lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError as exc:
        logger.debug("Cannot read session log %s: %s", path, exc)
        return None

    summary: str | None = None
    for raw in lines:
        if not raw.strip():
            continue
        try:
            row = json.loads(raw)
        except json.JSONDecodeError:
            continue
        if isinstance(row, dict) and isinstance(row.get("summary"), str):
            summary = row["summary"]
    return summary
