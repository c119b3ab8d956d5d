"""Path helpers: working-directory resolution for /cd and !cd, and
temp-file cleanup.

Resolution is purely lexical: no filesystem access, no symlink
resolution, and no existence check.
"""
from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def expand_home(path: str, home: str) -> str:
    if path == "~":
        return home
    if path.startswith("~/"):
        return home.rstrip("/") + path[1:]
    return path


def normalize_posix(path: str) -> str:
    """Collapse ``.``, ``..`` and repeated separators of an absolute path."""
    resolved: list[str] = []
    for part in path.split("/"):
        if part in ("", "."):
            continue
        if part == "..":
            if resolved:
                resolved.pop()
        else:
            resolved.append(part)
    return "/" + "/".join(resolved)


def resolve_path(raw: str, cwd: str, home: str | None = None) -> str:
    """Resolve user input against *cwd* into an absolute, normalized path.

    ``~`` expands to *home*; relative paths are joined onto *cwd*.
    """
    home = home if home is not None else str(Path.home())
    path = expand_home(raw.strip(), home)
    if not path.startswith("/"):
        path = f"{cwd}/{path}"
    return normalize_posix(path)


def discard_file(path: str | None) -> None:
    """Delete a temporary file; a file that is already gone is fine."""
    if not path:
        return
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Could not remove %s: %s", path, exc)
