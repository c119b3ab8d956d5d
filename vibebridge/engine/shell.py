"""Shell-escape (``!command``) execution.

Runs the literal command with ``bash -c`` in the session cwd. There is
no timeout; output is captured with stderr merged into stdout.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

MAX_SHELL_OUTPUT = 4000
TRUNCATION_NOTE = "\n... (truncated)"


@dataclass
class ShellResult:
    output: str
    exit_code: int | None

    def render(self) -> str:
        """Chat-ready text: truncated output plus a non-zero exit marker."""
        output = self.output or "(no output)"
        if len(output) > MAX_SHELL_OUTPUT:
            output = output[:MAX_SHELL_OUTPUT] + TRUNCATION_NOTE
        marker = "" if self.exit_code == 0 else f"\n\n[exit {self.exit_code}]"
        return f"```\n{output}{marker}\n```"


async def run_shell_command(command: str, cwd: str, shell: str = "bash") -> ShellResult:
    """Run *command* in *cwd* and capture its combined output."""
    logger.info("Shell escape in %s: %s", cwd, command)
    try:
        proc = await asyncio.create_subprocess_exec(
            shell, "-c", command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=cwd,
        )
    except OSError as exc:
        return ShellResult(output=f"Failed to run command: {exc}", exit_code=None)
    stdout, _ = await proc.communicate()
    return ShellResult(
        output=stdout.decode("utf-8", errors="replace"),
        exit_code=proc.returncode,
    )
