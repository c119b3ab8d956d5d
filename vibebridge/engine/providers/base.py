"""Abstract base for agent process adapters.

Each adapter wraps one coding-agent CLI. It owns at most one child
process at a time, turns the process's NDJSON stdout into normalized
events, and reports process exit through a one-shot close callback.
The bridge only ever calls the five public operations:
start(), send_message(), stop(), is_running() and set_on_close().
"""
from __future__ import annotations

import abc
import asyncio
import json
import logging
import os
import signal
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from vibebridge.adapters.events import AgentEvent, DoneEvent, ErrorEvent
from vibebridge.engine.errors import MalformedOutputLine, ProcessSpawnError
from vibebridge.engine.models import PermissionMode, ResumeToken
from vibebridge.engine.paths import discard_file

logger = logging.getLogger(__name__)

# Signature: async def sink(event: AgentEvent) -> None
EventSink = Callable[[AgentEvent], Awaitable[None]]

# Signature: async def on_close(exit_code, stderr_text) -> None
CloseCallback = Callable[[int | None, str], Awaitable[None]]

_READ_CHUNK = 64 * 1024


@dataclass
class AgentOptions:
    """Per-task spawn options."""
    cwd: str
    resume_token: ResumeToken | None = None
    permission_mode: PermissionMode = PermissionMode.ACCEPT_EDITS
    # Extra environment merged over os.environ for the child
    env: dict[str, str] = field(default_factory=dict)
    # Max wait for a previous turn before a follow-up turn is spawned
    # (spawn-per-turn backends only). 0 or negative disables the bound.
    follow_up_wait_seconds: float = 600.0
    # Image files are temporary downloads owned by the adapter: delete
    # each one once the backend no longer needs it.
    discard_images: bool = False


class JsonLineBuffer:
    """Splits a byte stream into complete lines.

    An incomplete trailing fragment is retained until the next feed()
    supplies its newline, or until flush() at end of stream.
    """

    def __init__(self) -> None:
        self._pending = b""

    def feed(self, chunk: bytes) -> list[str]:
        data = self._pending + chunk
        *lines, self._pending = data.split(b"\n")
        return [
            line.decode("utf-8", errors="replace")
            for line in lines
            if line.strip()
        ]

    def flush(self) -> list[str]:
        rest, self._pending = self._pending, b""
        if rest.strip():
            return [rest.decode("utf-8", errors="replace")]
        return []

    @property
    def pending(self) -> bytes:
        return self._pending


def parse_json_line(line: str) -> dict[str, Any]:
    """Parse one NDJSON line into a dict or raise MalformedOutputLine."""
    try:
        record = json.loads(line)
    except json.JSONDecodeError as exc:
        raise MalformedOutputLine(line, str(exc)) from exc
    if not isinstance(record, dict):
        raise MalformedOutputLine(line, f"expected object, got {type(record).__name__}")
    return record


class AgentAdapter(abc.ABC):
    """Capability set shared by all agent backends."""

    #: Executable used when no explicit command is configured.
    default_command: str = ""

    def __init__(
        self,
        options: AgentOptions,
        on_event: EventSink,
        *,
        command: str | None = None,
    ) -> None:
        self._options = options
        self._on_event = on_event
        self._command = command or self.default_command
        self._on_close: CloseCallback | None = None
        self._proc: asyncio.subprocess.Process | None = None
        self._reader_task: asyncio.Task | None = None
        # Turns submitted but not yet answered by a terminal result.
        self._outstanding_turns = 0
        self._stopped = False

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Short backend name (e.g. 'claude', 'opencode')."""

    @abc.abstractmethod
    async def start(self, prompt: str, image_path: str | None = None) -> None:
        """Spawn the backend process and deliver the first prompt.

        Raises ProcessSpawnError if the executable cannot be launched.
        """

    @abc.abstractmethod
    async def send_message(self, text: str, image_path: str | None = None) -> None:
        """Deliver follow-up input to the running conversation."""

    @abc.abstractmethod
    def _events_for(self, record: dict[str, Any]) -> list[AgentEvent]:
        """Map one parsed stdout record to normalized events."""

    async def stop(self) -> None:
        """Kill the owned process, if any. Safe to call repeatedly."""
        self._stopped = True
        self._outstanding_turns = 0
        proc = self._proc
        self._proc = None
        if proc is None or proc.returncode is not None:
            return
        self._kill(proc)
        logger.info("%s process killed (pid=%s)", self.name, proc.pid)

    def is_running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    def set_on_close(self, callback: CloseCallback) -> None:
        self._on_close = callback

    @property
    def pending_turns(self) -> int:
        """Turns accepted but not yet answered by a terminal result.

        Non-zero when a done has already been emitted means input was
        accepted after that done, and the agent is still working on it.
        """
        return self._outstanding_turns

    @property
    def command(self) -> str:
        return self._command

    # ── process plumbing ─────────────────────────────────────────────

    def _release_image(self, image_path: str | None) -> None:
        if self._options.discard_images:
            discard_file(image_path)

    def _build_env(self) -> dict[str, str]:
        env = os.environ.copy()
        env.update(self._options.env)
        return env

    async def _spawn(self, args: list[str], *, interactive: bool) -> asyncio.subprocess.Process:
        """Launch the backend and start pumping its output."""
        cmd = [self._command, *args]
        logger.info("Spawning %s in %s: %s", self.name, self._options.cwd, cmd)
        try:
            # Array-based exec, no shell. Own session so kill reaches tool children.
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE if interactive else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._options.cwd,
                env=self._build_env(),
                start_new_session=True,
            )
        except OSError as exc:
            raise ProcessSpawnError(self._command, str(exc)) from exc

        self._proc = proc
        self._stopped = False
        self._reader_task = asyncio.create_task(self._pump(proc))
        return proc

    @staticmethod
    def _kill(proc: asyncio.subprocess.Process) -> None:
        try:
            if hasattr(os, "killpg"):
                os.killpg(proc.pid, signal.SIGKILL)
            else:
                proc.kill()
        except ProcessLookupError:
            pass  # Already exited
        except PermissionError:
            proc.kill()

    async def _pump(self, proc: asyncio.subprocess.Process) -> None:
        """Read stdout to EOF, then report exit exactly once."""
        stderr_task = asyncio.create_task(self._collect_stderr(proc))
        buffer = JsonLineBuffer()
        try:
            while True:
                chunk = await proc.stdout.read(_READ_CHUNK)
                if not chunk:
                    break
                for line in buffer.feed(chunk):
                    await self._handle_line(line)
            for line in buffer.flush():
                await self._handle_line(line)
        finally:
            stderr_text = await stderr_task
            exit_code = await proc.wait()
            if self._proc is proc:
                self._proc = None
            logger.info("%s process exited with code %s", self.name, exit_code)
            await self._on_process_exit(exit_code, stderr_text)
            await self._fire_close(exit_code, stderr_text)

    async def _collect_stderr(self, proc: asyncio.subprocess.Process) -> str:
        parts: list[str] = []
        while True:
            chunk = await proc.stderr.read(_READ_CHUNK)
            if not chunk:
                break
            text = chunk.decode("utf-8", errors="replace")
            logger.debug("[%s stderr] %s", self.name, text.rstrip())
            parts.append(text)
        return "".join(parts)

    async def _handle_line(self, line: str) -> None:
        try:
            record = parse_json_line(line)
        except MalformedOutputLine as exc:
            logger.warning("%s: %s", self.name, exc)
            return
        for event in self._events_for(record):
            await self._emit(event)

    async def _emit(self, event: AgentEvent) -> None:
        """Forward an event, keeping at most one done per task.

        A terminal result that answers an intermediate turn (more input
        is still queued) is not the end of the task: it is dropped, or
        surfaced as an error event if the turn failed.
        """
        if isinstance(event, DoneEvent):
            self._outstanding_turns = max(0, self._outstanding_turns - 1)
            if self._outstanding_turns > 0:
                if event.is_error:
                    await self._deliver(ErrorEvent(
                        session_id=event.session_id,
                        content=event.content or "Turn failed",
                    ))
                return
        await self._deliver(event)

    async def _deliver(self, event: AgentEvent) -> None:
        try:
            await self._on_event(event)
        except Exception:
            logger.exception("%s: event sink failed for %s", self.name, event.event_type)

    async def _on_process_exit(self, exit_code: int | None, stderr: str) -> None:
        """Hook for backends that derive events from process exit."""

    async def _fire_close(self, exit_code: int | None, stderr: str) -> None:
        callback = self._on_close
        if callback is None:
            return
        try:
            await callback(exit_code, stderr)
        except Exception:
            logger.exception("%s: close callback failed", self.name)
