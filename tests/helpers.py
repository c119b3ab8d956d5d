"""Test doubles shared by the adapter, dispatch and app tests."""
from __future__ import annotations

import asyncio
import itertools
import json
from typing import Any, Callable

from vibebridge.engine.errors import DisplayUpdateError

_pids = itertools.count(50000)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the loop until *predicate* holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


class FakeStdin:
    def __init__(self) -> None:
        self.lines: list[dict[str, Any]] = []
        self.closed = False

    def write(self, data: bytes) -> None:
        if self.closed:
            raise BrokenPipeError("stdin closed")
        for line in data.decode("utf-8").splitlines():
            self.lines.append(json.loads(line))

    async def drain(self) -> None:
        return


class FakeProcess:
    """Stand-in for asyncio.subprocess.Process driven by the test."""

    def __init__(self, cmd: list[str], kwargs: dict[str, Any]) -> None:
        self.cmd = cmd
        self.kwargs = kwargs
        self.pid = next(_pids)
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        interactive = kwargs.get("stdin") == asyncio.subprocess.PIPE
        self.stdin = FakeStdin() if interactive else None
        self.returncode: int | None = None
        self.killed = False
        self._exited = asyncio.Event()

    def emit(self, record: dict[str, Any]) -> None:
        self.stdout.feed_data((json.dumps(record) + "\n").encode("utf-8"))

    def feed_raw(self, data: bytes) -> None:
        self.stdout.feed_data(data)

    def finish(self, exit_code: int = 0, stderr: str = "") -> None:
        if self.returncode is not None:
            return
        if stderr:
            self.stderr.feed_data(stderr.encode("utf-8"))
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        if self.stdin is not None:
            self.stdin.closed = True
        self.returncode = exit_code
        self._exited.set()

    def kill(self) -> None:
        self.killed = True
        self.finish(-9)

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode


class FakeSpawner:
    """Replacement for asyncio.create_subprocess_exec recording each spawn."""

    def __init__(self) -> None:
        self.processes: list[FakeProcess] = []
        self.fail_with: OSError | None = None

    async def __call__(self, *cmd: str, **kwargs: Any) -> FakeProcess:
        if self.fail_with is not None:
            raise self.fail_with
        proc = FakeProcess(list(cmd), kwargs)
        self.processes.append(proc)
        return proc

    @property
    def last(self) -> FakeProcess:
        return self.processes[-1]


class FakeTransport:
    """In-memory ChatTransport recording every call."""

    def __init__(self) -> None:
        self._ids = itertools.count(100)
        self.sent: list[dict[str, Any]] = []
        self.edits: list[dict[str, Any]] = []
        self.answers: list[tuple[str, str | None]] = []
        self.downloads: list[str] = []
        # Message ids whose edits fail; "*" fails every edit
        self.failing_edits: set[Any] = set()
        self.fail_markdown = False
        self.fail_sends = False

    async def send_message(self, chat_id, text, parse_mode=None, buttons=None) -> int:
        if self.fail_sends or (self.fail_markdown and parse_mode):
            raise DisplayUpdateError("sendMessage", "refused")
        message_id = next(self._ids)
        self.sent.append({
            "chat_id": chat_id,
            "message_id": message_id,
            "text": text,
            "parse_mode": parse_mode,
            "buttons": buttons,
        })
        return message_id

    async def edit_message(self, chat_id, message_id, text, parse_mode=None, buttons=None) -> None:
        if "*" in self.failing_edits or message_id in self.failing_edits:
            raise DisplayUpdateError("editMessageText", "message is not modified")
        if self.fail_markdown and parse_mode:
            raise DisplayUpdateError("editMessageText", "can't parse entities")
        self.edits.append({
            "chat_id": chat_id,
            "message_id": message_id,
            "text": text,
            "parse_mode": parse_mode,
            "buttons": buttons,
        })

    async def answer_callback(self, callback_id, text=None) -> None:
        self.answers.append((callback_id, text))

    async def download_file(self, file_id: str) -> str:
        self.downloads.append(file_id)
        return f"/tmp/{file_id}.jpg"

    def edits_to(self, message_id: int) -> list[str]:
        return [e["text"] for e in self.edits if e["message_id"] == message_id]


class FakeAgent:
    """Scriptable AgentAdapter stand-in for dispatch tests."""

    def __init__(self, options, on_event) -> None:
        self.options = options
        self.on_event = on_event
        self.on_close = None
        self.started: list[tuple[str, str | None]] = []
        self.sent: list[tuple[str, str | None]] = []
        self.running = False
        self.stopped = False
        self.spawn_error: Exception | None = None
        # Input accepted after the agent's last done
        self.pending_turns = 0

    @property
    def name(self) -> str:
        return "fake"

    async def start(self, prompt, image_path=None) -> None:
        if self.spawn_error is not None:
            raise self.spawn_error
        self.started.append((prompt, image_path))
        self.running = True

    async def send_message(self, text, image_path=None) -> None:
        self.sent.append((text, image_path))

    async def stop(self) -> None:
        self.stopped = True
        self.running = False

    def is_running(self) -> bool:
        return self.running

    def set_on_close(self, callback) -> None:
        self.on_close = callback


class FakeAgentRegistry:
    """Stands in for AgentRegistry; keeps every agent it created."""

    def __init__(self) -> None:
        self.created: list[FakeAgent] = []
        self.spawn_error: Exception | None = None
        self.available = True

    def create(self, name, options, on_event) -> FakeAgent:
        agent = FakeAgent(options, on_event)
        agent.spawn_error = self.spawn_error
        self.created.append(agent)
        return agent

    def is_available(self, name) -> bool:
        return self.available

    @property
    def last(self) -> FakeAgent:
        return self.created[-1]
