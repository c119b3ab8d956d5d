"""Tests for the spawn-per-turn OpenCode adapter."""
from __future__ import annotations

import asyncio

import pytest

from helpers import wait_until
from vibebridge.adapters.events import DoneEvent, ErrorEvent, InitEvent, TextEvent
from vibebridge.engine.errors import ProcessSpawnError
from vibebridge.engine.models import ResumeToken
from vibebridge.engine.providers.base import AgentOptions
from vibebridge.engine.providers.opencode_provider import OpenCodeAdapter


def _adapter(**option_kwargs):
    events = []
    closes = []

    async def sink(event):
        events.append(event)

    async def on_close(code, stderr):
        closes.append((code, stderr))

    adapter = OpenCodeAdapter(AgentOptions(cwd="/w", **option_kwargs), sink)
    adapter.set_on_close(on_close)
    return adapter, events, closes


class TestBuildArgs:
    def test_fresh(self):
        adapter, _, _ = _adapter()
        assert adapter.build_args("hi") == ["run", "--format", "json", "hi"]

    def test_continue(self):
        adapter, _, _ = _adapter(resume_token=ResumeToken.most_recent())
        assert adapter.build_args("hi") == ["run", "--format", "json", "--continue", "hi"]

    def test_session(self):
        adapter, _, _ = _adapter(resume_token=ResumeToken.for_session("ses_9"))
        assert adapter.build_args("hi") == [
            "run", "--format", "json", "--session", "ses_9", "hi",
        ]

    def test_image_attached_when_present(self, tmp_path):
        image = tmp_path / "a.png"
        image.write_bytes(b"x")
        adapter, _, _ = _adapter()
        assert adapter.build_args("look", str(image)) == [
            "run", "--format", "json", "--file", str(image), "look",
        ]

    def test_missing_image_skipped(self, tmp_path):
        adapter, _, _ = _adapter()
        assert "--file" not in adapter.build_args("look", str(tmp_path / "none.png"))


@pytest.mark.asyncio
async def test_single_turn_synthesizes_init_and_done(spawner):
    adapter, events, closes = _adapter()
    await adapter.start("hello")

    proc = spawner.last
    assert proc.cmd == ["opencode", "run", "--format", "json", "hello"]
    assert proc.stdin is None

    proc.emit({"type": "step_start", "sessionID": "ses_1"})
    proc.emit({"type": "text", "sessionID": "ses_1", "part": {"text": "Hi"}})
    proc.emit({"type": "step_finish", "sessionID": "ses_1"})
    proc.finish(0)
    await wait_until(lambda: closes)

    assert events == [
        InitEvent(session_id="ses_1"),
        TextEvent(session_id="ses_1", content="Hi"),
        DoneEvent(session_id="ses_1", is_error=False),
    ]
    assert closes == [(0, "")]
    assert adapter.session_id == "ses_1"


@pytest.mark.asyncio
async def test_nonzero_exit_is_error_done(spawner):
    adapter, events, _ = _adapter()
    await adapter.start("hello")
    spawner.last.finish(1, stderr="model not configured\n")
    await wait_until(lambda: events)
    assert events == [DoneEvent(is_error=True, content="model not configured")]


@pytest.mark.asyncio
async def test_spawn_failure_raises(spawner):
    spawner.fail_with = FileNotFoundError("opencode")
    adapter, _, _ = _adapter()
    with pytest.raises(ProcessSpawnError):
        await adapter.start("hello")
    assert not adapter.is_running()


@pytest.mark.asyncio
async def test_follow_up_waits_and_continues_session(spawner):
    adapter, events, closes = _adapter()
    await adapter.start("first")
    first = spawner.last
    first.emit({"type": "step_start", "sessionID": "ses_1"})

    await adapter.send_message("second")
    await asyncio.sleep(0.02)
    assert len(spawner.processes) == 1
    assert adapter.is_running()

    first.finish(0)
    await wait_until(lambda: len(spawner.processes) == 2)
    second = spawner.last
    assert second.cmd == [
        "opencode", "run", "--format", "json", "--session", "ses_1", "second",
    ]
    # The first turn's exit is neither the end of the task nor a crash
    assert not any(isinstance(e, DoneEvent) for e in events)
    assert closes == []

    second.emit({"type": "text", "sessionID": "ses_1", "part": {"text": "again"}})
    second.finish(0)
    await wait_until(lambda: closes)
    assert [e.event_type for e in events] == ["init", "text", "done"]
    assert closes == [(0, "")]


@pytest.mark.asyncio
async def test_follow_up_kills_hung_turn_after_wait_bound(spawner):
    adapter, events, _ = _adapter(follow_up_wait_seconds=0.05)
    await adapter.start("first")
    first = spawner.last

    await adapter.send_message("second")
    await wait_until(lambda: len(spawner.processes) == 2)
    assert first.killed
    # The killed turn is reported as an error, not as the end of the task
    assert isinstance(events[0], ErrorEvent)
    assert not any(isinstance(e, DoneEvent) for e in events)
    spawner.last.finish(0)
    await wait_until(lambda: any(isinstance(e, DoneEvent) for e in events))


@pytest.mark.asyncio
async def test_stop_cancels_queued_turn(spawner):
    adapter, events, _ = _adapter()
    await adapter.start("first")
    first = spawner.last
    await adapter.send_message("second")

    await adapter.stop()
    assert first.killed
    assert not adapter.is_running()
    await asyncio.sleep(0.02)
    assert len(spawner.processes) == 1
    assert events == []


@pytest.mark.asyncio
async def test_turn_image_removed_after_process_exits(spawner, tmp_path):
    image = tmp_path / "photo.jpg"
    image.write_bytes(b"jpeg")
    adapter, _, closes = _adapter(discard_images=True)
    await adapter.start("look", str(image))

    assert "--file" in spawner.last.cmd
    assert image.exists()
    spawner.last.finish(0)
    await wait_until(lambda: closes)
    assert not image.exists()


@pytest.mark.asyncio
async def test_stop_removes_image_of_queued_turn(spawner, tmp_path):
    image = tmp_path / "photo.jpg"
    image.write_bytes(b"jpeg")
    adapter, _, _ = _adapter(discard_images=True)
    await adapter.start("first")
    await adapter.send_message("look", str(image))
    await asyncio.sleep(0)

    await adapter.stop()
    await wait_until(lambda: not image.exists())
    assert len(spawner.processes) == 1
