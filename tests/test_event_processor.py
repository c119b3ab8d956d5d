"""Tests for the three-slot message presenter."""
from __future__ import annotations

from types import SimpleNamespace

import pytest

from helpers import FakeTransport
from vibebridge.adapters.events import (
    DoneEvent,
    ErrorEvent,
    TextEvent,
    ToolOutputEvent,
    ToolUseEvent,
)
from vibebridge.bot.expandable import ExpandableMessageStore
from vibebridge.bot.handlers.event_processor import (
    EXPIRED_NOTICE,
    STATUS_THINKING,
    EventProcessor,
)
from vibebridge.bot.transport import CallbackQuery
from vibebridge.engine.session import Session

CHAT = 42


def _setup():
    transport = FakeTransport()
    store = ExpandableMessageStore()
    processor = EventProcessor(transport, store)
    session = Session(user_id=CHAT, cwd="/w", chat_id=CHAT)
    return transport, store, processor, session


@pytest.mark.asyncio
async def test_status_slot_created_once_then_edited():
    transport, _, processor, session = _setup()
    await processor.show_thinking(session)
    status = session.status_slot
    assert transport.sent[0]["text"] == STATUS_THINKING

    await processor.process(session, ToolUseEvent(tool="Bash", input={"command": "ls"}))
    await processor.process(session, ToolUseEvent(tool="Read", input={"file_path": "/a"}))
    assert session.status_slot == status
    assert transport.edits_to(status) == ["Running: `ls`", "Running: Reading `/a`"]
    assert len(transport.sent) == 1


@pytest.mark.asyncio
async def test_identical_status_not_resent():
    transport, _, processor, session = _setup()
    await processor.show_thinking(session)
    event = ToolUseEvent(tool="Bash", input={"command": "make"})
    await processor.process(session, event)
    await processor.process(session, event)
    assert len(transport.edits_to(session.status_slot)) == 1


@pytest.mark.asyncio
async def test_status_edit_failures_swallowed():
    transport, _, processor, session = _setup()
    await processor.show_thinking(session)
    transport.failing_edits.add("*")
    await processor.update_status(session, "Running: `x`")
    assert session.last_status_text == "Running: `x`"
    assert len(transport.sent) == 1


@pytest.mark.asyncio
async def test_output_slot_created_then_edited_and_truncated():
    transport, _, processor, session = _setup()
    await processor.process(session, ToolOutputEvent(output="first"))
    output_slot = session.output_slot
    assert output_slot is not None

    await processor.process(session, ToolOutputEvent(output="o" * 1200))
    assert session.output_slot == output_slot
    edited = transport.edits_to(output_slot)[-1]
    assert edited == "o" * 1000 + "\n... (truncated)"


@pytest.mark.asyncio
async def test_output_edit_failure_rebinds_slot():
    transport, _, processor, session = _setup()
    await processor.process(session, ToolOutputEvent(output="first"))
    old_slot = session.output_slot
    transport.failing_edits.add(old_slot)

    await processor.process(session, ToolOutputEvent(output="second"))
    assert session.output_slot != old_slot
    assert transport.sent[-1]["text"] == "second"


@pytest.mark.asyncio
async def test_response_slot_replaced_by_latest_segment():
    transport, _, processor, session = _setup()
    await processor.process(session, TextEvent(content="<thinking>plan</thinking>Hello"))
    slot = session.response_slot
    assert transport.sent[-1]["text"] == "Hello"
    assert transport.sent[-1]["parse_mode"] == "Markdown"

    await processor.process(session, TextEvent(content="World"))
    assert session.response_slot == slot
    assert transport.edits_to(slot) == ["World"]


@pytest.mark.asyncio
async def test_thinking_only_text_shows_nothing():
    transport, _, processor, session = _setup()
    await processor.process(session, TextEvent(content="<thinking>hidden</thinking>"))
    assert transport.sent == []
    assert session.response_slot is None


@pytest.mark.asyncio
async def test_response_markdown_falls_back_to_plain():
    transport, _, processor, session = _setup()
    transport.fail_markdown = True
    await processor.process(session, TextEvent(content="a_b*c"))
    assert transport.sent[-1]["parse_mode"] is None

    await processor.process(session, TextEvent(content="d_e"))
    assert transport.edits_to(session.response_slot) == ["d_e"]


@pytest.mark.asyncio
async def test_response_edit_failure_sends_new_message():
    transport, _, processor, session = _setup()
    await processor.process(session, TextEvent(content="one"))
    old_slot = session.response_slot
    transport.failing_edits.add(old_slot)
    await processor.process(session, TextEvent(content="two"))
    assert session.response_slot != old_slot
    assert transport.sent[-1]["text"] == "two"


@pytest.mark.asyncio
async def test_long_response_truncated_and_expandable_once():
    transport, store, processor, session = _setup()
    full = "r" * 1600
    await processor.process(session, TextEvent(content=full))

    shown = transport.sent[-1]
    assert shown["text"] == "r" * 1500 + "\n\n..."
    button = shown["buttons"][0]
    assert button.text == "Show full message"
    assert len(store) == 1

    query = CallbackQuery(
        id="cb1", user_id=CHAT, chat_id=CHAT,
        message_id=shown["message_id"], data=button.callback_data,
    )
    await processor.expand(query)
    assert transport.edits_to(shown["message_id"]) == [full]
    assert transport.answers == [("cb1", None)]
    assert len(store) == 0

    await processor.expand(SimpleNamespace(**{**query.__dict__, "id": "cb2"}))
    assert transport.answers[-1] == ("cb2", EXPIRED_NOTICE)
    assert transport.edits_to(shown["message_id"]) == [full]


@pytest.mark.asyncio
async def test_expand_falls_back_to_split_messages():
    transport, store, processor, _ = _setup()
    key = store.add("x" * 5000)
    transport.failing_edits.add("*")
    query = CallbackQuery(id="cb", user_id=CHAT, chat_id=CHAT, message_id=1, data=f"expand:{key}")
    await processor.expand(query)
    assert [len(m["text"]) for m in transport.sent] == [4096, 904]
    assert key not in store


@pytest.mark.asyncio
async def test_error_event_sent_as_new_message():
    transport, _, processor, session = _setup()
    await processor.process(session, ErrorEvent(content="quota exceeded"))
    assert transport.sent[-1]["text"] == "Error: quota exceeded"


@pytest.mark.asyncio
async def test_done_error_reports_content():
    transport, _, processor, session = _setup()
    await processor.show_thinking(session)
    await processor.process(session, DoneEvent(is_error=True, content="rate limited"))
    assert transport.edits_to(session.status_slot) == ["Failed."]
    assert transport.sent[-1]["text"] == "Error: rate limited"


@pytest.mark.asyncio
async def test_done_success_shows_duration():
    transport, _, processor, session = _setup()
    await processor.show_thinking(session)
    await processor.process(session, DoneEvent(duration_ms=2500))
    assert transport.edits_to(session.status_slot) == ["Done in 2.5s."]


@pytest.mark.asyncio
async def test_send_failures_never_raise():
    transport, _, processor, session = _setup()
    transport.fail_sends = True
    await processor.show_thinking(session)
    await processor.process(session, ToolOutputEvent(output="x"))
    await processor.process(session, TextEvent(content="y"))
    assert session.status_slot is None
    assert session.output_slot is None
    assert session.response_slot is None
