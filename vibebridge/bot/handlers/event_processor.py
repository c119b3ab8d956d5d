"""Message presenter: renders agent activity into chat messages.

Each task gets up to three editable messages ("slots") in the user's
chat: a status line, the latest tool output and the latest assistant
response. Display failures never propagate out of this module; each
slot has a defined fallback.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from vibebridge.adapters.events import (
    AgentEvent,
    DoneEvent,
    ErrorEvent,
    TextEvent,
    ToolOutputEvent,
    ToolUseEvent,
)
from vibebridge.bot.expandable import (
    ExpandableMessageStore,
    callback_data_for,
    key_from_callback_data,
)
from vibebridge.bot.transport import Button, CallbackQuery, ChatTransport
from vibebridge.engine.errors import DisplayUpdateError
from vibebridge.shared.formatters.tool_call import (
    format_response,
    format_tool_output,
    format_tool_use,
    split_message,
    strip_thinking_tags,
)

if TYPE_CHECKING:
    from vibebridge.engine.session import Session

logger = logging.getLogger(__name__)

MARKDOWN = "Markdown"

STATUS_THINKING = "Thinking..."
STATUS_TOOL_OUTPUT = "Reading tool output..."
STATUS_RESPONDING = "Responding..."
STATUS_DONE = "Done."
STATUS_FAILED = "Failed."
SHOW_FULL_LABEL = "Show full message"
EXPIRED_NOTICE = "Message expired"


class EventProcessor:
    """Presents normalized agent events for one chat at a time.

    Stateless apart from the shared expandable-message store; all
    per-task state lives on the ``Session`` passed to each call.
    """

    def __init__(self, transport: ChatTransport, store: ExpandableMessageStore) -> None:
        self._transport = transport
        self._store = store

    @property
    def store(self) -> ExpandableMessageStore:
        return self._store

    # ── public entry points ─────────────────────────────────────────

    async def process(self, session: Session, event: AgentEvent) -> None:
        """Render one event. ``init`` and ``done`` are handled by dispatch."""
        if isinstance(event, ToolUseEvent):
            await self.update_status(
                session, f"Running: {format_tool_use(event.tool, event.input)}"
            )
        elif isinstance(event, ToolOutputEvent):
            await self.update_status(session, STATUS_TOOL_OUTPUT)
            await self.show_tool_output(session, event.output)
        elif isinstance(event, TextEvent):
            text = strip_thinking_tags(event.content)
            if not text:
                return
            await self.update_status(session, STATUS_RESPONDING)
            await self.show_response(session, text)
        elif isinstance(event, ErrorEvent):
            await self.notify(session.chat_id, f"Error: {event.content}")
        elif isinstance(event, DoneEvent):
            await self.show_done(session, event)

    async def show_thinking(self, session: Session) -> None:
        """Create the status slot for a freshly started task."""
        session.last_status_text = STATUS_THINKING
        session.status_slot = await self._send(session.chat_id, STATUS_THINKING)

    async def update_status(self, session: Session, text: str) -> None:
        """Edit the status slot in place. Failures are dropped."""
        if text == session.last_status_text:
            return
        session.last_status_text = text
        if session.status_slot is None:
            session.status_slot = await self._send(session.chat_id, text)
            return
        try:
            await self._transport.edit_message(session.chat_id, session.status_slot, text)
        except DisplayUpdateError as exc:
            logger.debug("Status edit dropped: %s", exc)

    async def show_tool_output(self, session: Session, output: str) -> None:
        text = format_tool_output(output)
        if session.output_slot is not None:
            try:
                await self._transport.edit_message(
                    session.chat_id, session.output_slot, text
                )
                return
            except DisplayUpdateError as exc:
                logger.debug("Output edit failed, sending new message: %s", exc)
        message_id = await self._send(session.chat_id, text)
        if message_id is not None:
            session.output_slot = message_id

    async def show_response(self, session: Session, text: str) -> None:
        """Show *text* in the response slot, replacing the previous segment."""
        display = format_response(text)
        buttons = None
        if display.truncated:
            key = self._store.add(text)
            buttons = [Button(SHOW_FULL_LABEL, callback_data_for(key))]

        if session.response_slot is not None:
            for parse_mode in (MARKDOWN, None):
                try:
                    await self._transport.edit_message(
                        session.chat_id, session.response_slot, display.text,
                        parse_mode=parse_mode, buttons=buttons,
                    )
                    return
                except DisplayUpdateError as exc:
                    logger.debug("Response edit (%s) failed: %s", parse_mode or "plain", exc)

        message_id = await self._send_formatted(session.chat_id, display.text, buttons)
        if message_id is not None:
            session.response_slot = message_id

    async def show_done(self, session: Session, event: DoneEvent) -> None:
        if event.is_error:
            await self.update_status(session, STATUS_FAILED)
            if event.content:
                await self.notify(session.chat_id, f"Error: {event.content}")
            return
        status = STATUS_DONE
        if event.duration_ms is not None:
            status = f"Done in {event.duration_ms / 1000:.1f}s."
        await self.update_status(session, status)

    async def show_crash(self, session: Session, message: str) -> None:
        await self.update_status(session, message)

    async def expand(self, query: CallbackQuery) -> None:
        """Handle a "Show full message" button press."""
        key = key_from_callback_data(query.data)
        full_text = self._store.get(key) if key else None
        if full_text is None:
            await self._answer(query.id, EXPIRED_NOTICE)
            return
        await self._answer(query.id)

        shown = False
        if query.chat_id is not None and query.message_id is not None:
            for parse_mode in (MARKDOWN, None):
                try:
                    await self._transport.edit_message(
                        query.chat_id, query.message_id, full_text, parse_mode=parse_mode,
                    )
                    shown = True
                    break
                except DisplayUpdateError as exc:
                    logger.debug("Expand edit (%s) failed: %s", parse_mode or "plain", exc)
        if not shown and query.chat_id is not None:
            for chunk in split_message(full_text):
                await self._send_formatted(query.chat_id, chunk, None)
        self._store.pop(key)

    async def notify(
        self, chat_id: int | None, text: str, parse_mode: str | None = None,
    ) -> int | None:
        """Send a standalone message. Markdown falls back to plain text."""
        if parse_mode is None:
            return await self._send(chat_id, text)
        return await self._send_formatted(chat_id, text, None)

    # ── helpers ──────────────────────────────────────────────────────

    async def _send(self, chat_id: int | None, text: str) -> int | None:
        if chat_id is None:
            return None
        try:
            return await self._transport.send_message(chat_id, text)
        except DisplayUpdateError as exc:
            logger.warning("Send to chat %s failed: %s", chat_id, exc)
            return None

    async def _send_formatted(
        self, chat_id: int | None, text: str, buttons: list[Button] | None,
    ) -> int | None:
        if chat_id is None:
            return None
        for parse_mode in (MARKDOWN, None):
            try:
                return await self._transport.send_message(
                    chat_id, text, parse_mode=parse_mode, buttons=buttons,
                )
            except DisplayUpdateError as exc:
                logger.debug("Send (%s) failed: %s", parse_mode or "plain", exc)
        logger.warning("Message to chat %s could not be delivered", chat_id)
        return None

    async def _answer(self, callback_id: str, text: str | None = None) -> None:
        try:
            await self._transport.answer_callback(callback_id, text)
        except DisplayUpdateError as exc:
            logger.debug("answerCallbackQuery failed: %s", exc)
