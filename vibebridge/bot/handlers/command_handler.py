"""Dispatch layer: the per-session Idle/Busy state machine.

Every item a session worker pulls off the session's EventBus lands
here: chat messages, slash commands, shell escapes, button presses,
agent events and process-exit notices. Items are handled one at a
time, so session state is never touched concurrently.
"""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import TYPE_CHECKING, Any

from vibebridge.adapters.event_bus import AgentOutput, ProcessClosed
from vibebridge.adapters.events import DoneEvent, InitEvent, event_to_dict
from vibebridge.bot.transport import CallbackQuery, InboundMessage
from vibebridge.engine.config import BridgeConfig, fire_event
from vibebridge.engine.errors import (
    BridgeError,
    ProcessSpawnError,
    TransportError,
    UnexpectedExitError,
)
from vibebridge.engine.models import ResumeToken
from vibebridge.engine.paths import discard_file, resolve_path
from vibebridge.engine.providers.base import AgentOptions
from vibebridge.engine.session_log import latest_session_summary
from vibebridge.engine.shell import run_shell_command
from vibebridge.shared.commands import COMMAND_HELP, parse_command, parse_shell_escape

if TYPE_CHECKING:
    from vibebridge.bot.handlers.event_processor import EventProcessor
    from vibebridge.bot.transport import ChatTransport
    from vibebridge.engine.providers.registry import AgentRegistry
    from vibebridge.engine.session import Session

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_PROMPT = "What's in this image?"
SOURCE_ENV = {"VIBEBRIDGE_SOURCE": "telegram"}
# Pause before re-queueing input that arrived while the agent is between
# processes; its done/close notice is already on the way.
REQUEUE_DELAY_SECONDS = 0.05


class CommandHandler:
    """Handles session items on behalf of BridgeApp.

    Owns no state of its own beyond references to the shared registries;
    everything per-user lives on the ``Session``.
    """

    def __init__(
        self,
        config: BridgeConfig,
        agents: AgentRegistry,
        presenter: EventProcessor,
        transport: ChatTransport,
    ) -> None:
        self._config = config
        self._agents = agents
        self._presenter = presenter
        self._transport = transport
        self._background: set[asyncio.Task] = set()

    # ── public entry point ──────────────────────────────────────────

    async def handle(self, session: Session, item: Any) -> None:
        """Route one bus item."""
        if isinstance(item, AgentOutput):
            await self._handle_agent_output(session, item)
        elif isinstance(item, ProcessClosed):
            await self._handle_process_closed(session, item)
        elif isinstance(item, InboundMessage):
            await self._handle_message(session, item)
        elif isinstance(item, CallbackQuery):
            await self._presenter.expand(item)
        else:
            logger.warning("Unknown session item: %r", item)

    async def shutdown(self, session: Session) -> None:
        await self._stop_agent(session)

    async def wait_background(self) -> None:
        """Wait for shell escapes still running."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # ── inbound messages ────────────────────────────────────────────

    async def _handle_message(self, session: Session, message: InboundMessage) -> None:
        session.chat_id = message.chat_id
        text = message.text.strip()

        if message.photo_file_id is None:
            command = parse_command(text)
            if command is not None:
                await self.handle_command(session, command.name, command.arg_text)
                return
            shell_command = parse_shell_escape(text)
            if shell_command is not None:
                await self._handle_shell_escape(session, shell_command)
                return

        image_path = None
        if message.photo_file_id is not None:
            try:
                image_path = await self._transport.download_file(message.photo_file_id)
            except (TransportError, OSError) as exc:
                logger.warning("Photo download failed: %s", exc)
                await self._reply(session, f"Error: could not download image ({exc})")
                return
            text = text or DEFAULT_IMAGE_PROMPT

        if not text:
            return
        await self._handle_input(session, message, text, image_path)

    async def _handle_input(
        self,
        session: Session,
        message: InboundMessage,
        text: str,
        image_path: str | None,
    ) -> None:
        if session.can_forward():
            try:
                await session.agent.send_message(text, image_path)
                logger.info("Forwarded follow-up input to %s", session.agent.name)
                return
            except BridgeError as exc:
                logger.info("Follow-up not accepted (%s); re-queueing", exc)

        if session.busy:
            # The agent exited and its notice is still queued. Retry after it;
            # a photo is downloaded again then.
            discard_file(image_path)
            await asyncio.sleep(REQUEUE_DELAY_SECONDS)
            await session.bus.emit(message)
            return

        await self._start_task(session, text, image_path)

    async def _start_task(
        self, session: Session, text: str, image_path: str | None,
    ) -> None:
        task_id = session.begin_task()
        await self._presenter.show_thinking(session)

        options = AgentOptions(
            cwd=session.cwd,
            resume_token=session.resume_token,
            permission_mode=self._config.permission_mode,
            env=dict(SOURCE_ENV),
            follow_up_wait_seconds=self._config.follow_up_wait_seconds,
            discard_images=True,
        )
        agent = self._agents.create(
            self._config.backend,
            options,
            partial(session.bus.emit_agent_event, task_id),
        )
        agent.set_on_close(partial(session.bus.emit_process_closed, task_id))
        session.agent = agent
        session.busy = True

        try:
            await agent.start(text, image_path)
        except ProcessSpawnError as exc:
            logger.error("Agent spawn failed: %s", exc)
            session.busy = False
            session.agent = None
            session.invalidate_task()
            await self._reply(session, f"Error: {exc}")
            return
        logger.info(
            "Task %d started for user %s (%s in %s, resume=%s)",
            task_id, session.user_id, agent.name, session.cwd,
            session.resume_token.describe() if session.resume_token else "none",
        )

    # ── agent items ─────────────────────────────────────────────────

    async def _handle_agent_output(self, session: Session, item: AgentOutput) -> None:
        if item.task_id != session.task_id:
            logger.debug(
                "Dropping %s from stale task %d", item.event.event_type, item.task_id
            )
            return
        event = item.event
        await fire_event(self._config.event_callback, event_to_dict(event))

        if isinstance(event, InitEvent):
            if event.session_id:
                session.resume_token = ResumeToken.for_session(event.session_id)
            return

        if isinstance(event, DoneEvent) and self._follow_up_pending(session):
            # Input was forwarded after this done was produced; the task
            # continues until the agent answers it.
            logger.info(
                "Task %d: done superseded by %d forwarded turn(s)",
                session.task_id, session.agent.pending_turns,
            )
            if event.is_error:
                await self._presenter.notify(
                    session.chat_id, f"Error: {event.content or 'Turn failed'}"
                )
            return

        await self._presenter.process(session, event)

        if isinstance(event, DoneEvent):
            await self._finish_task(session)

    async def _handle_process_closed(self, session: Session, item: ProcessClosed) -> None:
        if item.task_id != session.task_id or not session.busy:
            return
        logger.warning(
            "Agent exited while busy (code=%s, stderr=%d chars)",
            item.exit_code, len(item.stderr),
        )
        # Clear busy before dropping the handle so no input is forwarded
        # to the dead process in between.
        session.busy = False
        agent, session.agent = session.agent, None
        if agent is not None:
            await agent.stop()
        crash = UnexpectedExitError(item.exit_code, item.stderr)
        await self._presenter.show_crash(session, crash.user_message())

    @staticmethod
    def _follow_up_pending(session: Session) -> bool:
        agent = session.agent
        return agent is not None and agent.pending_turns > 0

    async def _finish_task(self, session: Session) -> None:
        session.busy = False
        agent, session.agent = session.agent, None
        if agent is not None:
            await agent.stop()
        logger.info("Task %d finished for user %s", session.task_id, session.user_id)

    async def _stop_agent(self, session: Session) -> bool:
        """Force-stop any running agent. Returns True if one was running."""
        was_busy = session.busy
        session.invalidate_task()
        session.busy = False
        agent, session.agent = session.agent, None
        if agent is not None:
            await agent.stop()
        return was_busy

    # ── commands ────────────────────────────────────────────────────

    async def handle_command(self, session: Session, name: str, arg_text: str) -> bool:
        """Dispatch a slash command. Returns True if handled."""
        dispatch = {
            "start": lambda: self._cmd_help(session),
            "help": lambda: self._cmd_help(session),
            "new": lambda: self._cmd_new(session),
            "stop": lambda: self._cmd_stop(session),
            "status": lambda: self._cmd_status(session),
            "resume": lambda: self._cmd_resume(session),
            "cd": lambda: self._cmd_cd(session, arg_text),
        }
        handler = dispatch.get(name)
        if handler:
            await handler()
            return True
        await self._reply(
            session, f"Unknown command: /{name}. Type /help for available commands."
        )
        return False

    async def _cmd_help(self, session: Session) -> None:
        lines = [
            "*Coding agent bridge*",
            "",
            "Send a message and it is handled by the coding agent.",
            "Prefix with `!` to run a shell command directly.",
            "",
            "*Commands:*",
        ]
        lines.extend(f"/{cmd} - {desc}" for cmd, desc in COMMAND_HELP.items())
        lines.extend(["", f"Current directory: `{session.cwd}`"])
        await self._reply(session, "\n".join(lines), markdown=True)

    async def _cmd_new(self, session: Session) -> None:
        await self._stop_agent(session)
        session.resume_token = None
        await self._reply(session, "Started new conversation.")

    async def _cmd_stop(self, session: Session) -> None:
        if not session.busy:
            await self._reply(session, "No task running.")
            return
        await self._stop_agent(session)
        await self._reply(session, "Stopped. Send a message to continue, or /new to start over.")

    async def _cmd_status(self, session: Session) -> None:
        token = session.resume_token
        lines = [
            "*Status*",
            f"Project: `{session.cwd}`",
            f"Backend: {self._config.backend}",
            f"Session: {token.describe() if token else 'none'}",
            f"Processing: {'yes' if session.busy else 'no'}",
        ]
        await self._reply(session, "\n".join(lines), markdown=True)

    async def _cmd_resume(self, session: Session) -> None:
        if session.busy:
            await self._stop_agent(session)
        session.resume_token = ResumeToken.most_recent()
        lines = [f"Will continue most recent session in `{session.cwd}`"]
        try:
            summary = latest_session_summary(session.cwd)
        except Exception:
            logger.debug("Session summary lookup failed", exc_info=True)
            summary = None
        if summary:
            lines.append(f"Last conversation: {summary}")
        lines.append("Send a message to continue.")
        await self._reply(session, "\n".join(lines), markdown=True)

    async def _cmd_cd(self, session: Session, raw_path: str) -> None:
        if not raw_path:
            await self._reply(
                session,
                f"Current directory: `{session.cwd}`\n\nUsage: `/cd <path>`",
                markdown=True,
            )
            return
        await self._change_directory(session, raw_path)
        await self._reply(session, f"Changed to: `{session.cwd}`", markdown=True)

    async def _change_directory(self, session: Session, raw_path: str) -> None:
        await self._stop_agent(session)
        session.resume_token = None
        session.cwd = resolve_path(raw_path, session.cwd)
        logger.info("User %s changed directory to %s", session.user_id, session.cwd)

    # ── shell escape ────────────────────────────────────────────────

    async def _handle_shell_escape(self, session: Session, command: str) -> None:
        parts = command.split(None, 1)
        if parts[0] == "cd":
            target = parts[1].strip() if len(parts) > 1 else "~"
            await self._change_directory(session, target)
            await self._reply(session, f"`{session.cwd}`", markdown=True)
            return

        task = asyncio.create_task(self._run_shell(session.chat_id, command, session.cwd))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _run_shell(self, chat_id: int | None, command: str, cwd: str) -> None:
        try:
            result = await run_shell_command(command, cwd)
        except Exception as exc:
            logger.exception("Shell escape failed: %s", command)
            await self._presenter.notify(chat_id, f"Error: {exc}")
            return
        await self._presenter.notify(chat_id, result.render(), parse_mode="Markdown")

    # ── helpers ──────────────────────────────────────────────────────

    async def _reply(self, session: Session, text: str, markdown: bool = False) -> None:
        await self._presenter.notify(
            session.chat_id, text, parse_mode="Markdown" if markdown else None,
        )
