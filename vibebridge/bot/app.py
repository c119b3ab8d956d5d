"""BridgeApp: the top-level object that owns all process-wide state.

Constructed once at startup. Holds the session registry, the shared
expandable-message store, the agent registry and the chat transport,
and runs one worker task per session that drains the session's
EventBus into the dispatch layer.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from vibebridge.bot.expandable import ExpandableMessageStore
from vibebridge.bot.handlers.command_handler import CommandHandler
from vibebridge.bot.handlers.event_processor import EventProcessor
from vibebridge.bot.transport import ChatTransport, InboundItem, TelegramTransport
from vibebridge.engine.config import BridgeConfig
from vibebridge.engine.errors import TransportError
from vibebridge.engine.providers.registry import AgentRegistry, build_agent_registry
from vibebridge.engine.session import Session, SessionRegistry
from vibebridge.shared.commands import COMMAND_HELP

logger = logging.getLogger(__name__)


class BridgeApp:
    """Wires transport, sessions, presenter and dispatch together."""

    def __init__(
        self,
        config: BridgeConfig,
        transport: ChatTransport | None = None,
        agents: AgentRegistry | None = None,
    ) -> None:
        self.config = config
        self.transport = transport or TelegramTransport(
            token=config.telegram_bot_token,
            api_base_url=config.api_base_url,
            poll_timeout=config.poll_timeout_seconds,
        )
        self.agents = agents or build_agent_registry(config.agent_commands())
        self.sessions = SessionRegistry(config.project_root or None)
        self.store = ExpandableMessageStore()
        self.presenter = EventProcessor(self.transport, self.store)
        self.handler = CommandHandler(config, self.agents, self.presenter, self.transport)

    def is_authorized(self, user_id: int) -> bool:
        return (
            self.config.allowed_user_id is not None
            and user_id == self.config.allowed_user_id
        )

    async def dispatch(self, item: InboundItem) -> Session | None:
        """Queue an inbound chat item on its user's session."""
        if not self.is_authorized(item.user_id):
            logger.warning(
                "Ignoring update from unauthorized user %s", item.user_id
            )
            return None
        session = self.sessions.get_or_create(item.user_id)
        self._ensure_worker(session)
        await session.bus.emit(item)
        return session

    def _ensure_worker(self, session: Session) -> None:
        if session.worker is None or session.worker.done():
            session.worker = asyncio.create_task(self._run_session(session))

    async def _run_session(self, session: Session) -> None:
        """Handle the session's items one at a time, in arrival order."""
        async for item in session.bus.consume():
            try:
                await self.handler.handle(session, item)
            except Exception:
                logger.exception(
                    "Unhandled error for user %s on %s",
                    session.user_id, type(item).__name__,
                )

    async def run(self) -> None:
        """Register the command menu, then long-poll until cancelled."""
        transport: Any = self.transport
        if not self.agents.is_available(self.config.backend):
            logger.warning(
                "Backend '%s' CLI not found on PATH; tasks will fail to start",
                self.config.backend,
            )
        try:
            me = await transport.get_me()
            logger.info("Bot started: @%s", me.get("username"))
            await transport.set_commands(COMMAND_HELP)
            logger.info("Commands menu registered")
        except TransportError as exc:
            logger.warning("Bot setup call failed: %s", exc)

        logger.info(
            "Bridge running (backend=%s, allowed user=%s, default cwd=%s)",
            self.config.backend, self.config.allowed_user_id, self.sessions.default_cwd,
        )
        try:
            async for item in transport.poll_updates():
                logger.debug("Update from %s: %s", item.user_id, type(item).__name__)
                await self.dispatch(item)
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Kill every agent and stop every session worker."""
        workers = []
        for session in self.sessions:
            await self.handler.shutdown(session)
            session.bus.close()
            if session.worker is not None:
                workers.append(session.worker)
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)
        await self.handler.wait_background()
        close = getattr(self.transport, "close", None)
        if close is not None:
            await close()
        logger.info("Bridge shut down")
