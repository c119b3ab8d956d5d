"""Per-user session state and the registry that owns it."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Iterator

from vibebridge.adapters.event_bus import EventBus
from vibebridge.engine.models import ResumeToken, SessionState
from vibebridge.engine.paths import resolve_path

if TYPE_CHECKING:
    from vibebridge.engine.providers.base import AgentAdapter

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """Conversation state for one chat user.

    ``busy`` is True exactly while ``agent`` is set. The only exception
    is unexpected-exit handling, which clears ``busy`` before ``agent``.
    """

    user_id: int
    cwd: str
    chat_id: int | None = None
    agent: AgentAdapter | None = None
    resume_token: ResumeToken | None = None
    # Message ids of the three display slots for the current task
    status_slot: int | None = None
    output_slot: int | None = None
    response_slot: int | None = None
    last_status_text: str | None = None
    busy: bool = False
    # Bumped on every task start and forced stop; items tagged with an
    # older id come from a discarded agent and are ignored.
    task_id: int = 0
    bus: EventBus = field(default_factory=EventBus, repr=False)
    worker: asyncio.Task | None = field(default=None, repr=False)

    @property
    def state(self) -> SessionState:
        return SessionState.BUSY if self.busy else SessionState.IDLE

    def reset_slots(self) -> None:
        self.status_slot = None
        self.output_slot = None
        self.response_slot = None
        self.last_status_text = None

    def begin_task(self) -> int:
        """Clear the display slots and open a new task id."""
        self.reset_slots()
        self.task_id += 1
        return self.task_id

    def invalidate_task(self) -> None:
        self.task_id += 1

    def can_forward(self) -> bool:
        """Whether follow-up input can go to the running agent."""
        return (
            self.busy
            and self.agent is not None
            and self.agent.is_running()
        )


class SessionRegistry:
    """Maps user ids to sessions. Sessions live for the process lifetime."""

    def __init__(self, default_cwd: str | None = None) -> None:
        home = str(Path.home())
        self._default_cwd = resolve_path(default_cwd or home, home, home)
        self._sessions: dict[int, Session] = {}

    @property
    def default_cwd(self) -> str:
        return self._default_cwd

    def get(self, user_id: int) -> Session | None:
        return self._sessions.get(user_id)

    def get_or_create(self, user_id: int) -> Session:
        session = self._sessions.get(user_id)
        if session is None:
            session = Session(user_id=user_id, cwd=self._default_cwd)
            self._sessions[user_id] = session
            logger.info("Session created for user %s (cwd=%s)", user_id, session.cwd)
        return session

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))
