"""Per-session ordered channel.

Everything that touches a session's state (inbound chat input, agent
events, process-exit notices) is queued here and consumed by a single
worker, so items are handled one at a time in arrival order.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from vibebridge.adapters.events import AgentEvent

logger = logging.getLogger(__name__)


@dataclass
class AgentOutput:
    """A normalized event emitted by the agent of task ``task_id``."""
    task_id: int
    event: AgentEvent


@dataclass
class ProcessClosed:
    """The agent process of task ``task_id`` terminated."""
    task_id: int
    exit_code: int | None
    stderr: str


class EventBus:
    """Async FIFO queue feeding one session worker."""

    def __init__(self, maxsize: int = 5000) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._queue.qsize()

    async def emit(self, item: Any) -> None:
        """Queue an item. Applies backpressure rather than dropping."""
        if self._closed:
            return
        try:
            await asyncio.wait_for(self._queue.put(item), timeout=30.0)
        except asyncio.TimeoutError:
            logger.error(
                "EventBus queue blocked for 30s, dropping: %s (queue size: %d)",
                type(item).__name__,
                self._queue.qsize(),
            )

    async def emit_agent_event(self, task_id: int, event: AgentEvent) -> None:
        """Event sink handed to agent adapters (bound to one task)."""
        await self.emit(AgentOutput(task_id=task_id, event=event))

    async def emit_process_closed(
        self, task_id: int, exit_code: int | None, stderr: str,
    ) -> None:
        """Close callback handed to agent adapters (bound to one task)."""
        await self.emit(ProcessClosed(task_id=task_id, exit_code=exit_code, stderr=stderr))

    async def get(self) -> Any:
        return await self._queue.get()

    async def consume(self) -> AsyncIterator[Any]:
        """Yield items as they arrive. Stops on close()."""
        while not self._closed:
            try:
                item = await asyncio.wait_for(self._queue.get(), timeout=0.5)
            except asyncio.TimeoutError:
                continue
            yield item

    def close(self) -> None:
        """Stop the consumer loop permanently."""
        self._closed = True
