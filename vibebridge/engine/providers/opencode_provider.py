"""OpenCode CLI adapter (spawn-per-turn variant).

``opencode run`` answers one prompt and exits, so every turn is a new
process. The session id captured from the first event is passed to
later turns with ``--session`` so they continue the same conversation.
OpenCode has no init or terminal record of its own: ``init`` is
synthesized from the first event that carries a session id, and
``done`` from the process exit status.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from vibebridge.adapters.events import AgentEvent, DoneEvent, InitEvent
from vibebridge.adapters.normalize import normalize_opencode_event
from vibebridge.engine.errors import ProcessSpawnError

from .base import AgentAdapter, AgentOptions, EventSink

logger = logging.getLogger(__name__)


class OpenCodeAdapter(AgentAdapter):
    """Adapter backed by the OpenCode CLI in JSON output mode."""

    default_command = "opencode"

    def __init__(
        self,
        options: AgentOptions,
        on_event: EventSink,
        *,
        command: str | None = None,
    ) -> None:
        super().__init__(options, on_event, command=command)
        token = options.resume_token
        self._session_id: str | None = None
        self._continue_recent = False
        if token is not None:
            if token.continue_recent:
                self._continue_recent = True
            else:
                self._session_id = token.session_id
        self._announced = False
        self._turn_task: asyncio.Task | None = None
        # Image passed to the process currently running, if any
        self._turn_image: str | None = None

    @property
    def name(self) -> str:
        return "opencode"

    @property
    def session_id(self) -> str | None:
        return self._session_id

    def build_args(self, prompt: str, image_path: str | None = None) -> list[str]:
        args = ["run", "--format", "json"]
        if self._session_id:
            args.extend(["--session", self._session_id])
        elif self._continue_recent:
            args.append("--continue")
        if image_path and Path(image_path).is_file():
            args.extend(["--file", image_path])
        args.append(prompt)
        return args

    async def start(self, prompt: str, image_path: str | None = None) -> None:
        self._outstanding_turns += 1
        try:
            await self._spawn_turn(prompt, image_path)
        except ProcessSpawnError:
            self._outstanding_turns -= 1
            raise

    async def _spawn_turn(self, prompt: str, image_path: str | None) -> None:
        try:
            await self._spawn(self.build_args(prompt, image_path), interactive=False)
        except ProcessSpawnError:
            self._release_image(image_path)
            raise
        self._turn_image = image_path

    async def send_message(self, text: str, image_path: str | None = None) -> None:
        """Queue a follow-up turn behind the one currently running.

        Returns once the turn is queued; the new process is spawned after
        the previous one has exited.
        """
        self._outstanding_turns += 1
        previous = self._turn_task
        self._turn_task = asyncio.create_task(
            self._run_follow_up(previous, text, image_path)
        )

    def is_running(self) -> bool:
        if super().is_running():
            return True
        # A queued follow-up turn will own the next process.
        return self._turn_task is not None and not self._turn_task.done()

    async def stop(self) -> None:
        task = self._turn_task
        self._turn_task = None
        if task is not None and not task.done():
            task.cancel()
        await super().stop()

    async def _run_follow_up(
        self,
        previous: asyncio.Task | None,
        text: str,
        image_path: str | None,
    ) -> None:
        try:
            if previous is not None:
                await previous
            await self._wait_for_previous_turn()
        except asyncio.CancelledError:
            self._release_image(image_path)
            raise
        if self._stopped:
            self._release_image(image_path)
            return
        try:
            await self._spawn_turn(text, image_path)
        except ProcessSpawnError as exc:
            logger.error("opencode follow-up turn failed to start: %s", exc)
            await self._emit(DoneEvent(
                session_id=self._session_id,
                is_error=True,
                content=str(exc),
            ))

    async def _wait_for_previous_turn(self) -> None:
        reader = self._reader_task
        if reader is None or reader.done():
            return
        timeout = self._options.follow_up_wait_seconds
        try:
            await asyncio.wait_for(
                asyncio.shield(reader),
                timeout=timeout if timeout > 0 else None,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "opencode turn still running after %.0fs; killing it to "
                "start the follow-up turn",
                timeout,
            )
            proc = self._proc
            if proc is not None:
                self._kill(proc)
            await reader

    def _events_for(self, record: dict[str, Any]) -> list[AgentEvent]:
        events: list[AgentEvent] = []
        session_id = record.get("sessionID")
        if session_id and not self._announced:
            self._announced = True
            if not self._session_id:
                self._session_id = session_id
            events.append(InitEvent(session_id=session_id))
        normalized = normalize_opencode_event(record)
        if normalized is not None:
            events.append(normalized)
        return events

    async def _on_process_exit(self, exit_code: int | None, stderr: str) -> None:
        image, self._turn_image = self._turn_image, None
        self._release_image(image)
        if self._stopped:
            return
        is_error = exit_code != 0
        content = None
        if is_error:
            content = stderr.strip()[-500:] or f"opencode exited with code {exit_code}"
        await self._emit(DoneEvent(
            session_id=self._session_id,
            is_error=is_error,
            content=content,
        ))

    async def _fire_close(self, exit_code: int | None, stderr: str) -> None:
        # A turn followed by a queued one is not the end of the agent's
        # work; only the process that answers the last turn reports close.
        if not self._stopped and self._outstanding_turns > 0:
            logger.debug(
                "opencode turn exited (code=%s); %d turn(s) still queued",
                exit_code, self._outstanding_turns,
            )
            return
        await super()._fire_close(exit_code, stderr)
