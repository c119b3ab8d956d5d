"""Claude Code CLI adapter (interactive stdin variant).

One long-lived ``claude -p`` process per task. Prompts are written to
its stdin as stream-json user envelopes; its stdout is a stream of
NDJSON events normalized by ``normalize_claude_event``.
"""
from __future__ import annotations

import base64
import json
import logging
from pathlib import Path
from typing import Any

from vibebridge.adapters.events import AgentEvent
from vibebridge.adapters.normalize import normalize_claude_event
from vibebridge.engine.errors import NotStartedError, ProcessSpawnError

from .base import AgentAdapter

logger = logging.getLogger(__name__)

_MEDIA_TYPES = {
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
}


def image_media_type(path: str) -> str:
    """Infer an image media type from the file extension (default JPEG)."""
    ext = Path(path).suffix.lstrip(".").lower()
    return _MEDIA_TYPES.get(ext, "image/jpeg")


def build_user_envelope(text: str, image_path: str | None = None) -> dict[str, Any]:
    """Build the stream-json user message for *text* and an optional image."""
    content: list[dict[str, Any]] = []
    if image_path and Path(image_path).is_file():
        data = base64.b64encode(Path(image_path).read_bytes()).decode("ascii")
        content.append({
            "type": "image",
            "source": {
                "type": "base64",
                "media_type": image_media_type(image_path),
                "data": data,
            },
        })
    elif image_path:
        logger.warning("Image %s not found; sending text only", image_path)
    content.append({"type": "text", "text": text})
    return {
        "type": "user",
        "message": {"role": "user", "content": content},
    }


class ClaudeAdapter(AgentAdapter):
    """Adapter backed by the Claude Code CLI in stream-json mode."""

    default_command = "claude"

    @property
    def name(self) -> str:
        return "claude"

    def build_args(self) -> list[str]:
        args = [
            "-p",
            "--input-format", "stream-json",
            "--output-format", "stream-json",
            "--verbose",
        ]
        mode = self._options.permission_mode
        if mode:
            args.extend(["--permission-mode", getattr(mode, "value", mode)])

        token = self._options.resume_token
        if token is not None:
            if token.continue_recent:
                args.append("--continue")
            elif token.session_id:
                args.extend(["--resume", token.session_id])
        return args

    async def start(self, prompt: str, image_path: str | None = None) -> None:
        try:
            await self._spawn(self.build_args(), interactive=True)
        except ProcessSpawnError:
            self._release_image(image_path)
            raise
        await self.send_message(prompt, image_path)

    async def send_message(self, text: str, image_path: str | None = None) -> None:
        proc = self._proc
        if proc is None or proc.stdin is None or proc.returncode is not None:
            raise NotStartedError(self.name)

        line = json.dumps(build_user_envelope(text, image_path)) + "\n"
        # The image is inlined in the envelope; the file is no longer needed.
        self._release_image(image_path)
        self._outstanding_turns += 1
        try:
            proc.stdin.write(line.encode("utf-8"))
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            # The exit is reported through the close callback.
            logger.warning("claude stdin closed while sending input: %s", exc)

    def _events_for(self, record: dict[str, Any]) -> list[AgentEvent]:
        event = normalize_claude_event(record)
        return [event] if event is not None else []
