"""Chat transport boundary and its Telegram Bot API implementation.

The bridge core only talks to a ``ChatTransport``: send, edit, answer a
button press. ``TelegramTransport`` implements it over HTTPS with
aiohttp and also provides the inbound side (long polling), file
downloads and command-menu registration.
"""
from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, Union

import aiohttp

from vibebridge.engine.errors import DisplayUpdateError, TransportError

logger = logging.getLogger(__name__)

# Telegram rejects longer message texts.
MAX_MESSAGE_LENGTH = 4096


@dataclass
class Button:
    """One inline keyboard button."""
    text: str
    callback_data: str


@dataclass
class InboundMessage:
    """A text or photo message from a chat user."""
    chat_id: int
    user_id: int
    text: str = ""
    message_id: int | None = None
    username: str | None = None
    # Largest available photo size, when the message carries one
    photo_file_id: str | None = None


@dataclass
class CallbackQuery:
    """A press on an inline keyboard button."""
    id: str
    user_id: int
    chat_id: int | None
    message_id: int | None
    data: str = ""


InboundItem = Union[InboundMessage, CallbackQuery]


class ChatTransport(Protocol):
    """Outbound chat operations used by the presenter and dispatch layer.

    send/edit raise DisplayUpdateError on failure.
    """

    async def send_message(
        self,
        chat_id: int,
        text: str,
        parse_mode: str | None = None,
        buttons: list[Button] | None = None,
    ) -> int: ...

    async def edit_message(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        parse_mode: str | None = None,
        buttons: list[Button] | None = None,
    ) -> None: ...

    async def answer_callback(self, callback_id: str, text: str | None = None) -> None: ...

    async def download_file(self, file_id: str) -> str: ...


def _reply_markup(buttons: list[Button] | None) -> dict[str, Any] | None:
    if not buttons:
        return None
    return {
        "inline_keyboard": [
            [{"text": b.text, "callback_data": b.callback_data} for b in buttons]
        ]
    }


def parse_update(update: dict[str, Any]) -> InboundItem | None:
    """Turn one getUpdates entry into an inbound item, or None to skip."""
    query = update.get("callback_query")
    if isinstance(query, dict):
        message = query.get("message") or {}
        return CallbackQuery(
            id=str(query.get("id", "")),
            user_id=int((query.get("from") or {}).get("id", 0)),
            chat_id=(message.get("chat") or {}).get("id"),
            message_id=message.get("message_id"),
            data=query.get("data") or "",
        )

    message = update.get("message")
    if not isinstance(message, dict):
        return None
    sender = message.get("from") or {}
    chat = message.get("chat") or {}
    if "id" not in sender or "id" not in chat:
        return None

    photos = message.get("photo") or []
    photo_file_id = None
    if photos:
        largest = max(photos, key=lambda p: p.get("file_size") or p.get("width", 0))
        photo_file_id = largest.get("file_id")

    text = message.get("text") or message.get("caption") or ""
    if not text and photo_file_id is None:
        return None
    return InboundMessage(
        chat_id=int(chat["id"]),
        user_id=int(sender["id"]),
        text=text,
        message_id=message.get("message_id"),
        username=sender.get("username"),
        photo_file_id=photo_file_id,
    )


@dataclass
class TelegramTransport:
    """Telegram Bot API client over aiohttp."""

    token: str
    api_base_url: str = "https://api.telegram.org"
    poll_timeout: int = 30
    download_dir: str = field(
        default_factory=lambda: os.path.join(tempfile.gettempdir(), "vibebridge-images")
    )
    _session: aiohttp.ClientSession | None = field(default=None, init=False, repr=False)
    _offset: int = field(default=0, init=False, repr=False)

    def _url(self, method: str) -> str:
        return f"{self.api_base_url}/bot{self.token}/{method}"

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.poll_timeout + 15)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def call(self, method: str, payload: dict[str, Any] | None = None) -> Any:
        """Invoke a Bot API method and return its ``result``.

        Raises TransportError on HTTP failures and ``ok: false`` replies.
        """
        session = await self._get_session()
        body = {k: v for k, v in (payload or {}).items() if v is not None}
        try:
            async with session.post(self._url(method), json=body) as response:
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise TransportError(method, f"{type(exc).__name__}: {exc}") from exc
        if not isinstance(data, dict) or not data.get("ok"):
            description = (
                data.get("description", "unknown error")
                if isinstance(data, dict) else "malformed response"
            )
            raise TransportError(method, str(description))
        return data.get("result")

    # ── ChatTransport ──

    async def send_message(
        self,
        chat_id: int,
        text: str,
        parse_mode: str | None = None,
        buttons: list[Button] | None = None,
    ) -> int:
        try:
            result = await self.call("sendMessage", {
                "chat_id": chat_id,
                "text": text[:MAX_MESSAGE_LENGTH],
                "parse_mode": parse_mode,
                "reply_markup": _reply_markup(buttons),
            })
        except TransportError as exc:
            raise DisplayUpdateError("sendMessage", exc.reason) from exc
        return int(result["message_id"])

    async def edit_message(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        parse_mode: str | None = None,
        buttons: list[Button] | None = None,
    ) -> None:
        try:
            await self.call("editMessageText", {
                "chat_id": chat_id,
                "message_id": message_id,
                "text": text,
                "parse_mode": parse_mode,
                "reply_markup": _reply_markup(buttons),
            })
        except TransportError as exc:
            raise DisplayUpdateError("editMessageText", exc.reason) from exc

    async def answer_callback(self, callback_id: str, text: str | None = None) -> None:
        try:
            await self.call("answerCallbackQuery", {
                "callback_query_id": callback_id,
                "text": text,
            })
        except TransportError as exc:
            raise DisplayUpdateError("answerCallbackQuery", exc.reason) from exc

    async def download_file(self, file_id: str) -> str:
        """Download a chat file to a local temp file and return its path."""
        info = await self.call("getFile", {"file_id": file_id})
        remote_path = (info or {}).get("file_path")
        if not remote_path:
            raise TransportError("getFile", "no file_path in response")

        session = await self._get_session()
        url = f"{self.api_base_url}/file/bot{self.token}/{remote_path}"
        try:
            async with session.get(url) as response:
                if response.status != 200:
                    raise TransportError("download", f"HTTP {response.status}")
                content = await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise TransportError("download", str(exc)) from exc

        Path(self.download_dir).mkdir(parents=True, exist_ok=True)
        suffix = Path(remote_path).suffix or ".jpg"
        fd, local_path = tempfile.mkstemp(suffix=suffix, dir=self.download_dir)
        with os.fdopen(fd, "wb") as f:
            f.write(content)
        logger.info("Downloaded %s (%d bytes) to %s", remote_path, len(content), local_path)
        return local_path

    # ── Inbound ──

    async def set_commands(self, commands: dict[str, str]) -> None:
        await self.call("setMyCommands", {
            "commands": [
                {"command": name, "description": description}
                for name, description in commands.items()
            ],
        })

    async def get_me(self) -> dict[str, Any]:
        return await self.call("getMe")

    async def get_updates(self) -> list[InboundItem]:
        """One long-poll round. Advances the update offset."""
        updates = await self.call("getUpdates", {
            "offset": self._offset or None,
            "timeout": self.poll_timeout,
            "allowed_updates": ["message", "callback_query"],
        }) or []
        items: list[InboundItem] = []
        for update in updates:
            self._offset = max(self._offset, int(update.get("update_id", 0)) + 1)
            item = parse_update(update)
            if item is None:
                logger.debug("Skipping update %s", update.get("update_id"))
                continue
            items.append(item)
        return items

    async def poll_updates(self, retry_delay: float = 3.0) -> AsyncIterator[InboundItem]:
        """Yield inbound items forever. Transport errors are logged and retried."""
        while True:
            try:
                items = await self.get_updates()
            except TransportError as exc:
                logger.warning("Polling failed: %s; retrying in %.0fs", exc, retry_delay)
                await asyncio.sleep(retry_delay)
                continue
            for item in items:
                yield item
