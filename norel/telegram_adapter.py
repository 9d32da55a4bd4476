"""Telegram Bot API adapter."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator

import httpx

from norel.gateway import ChatGateway, GatewayError
from norel.models import InboundMessage

LOGGER = logging.getLogger(__name__)

_MARKDOWN_CHARS = re.compile(r"[*_`\[]")


@dataclass(slots=True, frozen=True)
class BotIdentity:
    id: int
    username: str | None


class TelegramAdapter(ChatGateway):
    """Long-polling Bot API client implementing the chat gateway."""

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.telegram.org",
        poll_timeout_seconds: int = 30,
        retry_delay_seconds: float = 5.0,
    ) -> None:
        self._api_url = f"{base_url.rstrip('/')}/bot{token}"
        self._poll_timeout_seconds = poll_timeout_seconds
        self._retry_delay_seconds = retry_delay_seconds
        self._offset: int | None = None

    async def _call(self, method: str, payload: dict[str, Any] | None = None, timeout: float = 30.0) -> Any:
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                resp = await client.post(f"{self._api_url}/{method}", json=payload or {})
                data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise GatewayError(f"Telegram {method} failed: {exc}") from exc
        if not data.get("ok"):
            raise GatewayError(f"Telegram {method} rejected: {data.get('description', resp.status_code)}")
        return data.get("result")

    async def get_me(self) -> BotIdentity:
        result = await self._call("getMe")
        return BotIdentity(id=int(result["id"]), username=result.get("username"))

    async def poll_messages(self) -> AsyncIterator[InboundMessage]:
        """Long-poll getUpdates and yield normalized text messages."""

        while True:
            payload: dict[str, Any] = {
                "timeout": self._poll_timeout_seconds,
                "allowed_updates": ["message"],
            }
            if self._offset is not None:
                payload["offset"] = self._offset
            try:
                updates = await self._call("getUpdates", payload, timeout=self._poll_timeout_seconds + 10)
            except GatewayError as exc:
                LOGGER.warning("Telegram getUpdates failed: %s", exc)
                await asyncio.sleep(self._retry_delay_seconds)
                continue

            for update in updates or []:
                self._offset = int(update["update_id"]) + 1
                try:
                    message = _to_message(update)
                except (KeyError, TypeError, ValueError):
                    LOGGER.warning("Skipping malformed update %s", update.get("update_id"))
                    continue
                if message is not None:
                    yield message

    async def send_text(self, chat_id: int, text: str) -> None:
        if not _MARKDOWN_CHARS.search(text):
            await self._call("sendMessage", {"chat_id": chat_id, "text": text})
            return
        try:
            await self._call("sendMessage", {"chat_id": chat_id, "text": text, "parse_mode": "Markdown"})
        except GatewayError as exc:
            LOGGER.warning("[%s] Markdown parsing failed, falling back to plain text: %s", chat_id, exc)
            await self._call("sendMessage", {"chat_id": chat_id, "text": text})

    async def send_photo(self, chat_id: int, url: str, caption: str | None = None) -> None:
        payload: dict[str, Any] = {"chat_id": chat_id, "photo": url}
        if caption:
            payload["caption"] = caption
        await self._call("sendPhoto", payload, timeout=60.0)

    async def send_typing(self, chat_id: int) -> None:
        await self._call("sendChatAction", {"chat_id": chat_id, "action": "typing"})


def _to_message(update: dict[str, Any]) -> InboundMessage | None:
    message = update.get("message")
    if not isinstance(message, dict):
        return None
    text = message.get("text")
    if not isinstance(text, str) or not text.strip():
        return None

    chat = message["chat"]
    sender = message.get("from") or {}
    if "id" not in sender:
        return None
    reply_to = message.get("reply_to_message") or {}
    reply_from = reply_to.get("from") or {}

    return InboundMessage(
        chat_id=int(chat["id"]),
        sender_id=int(sender["id"]),
        text=text.strip(),
        timestamp=datetime.fromtimestamp(int(message.get("date") or 0), tz=timezone.utc),
        message_id=message.get("message_id"),
        is_private=chat.get("type") == "private",
        chat_title=chat.get("title"),
        sender_username=sender.get("username"),
        sender_first_name=sender.get("first_name"),
        reply_to_user_id=int(reply_from["id"]) if "id" in reply_from else None,
    )
