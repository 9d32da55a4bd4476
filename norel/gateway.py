"""Chat platform gateway interface."""

from __future__ import annotations

from abc import ABC, abstractmethod


class GatewayError(RuntimeError):
    """Raised when the chat platform rejects or fails a request."""


class ChatGateway(ABC):
    """Outbound side of the chat platform used by the runtime."""

    @abstractmethod
    async def send_text(self, chat_id: int, text: str) -> None:
        """Send a text message, retrying once as plain text if formatting is rejected."""

    @abstractmethod
    async def send_photo(self, chat_id: int, url: str, caption: str | None = None) -> None:
        """Send a photo by URL."""

    @abstractmethod
    async def send_typing(self, chat_id: int) -> None:
        """Show the typing indicator."""
