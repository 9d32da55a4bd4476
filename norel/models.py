"""Core domain models used across layers."""

from __future__ import annotations

import json
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

Role = Literal["system", "user", "assistant", "tool"]

_NAME_UNSAFE = re.compile(r"[^a-zA-Z0-9_-]")


def new_call_id() -> str:
    """Return a fresh tool-call correlation id."""

    return f"call_{uuid.uuid4().hex[:12]}"


@dataclass(slots=True)
class InboundMessage:
    """Message normalized by the gateway for runtime usage."""

    chat_id: int
    sender_id: int
    text: str
    timestamp: datetime
    message_id: int | None = None
    is_private: bool = False
    chat_title: str | None = None
    sender_username: str | None = None
    sender_first_name: str | None = None
    reply_to_user_id: int | None = None

    @property
    def display_name(self) -> str:
        return self.sender_first_name or self.sender_username or "Anon"


@dataclass(slots=True)
class ToolInvocation:
    """Normalized tool call emitted by the model for one round."""

    name: str
    arguments: dict[str, Any]
    id: str = field(default_factory=new_call_id)

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": json.dumps(self.arguments, ensure_ascii=False)},
        }


@dataclass(slots=True)
class ConversationMessage:
    """One entry of the conversation buffer sent to the provider."""

    role: Role
    content: str | None
    speaker_name: str | None = None
    tool_call_id: str | None = None
    tool_calls: list[ToolInvocation] = field(default_factory=list)

    @classmethod
    def system(cls, content: str) -> ConversationMessage:
        return cls(role="system", content=content)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.speaker_name:
            payload["name"] = _NAME_UNSAFE.sub("_", self.speaker_name)
        if self.tool_calls:
            payload["tool_calls"] = [call.to_payload() for call in self.tool_calls]
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        return payload


@dataclass(slots=True)
class LLMResponse:
    """Result from an LLM generation request."""

    content: str
    tool_calls: list[ToolInvocation] = field(default_factory=list)
    raw: dict[str, Any] | None = None


@dataclass(slots=True, frozen=True)
class Attachment:
    """Binary attachment surfaced to the chat (currently images only)."""

    url: str
    caption: str | None = None


@dataclass(slots=True)
class ToolResult:
    """Tagged dispatcher output: plain text, or an attachment with a short marker."""

    kind: Literal["text", "attachment"]
    text: str
    attachment: Attachment | None = None

    @classmethod
    def of_text(cls, text: str) -> ToolResult:
        return cls(kind="text", text=text)

    @classmethod
    def of_attachment(cls, url: str, caption: str | None = None) -> ToolResult:
        marker = f"[image attached: {caption}]" if caption else "[image attached]"
        return cls(kind="attachment", text=marker, attachment=Attachment(url=url, caption=caption))


@dataclass(slots=True)
class OrchestratorResult:
    """Terminal output of a successful orchestrator run."""

    text: str | None = None
    attachment: Attachment | None = None

    @property
    def is_empty(self) -> bool:
        return not self.text and self.attachment is None


@dataclass(slots=True)
class ToolContext:
    """Caller identity handed to tools by the dispatcher."""

    chat_id: int
    user_id: int | None = None


@dataclass(slots=True)
class UserRecord:
    id: int
    username: str | None
    first_name: str | None
    reputation: int = 0


@dataclass(slots=True)
class ChatSettings:
    chat_id: int
    temperature: float = 0.7
    mood: str = "neutral"


@dataclass(slots=True)
class Relationship:
    chat_id: int
    user_id_1: int
    user_id_2: int
    affection: int = 0
    status: str | None = None


@dataclass(slots=True)
class ReminderRecord:
    """Scheduled notification owned by the store."""

    id: int
    chat_id: int
    user_id: int | None
    text: str
    due_at: datetime
    sent: bool = False
