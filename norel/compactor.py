"""Context compaction: summarize, then truncate, to keep the buffer under budget."""

from __future__ import annotations

import json
import logging
from typing import Sequence

from norel.db import Database
from norel.llm.base import LLMProvider, ProviderError
from norel.models import ConversationMessage
from norel.prompts import SUMMARY_PROMPT

LOGGER = logging.getLogger(__name__)

# json.dumps puts ", " between list items.
_SEPARATOR_CHARS = 2


def serialized_size(messages: Sequence[ConversationMessage]) -> int:
    """Length of the JSON payload the provider would receive for ``messages``."""

    return len(json.dumps([m.to_payload() for m in messages], ensure_ascii=False))


def _item_size(message: ConversationMessage) -> int:
    return len(json.dumps(message.to_payload(), ensure_ascii=False))


class ContextCompactor:
    """Keeps a conversation under a character ceiling.

    Above ``soft_summarize_threshold`` the older part of the conversation is
    folded into the chat's standing summary and only the newest
    ``keep_recent`` messages are kept. Above ``hard_char_ceiling`` the oldest
    non-system messages are dropped until the payload fits. The system
    message always survives.
    """

    def __init__(
        self,
        llm: LLMProvider,
        db: Database,
        hard_char_ceiling: int = 40_000,
        soft_summarize_threshold: int = 60_000,
        keep_recent: int = 10,
    ) -> None:
        self._llm = llm
        self._db = db
        self._hard_char_ceiling = hard_char_ceiling
        self._soft_summarize_threshold = soft_summarize_threshold
        self._keep_recent = keep_recent

    async def compact(self, chat_id: int, messages: list[ConversationMessage]) -> list[ConversationMessage]:
        total = serialized_size(messages)
        if total > self._soft_summarize_threshold:
            LOGGER.info("[%s] Context very large (%d chars), attempting summarization", chat_id, total)
            if await self.summarize(chat_id, messages):
                system, others = _split_system(messages)
                recent = others[-self._keep_recent :] if self._keep_recent > 0 else []
                messages = [*system, *_drop_orphaned_tool_results(recent)]
                total = serialized_size(messages)
                LOGGER.info(
                    "[%s] Context reduced to %d messages (%d chars) after summarization",
                    chat_id,
                    len(messages),
                    total,
                )

        if total > self._hard_char_ceiling:
            messages = self._truncate(chat_id, messages)
            LOGGER.info(
                "[%s] Truncated context to %d messages (%d chars)",
                chat_id,
                len(messages),
                serialized_size(messages),
            )
        return messages

    async def summarize(self, chat_id: int, messages: Sequence[ConversationMessage]) -> bool:
        """Store a short synopsis of everything but the newest message.

        Returns True when a summary was produced and saved.
        """
        prompt = [m.to_payload() for m in messages[:-1]]
        prompt.append(ConversationMessage.system(SUMMARY_PROMPT).to_payload())
        try:
            response = await self._llm.generate(prompt, temperature=0.3)
        except ProviderError:
            LOGGER.exception("[%s] Summarization failed", chat_id)
            return False

        summary = response.content.strip()
        if not summary:
            return False
        LOGGER.info("[%s] New summary: %s", chat_id, summary[:200])
        self._db.save_summary(chat_id, summary)
        return True

    def _truncate(self, chat_id: int, messages: list[ConversationMessage]) -> list[ConversationMessage]:
        system, others = _split_system(messages)
        # Opening and closing brackets of the list.
        size = 2 + sum(_item_size(m) for m in system)
        if size > self._hard_char_ceiling:
            LOGGER.warning(
                "[%s] System prompt alone (%d chars) exceeds the context ceiling of %d chars",
                chat_id,
                size,
                self._hard_char_ceiling,
            )
        kept: list[ConversationMessage] = []
        for message in reversed(others):
            extra = _item_size(message) + (_SEPARATOR_CHARS if system or kept else 0)
            if size + extra > self._hard_char_ceiling:
                break
            kept.append(message)
            size += extra
        kept.reverse()
        return [*system, *_drop_orphaned_tool_results(kept)]


def _split_system(
    messages: Sequence[ConversationMessage],
) -> tuple[list[ConversationMessage], list[ConversationMessage]]:
    if messages and messages[0].role == "system":
        return [messages[0]], list(messages[1:])
    return [], list(messages)


def _drop_orphaned_tool_results(messages: list[ConversationMessage]) -> list[ConversationMessage]:
    # Tool results whose assistant call was cut off are rejected by providers.
    start = 0
    while start < len(messages) and messages[start].role == "tool":
        start += 1
    return messages[start:]
