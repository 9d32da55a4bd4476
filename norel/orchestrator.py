"""Conversation turn orchestrator.

Drives one logical reply: compact the context once, then repeat
"ask the model, run the tools it asked for, append the results" until the
model answers without tool calls or the depth ceiling is reached.
"""

from __future__ import annotations

import logging
import time
from dataclasses import replace

from norel.compactor import ContextCompactor, serialized_size
from norel.llm.base import LLMProvider, ProviderError
from norel.models import Attachment, ConversationMessage, OrchestratorResult, ToolContext
from norel.prompts import RECURSION_FALLBACK_TEXT, STEALTH_DIRECTIVE
from norel.tool_calls import ToolCallExtractor
from norel.tools.registry import ToolRegistry

LOGGER = logging.getLogger(__name__)


class ConversationOrchestrator:
    """Bounded tool-use loop over one conversation buffer."""

    def __init__(
        self,
        llm: LLMProvider,
        registry: ToolRegistry,
        compactor: ContextCompactor,
        extractor: ToolCallExtractor | None = None,
        max_depth: int = 5,
        fallback_text: str = RECURSION_FALLBACK_TEXT,
    ) -> None:
        self._llm = llm
        self._registry = registry
        self._compactor = compactor
        self._extractor = extractor or ToolCallExtractor(registry.tool_names())
        self._max_depth = max_depth
        self._fallback_text = fallback_text

    async def run(
        self,
        messages: list[ConversationMessage],
        context: ToolContext,
        temperature: float = 0.7,
        background: bool = False,
    ) -> OrchestratorResult | None:
        """Produce a reply for ``messages``.

        Returns None when the provider fails; an empty result means the model
        chose to stay silent.
        """
        chat_id = context.chat_id
        LOGGER.info("[%s] Orchestrator run: user=%s background=%s", chat_id, context.user_id, background)

        buffer = list(messages)
        if background:
            buffer = _with_directive(buffer, STEALTH_DIRECTIVE)
        buffer = await self._compactor.compact(chat_id, buffer)

        tool_specs = self._registry.list_tool_specs()
        attachment: Attachment | None = None
        depth = 0
        while depth <= self._max_depth:
            started = time.monotonic()
            LOGGER.info(
                "[%s] Sending request (messages=%d size=%d depth=%d)",
                chat_id,
                len(buffer),
                serialized_size(buffer),
                depth,
            )
            try:
                response = await self._llm.generate(
                    [m.to_payload() for m in buffer],
                    tools=tool_specs,
                    temperature=temperature,
                )
            except ProviderError:
                LOGGER.exception("[%s] Provider error at depth %d", chat_id, depth)
                return None
            LOGGER.info("[%s] Response received in %.0fms (depth=%d)", chat_id, (time.monotonic() - started) * 1000, depth)

            text, invocations = self._extractor.extract(response)
            if not invocations:
                LOGGER.info("[%s] Final response (depth=%d): %r", chat_id, depth, text[:100])
                return OrchestratorResult(text=text or None, attachment=attachment)

            LOGGER.info("[%s] Found %d tool calls: %s", chat_id, len(invocations), [i.name for i in invocations])
            buffer.append(ConversationMessage(role="assistant", content=text or None, tool_calls=invocations))
            for invocation in invocations:
                result = await self._registry.dispatch(invocation, context)
                if result.attachment is not None:
                    attachment = result.attachment
                buffer.append(ConversationMessage(role="tool", content=result.text, tool_call_id=invocation.id))
            depth += 1

        LOGGER.warning("[%s] Max tool depth (%d) reached", chat_id, self._max_depth)
        return OrchestratorResult(text=self._fallback_text)


def _with_directive(messages: list[ConversationMessage], directive: str) -> list[ConversationMessage]:
    """Return a copy of ``messages`` whose system message ends with ``directive``."""

    for index, message in enumerate(messages):
        if message.role == "system":
            updated = list(messages)
            updated[index] = replace(message, content=(message.content or "") + directive)
            return updated
    return [ConversationMessage.system(directive.strip()), *messages]
