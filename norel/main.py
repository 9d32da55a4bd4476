"""Application entrypoint."""

from __future__ import annotations

import asyncio
import logging
import random

from norel.agent_runtime import AgentRuntime
from norel.compactor import ContextCompactor
from norel.config import bot_names, load_settings
from norel.db import Database
from norel.llm.openai_compat import OpenAICompatibleProvider
from norel.orchestrator import ConversationOrchestrator
from norel.scheduler import ReminderPoller
from norel.sessions import SessionRegistry
from norel.telegram_adapter import TelegramAdapter
from norel.tools.image_tool import GetFunnyImageTool
from norel.tools.memory_tool import DeleteMemoryTool, SaveMemoryTool
from norel.tools.read_url_tool import ExtractUrlContentTool
from norel.tools.registry import ToolRegistry
from norel.tools.reminder_tool import SetReminderTool
from norel.tools.social_tool import ChangeUserReputationTool, GetChatInfoTool, UpdateRelationshipTool
from norel.tools.web_search_tool import SearchWebTool

LOGGER = logging.getLogger(__name__)


async def run() -> None:
    """Initialize app layers and start processing loop."""

    settings = load_settings()
    logging.basicConfig(level=settings.log_level.upper())

    db = Database(settings.database_path)
    db.initialize()

    provider = OpenAICompatibleProvider(settings)
    rng = random.Random()

    tools = ToolRegistry(db, max_result_chars=settings.tool_result_max_chars)
    tools.register(SearchWebTool())
    tools.register(ExtractUrlContentTool(api_key=settings.jina_api_key))
    tools.register(GetFunnyImageTool(rng=rng))
    tools.register(SaveMemoryTool(db))
    tools.register(DeleteMemoryTool(db))
    tools.register(SetReminderTool(db, min_delay_seconds=settings.min_reminder_seconds))
    tools.register(ChangeUserReputationTool(db))
    tools.register(UpdateRelationshipTool(db))
    tools.register(GetChatInfoTool(db))

    compactor = ContextCompactor(
        llm=provider,
        db=db,
        hard_char_ceiling=settings.context_hard_char_ceiling,
        soft_summarize_threshold=settings.context_soft_summarize_threshold,
        keep_recent=settings.context_keep_recent,
    )
    orchestrator = ConversationOrchestrator(
        llm=provider,
        registry=tools,
        compactor=compactor,
        max_depth=settings.max_tool_depth,
    )

    telegram = TelegramAdapter(
        token=settings.telegram_bot_token,
        base_url=settings.telegram_api_base_url,
        poll_timeout_seconds=settings.telegram_poll_timeout_seconds,
    )
    identity = await telegram.get_me()
    LOGGER.info("Bot started as @%s (id=%s)", identity.username, identity.id)

    runtime = AgentRuntime(
        db=db,
        orchestrator=orchestrator,
        compactor=compactor,
        gateway=telegram,
        bot_id=identity.id,
        bot_username=identity.username,
        bot_names=bot_names(settings),
        sessions=SessionRegistry(reply_chance=settings.passive_reply_chance, rng=rng),
        system_prompt=settings.system_prompt,
        history_window_messages=settings.history_window_messages,
        passive_batch_window_seconds=settings.passive_batch_window_seconds,
        idle_min_seconds=settings.idle_min_seconds,
        idle_jitter_seconds=settings.idle_jitter_seconds,
        summary_refresh_chars=settings.summary_refresh_chars,
        summary_refresh_chance=settings.summary_refresh_chance,
        rng=rng,
    )

    poller = ReminderPoller(db=db, handler=runtime.deliver_reminder, poll_interval_seconds=settings.reminder_poll_seconds)
    poller_task = asyncio.create_task(poller.run_forever(), name="reminder-poller")

    try:
        async for message in telegram.poll_messages():
            runtime.submit(message)
    except asyncio.CancelledError:
        raise
    finally:
        poller.stop()
        poller_task.cancel()
        runtime.shutdown()
        LOGGER.info("Bot shutdown complete")


def main() -> None:
    """Synchronous wrapper for asyncio entrypoint."""

    asyncio.run(run())


if __name__ == "__main__":
    main()
