"""Core agent runtime: routes inbound messages and timer triggers to the orchestrator."""

from __future__ import annotations

import asyncio
import logging
import random
from datetime import datetime, timezone
from typing import Iterable

from norel.commands import CommandDispatcher
from norel.compactor import ContextCompactor, serialized_size
from norel.db import Database
from norel.gateway import ChatGateway, GatewayError
from norel.models import (
    ConversationMessage,
    InboundMessage,
    OrchestratorResult,
    ReminderRecord,
    ToolContext,
    UserRecord,
)
from norel.orchestrator import ConversationOrchestrator
from norel.prompts import (
    BASE_SYSTEM_PROMPT,
    IDLE_PROMPT,
    MOOD_PROMPTS,
    PASSIVE_SYSTEM_PROMPT,
    RULES_PROMPT,
    SERVICE_UNAVAILABLE_TEXT,
)
from norel.sessions import PendingBatch, SessionRegistry
from norel.triggers import IdleWakeScheduler, PassiveBatchScheduler

LOGGER = logging.getLogger(__name__)

IDLE_HISTORY_MESSAGES = 5
SUMMARY_REFRESH_MIN_MESSAGES = 10
SUMMARY_REFRESH_HISTORY_MESSAGES = 20


class AgentRuntime:
    """Chat-isolated runtime deciding when the orchestrator runs and delivering its output."""

    def __init__(
        self,
        db: Database,
        orchestrator: ConversationOrchestrator,
        compactor: ContextCompactor,
        gateway: ChatGateway,
        bot_id: int,
        bot_username: str | None = None,
        bot_names: Iterable[str] = (),
        sessions: SessionRegistry | None = None,
        system_prompt: str | None = None,
        history_window_messages: int = 15,
        passive_batch_window_seconds: float = 30.0,
        idle_min_seconds: float = 2 * 3600,
        idle_jitter_seconds: float = 4 * 3600,
        summary_refresh_chars: int = 15_000,
        summary_refresh_chance: float = 0.2,
        typing_interval_seconds: float = 4.0,
        rng: random.Random | None = None,
    ) -> None:
        self._db = db
        self._orchestrator = orchestrator
        self._compactor = compactor
        self._gateway = gateway
        self._bot_id = bot_id
        self._triggers = {n.lower() for n in bot_names if n}
        if bot_username:
            self._triggers.add(bot_username.lower())
        self._sessions = sessions or SessionRegistry()
        self._system_prompt = system_prompt or BASE_SYSTEM_PROMPT
        self._history_window_messages = history_window_messages
        self._summary_refresh_chars = summary_refresh_chars
        self._summary_refresh_chance = summary_refresh_chance
        self._typing_interval_seconds = typing_interval_seconds
        self._rng = rng or random.Random()
        self._background: set[asyncio.Task[None]] = set()
        self._inflight: set[asyncio.Task[None]] = set()

        self.batcher = PassiveBatchScheduler(self._sessions, self._flush_passive, passive_batch_window_seconds)
        self.idle = IdleWakeScheduler(
            self._sessions, self._idle_wake, idle_min_seconds, idle_jitter_seconds, rng=self._rng
        )
        self.commands = CommandDispatcher(db, idle=self.idle)

    @property
    def sessions(self) -> SessionRegistry:
        return self._sessions

    def submit(self, message: InboundMessage) -> asyncio.Task[None]:
        """Handle ``message`` in its own task so one chat never stalls the others."""

        task = asyncio.create_task(self.handle_message(message), name=f"update-{message.chat_id}")
        self._inflight.add(task)
        task.add_done_callback(self._on_update_done)
        return task

    def _on_update_done(self, task: asyncio.Task[None]) -> None:
        self._inflight.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("[%s] Failed to handle message", task.get_name(), exc_info=exc)

    async def handle_message(self, message: InboundMessage) -> None:
        """Handle one inbound chat message."""

        chat_id = message.chat_id
        LOGGER.info(
            "[%s] From %s (@%s) in %r: %s",
            chat_id,
            message.display_name,
            message.sender_username,
            "Private" if message.is_private else message.chat_title,
            message.text[:50],
        )

        if message.text.startswith("/"):
            reply = await self.commands.dispatch(message)
            if reply is not None:
                await self._send_text(chat_id, reply)
                return

        self.idle.reset(chat_id)
        self._db.upsert_user(message.sender_id, message.sender_username, message.sender_first_name)
        self._db.add_message(chat_id, "user", message.text, name=message.display_name, user_id=message.sender_id)

        if message.sender_id == self._bot_id:
            return

        if self.is_addressed(message):
            if self.batcher.cancel(chat_id):
                LOGGER.info("[%s] Active trigger superseded the passive batch", chat_id)
            await self._run_active(message)
        else:
            self.batcher.add(message)

    def is_addressed(self, message: InboundMessage) -> bool:
        """Private chat, a mention of one of the bot's names, or a reply to the bot."""

        if message.is_private:
            return True
        if message.reply_to_user_id is not None and message.reply_to_user_id == self._bot_id:
            return True
        lower_text = message.text.lower()
        return any(name in lower_text for name in self._triggers)

    async def deliver_reminder(self, reminder: ReminderRecord) -> None:
        """Send a due reminder; raises GatewayError so the poller retries it."""

        user = self._db.get_user(reminder.user_id) if reminder.user_id is not None else None
        name = user.first_name if user and user.first_name else "friend"
        await self._gateway.send_text(reminder.chat_id, f"⏰ *Reminder for {name}*\n\n{reminder.text}")
        self._db.add_message(reminder.chat_id, "assistant", f"[Reminder]: {reminder.text}")

    def shutdown(self) -> None:
        self.batcher.shutdown()
        self.idle.shutdown()
        for task in [*self._inflight, *self._background]:
            task.cancel()

    async def _run_active(self, message: InboundMessage) -> None:
        chat_id = message.chat_id
        session = self._sessions.get(chat_id)
        if not session.try_acquire():
            LOGGER.info("[%s] Already processing this chat, skipping reply decision", chat_id)
            return

        LOGGER.info("[%s] Processing message. Mode: Active", chat_id)
        try:
            typing = asyncio.create_task(self._keep_typing(chat_id))
            try:
                result = await self._generate(chat_id, message.sender_id, passive=False)
            finally:
                typing.cancel()

            if result is None:
                LOGGER.error("[%s] AI failed to generate response in active mode", chat_id)
                await self._send_text(chat_id, SERVICE_UNAVAILABLE_TEXT)
            elif result.is_empty:
                LOGGER.info("[%s] AI chose to remain silent", chat_id)
            else:
                await self._deliver(chat_id, result)
        finally:
            session.release()
        self.idle.reset(chat_id)

    async def _flush_passive(self, chat_id: int, batch: PendingBatch) -> None:
        session = self._sessions.get(chat_id)
        if not session.try_acquire():
            LOGGER.info("[%s] Already processing this chat, dropping passive batch", chat_id)
            return

        LOGGER.info("[%s] Processing %d messages. Mode: Passive", chat_id, batch.count)
        try:
            result = await self._generate(chat_id, batch.trigger.sender_id, passive=True)
            reply_allowed = session.reply_gate.register(batch.count)
            if result is None or result.is_empty:
                LOGGER.info("[%s] Passive mode: AI chose to remain silent", chat_id)
            elif not reply_allowed:
                LOGGER.info("[%s] Passive mode: response suppressed by reply gate", chat_id)
            else:
                await self._deliver(chat_id, result)
        finally:
            session.release()
        self.idle.reset(chat_id)

    async def _idle_wake(self, chat_id: int) -> None:
        session = self._sessions.get(chat_id)
        if not session.try_acquire():
            self.idle.reset(chat_id)
            return

        try:
            settings = self._db.get_chat_settings(chat_id)
            system = "\n\n".join(
                part for part in (self._system_prompt, MOOD_PROMPTS.get(settings.mood, ""), IDLE_PROMPT) if part
            )
            messages = [ConversationMessage.system(system), *self._history(chat_id, IDLE_HISTORY_MESSAGES)]
            result = await self._orchestrator.run(
                messages, ToolContext(chat_id=chat_id), temperature=settings.temperature
            )
            if result is not None and not result.is_empty:
                await self._deliver(chat_id, result)
        finally:
            session.release()
        self.idle.reset(chat_id)

    async def _generate(self, chat_id: int, user_id: int, passive: bool) -> OrchestratorResult | None:
        settings = self._db.get_chat_settings(chat_id)
        history = self._history(chat_id, self._history_window_messages)
        system = build_system_prompt(
            base=PASSIVE_SYSTEM_PROMPT if passive else self._system_prompt,
            mood=settings.mood,
            summary=self._db.get_summary(chat_id),
            user=self._db.get_user(user_id),
            facts=self._db.get_facts(user_id),
        )
        if len(history) >= SUMMARY_REFRESH_MIN_MESSAGES:
            self._maybe_refresh_summary(chat_id)
        return await self._orchestrator.run(
            [ConversationMessage.system(system), *history],
            ToolContext(chat_id=chat_id, user_id=user_id),
            temperature=settings.temperature,
            background=passive,
        )

    def _history(self, chat_id: int, limit: int) -> list[ConversationMessage]:
        return [
            ConversationMessage(role=row["role"], content=row["content"], speaker_name=row["name"])
            for row in self._db.get_history(chat_id, limit)
        ]

    def _maybe_refresh_summary(self, chat_id: int) -> None:
        if self._rng.random() >= self._summary_refresh_chance:
            return
        messages = self._history(chat_id, SUMMARY_REFRESH_HISTORY_MESSAGES)
        if serialized_size(messages) < self._summary_refresh_chars:
            return
        task = asyncio.create_task(self._refresh_summary(chat_id, messages), name=f"summary-{chat_id}")
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _refresh_summary(self, chat_id: int, messages: list[ConversationMessage]) -> None:
        try:
            await self._compactor.summarize(chat_id, messages)
        except Exception:  # noqa: BLE001
            LOGGER.exception("[%s] Background summary error", chat_id)

    async def _deliver(self, chat_id: int, result: OrchestratorResult) -> None:
        if result.attachment is not None:
            caption = result.text or result.attachment.caption
            try:
                await self._gateway.send_photo(chat_id, result.attachment.url, caption=caption)
            except GatewayError:
                LOGGER.warning("[%s] Sending photo failed, falling back to text", chat_id, exc_info=True)
                if not result.text or not await self._send_text(chat_id, result.text):
                    return
            self._db.add_message(chat_id, "assistant", result.text or f"[photo] {caption or ''}".strip())
            return

        if result.text and await self._send_text(chat_id, result.text):
            LOGGER.info("[%s] Sent response: %s", chat_id, result.text[:50])
            self._db.add_message(chat_id, "assistant", result.text)

    async def _send_text(self, chat_id: int, text: str) -> bool:
        try:
            await self._gateway.send_text(chat_id, text)
        except GatewayError:
            LOGGER.exception("[%s] Failed to send message", chat_id)
            return False
        return True

    async def _keep_typing(self, chat_id: int) -> None:
        while True:
            try:
                await self._gateway.send_typing(chat_id)
            except GatewayError:
                LOGGER.debug("[%s] Typing indicator failed", chat_id)
            await asyncio.sleep(self._typing_interval_seconds)


def build_system_prompt(
    base: str,
    mood: str,
    summary: str | None,
    user: UserRecord | None,
    facts: list[str],
    now: datetime | None = None,
) -> str:
    """Assemble the system message from persona, memory and the current time."""

    now = now or datetime.now(timezone.utc)
    parts = [base]
    if mood_prompt := MOOD_PROMPTS.get(mood, ""):
        parts.append(mood_prompt)
    parts.append(f"[PREVIOUS CONVERSATION SUMMARY]\n{summary or 'The conversation has just started.'}")
    if user is not None:
        parts.append(
            "[ABOUT THE USER]\n"
            f"Name: {user.first_name or 'Anon'} (@{user.username or 'unknown'})\n"
            f"ID: {user.id}\n"
            f"Your reputation with this user: {user.reputation}\n"
            f"Facts: {'; '.join(facts) if facts else 'no data'}"
        )
    parts.append(f"[DATE AND TIME]\nNow: {now.strftime('%Y-%m-%d %H:%M %Z')}")
    parts.append(RULES_PROMPT)
    return "\n\n".join(parts)
