"""Background triggers feeding the orchestrator: passive batching and idle wake."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable

from norel.models import InboundMessage
from norel.sessions import PendingBatch, SessionRegistry

LOGGER = logging.getLogger(__name__)


class PassiveBatchScheduler:
    """Collects unaddressed messages and flushes them once per window.

    The deadline is fixed by the first message of a batch; later messages
    only raise the count, so a passive decision is never delayed by more than
    ``window_seconds``.
    """

    def __init__(
        self,
        sessions: SessionRegistry,
        handler: Callable[[int, PendingBatch], Awaitable[None]],
        window_seconds: float = 30.0,
    ) -> None:
        self._sessions = sessions
        self._handler = handler
        self._window_seconds = window_seconds

    def add(self, message: InboundMessage) -> PendingBatch:
        session = self._sessions.get(message.chat_id)
        batch = session.batch
        if batch is None:
            loop = asyncio.get_running_loop()
            batch = PendingBatch(trigger=message, started_at=loop.time())
            session.batch = batch
            batch.task = asyncio.create_task(
                self._flush_after_window(message.chat_id, batch), name=f"passive-batch-{message.chat_id}"
            )
            LOGGER.info("[%s] Passive batch opened (%.0fs window)", message.chat_id, self._window_seconds)
        else:
            batch.count += 1
            batch.trigger = message
            LOGGER.debug("[%s] Passive batch now holds %d messages", message.chat_id, batch.count)
        return batch

    def cancel(self, chat_id: int) -> bool:
        """Discard the pending batch of a chat; True if there was one."""

        if chat_id not in self._sessions:
            return False
        session = self._sessions.get(chat_id)
        batch = session.batch
        if batch is None:
            return False
        session.batch = None
        if batch.task is not None:
            batch.task.cancel()
        LOGGER.info("[%s] Passive batch of %d messages cancelled", chat_id, batch.count)
        return True

    def pending(self, chat_id: int) -> PendingBatch | None:
        if chat_id not in self._sessions:
            return None
        return self._sessions.get(chat_id).batch

    def shutdown(self) -> None:
        for session in self._sessions:
            self.cancel(session.chat_id)

    async def _flush_after_window(self, chat_id: int, batch: PendingBatch) -> None:
        await asyncio.sleep(self._window_seconds)
        session = self._sessions.get(chat_id)
        if session.batch is not batch:
            return
        session.batch = None
        LOGGER.info("[%s] Passive batch flushed with %d messages", chat_id, batch.count)
        try:
            await self._handler(chat_id, batch)
        except Exception:  # noqa: BLE001
            LOGGER.exception("[%s] Passive batch handler failed", chat_id)


class IdleWakeScheduler:
    """One randomized wake-up timer per chat, pushed back by any activity."""

    def __init__(
        self,
        sessions: SessionRegistry,
        handler: Callable[[int], Awaitable[None]],
        min_seconds: float = 2 * 3600,
        jitter_seconds: float = 4 * 3600,
        rng: random.Random | None = None,
    ) -> None:
        self._sessions = sessions
        self._handler = handler
        self._min_seconds = min_seconds
        self._jitter_seconds = jitter_seconds
        self._rng = rng or random.Random()

    def reset(self, chat_id: int) -> float:
        """Cancel the chat's live timer and schedule a fresh one; returns the delay."""

        self.cancel(chat_id)
        delay = self._min_seconds + self._rng.random() * self._jitter_seconds
        session = self._sessions.get(chat_id)
        session.idle_task = asyncio.create_task(self._wake_after(chat_id, delay), name=f"idle-wake-{chat_id}")
        LOGGER.debug("[%s] Idle wake in %.0fs", chat_id, delay)
        return delay

    def cancel(self, chat_id: int) -> bool:
        if chat_id not in self._sessions:
            return False
        session = self._sessions.get(chat_id)
        task = session.idle_task
        if task is None:
            return False
        session.idle_task = None
        task.cancel()
        return True

    def shutdown(self) -> None:
        for session in self._sessions:
            self.cancel(session.chat_id)

    async def _wake_after(self, chat_id: int, delay: float) -> None:
        await asyncio.sleep(delay)
        session = self._sessions.get(chat_id)
        if session.idle_task is not asyncio.current_task():
            return
        session.idle_task = None
        LOGGER.info("[%s] Idle wake", chat_id)
        try:
            await self._handler(chat_id)
        except Exception:  # noqa: BLE001
            LOGGER.exception("[%s] Idle wake handler failed", chat_id)
