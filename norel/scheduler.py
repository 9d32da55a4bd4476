"""Async poller delivering due reminders."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable

from norel.db import Database
from norel.models import ReminderRecord

LOGGER = logging.getLogger(__name__)


class ReminderPoller:
    """Polls due, unsent reminders and dispatches them via callback.

    A reminder is marked sent only after the handler returns. Sending and
    marking are not atomic: a crash in between re-delivers the reminder on the
    next start.
    """

    def __init__(
        self,
        db: Database,
        handler: Callable[[ReminderRecord], Awaitable[None]],
        poll_interval_seconds: float = 30.0,
    ) -> None:
        self._db = db
        self._handler = handler
        self._poll_interval_seconds = poll_interval_seconds
        self._stop_event = asyncio.Event()

    async def poll_once(self, now: datetime | None = None) -> list[ReminderRecord]:
        """Deliver every due reminder once; returns the ones marked sent."""

        delivered: list[ReminderRecord] = []
        for reminder in self._db.get_pending_reminders(now):
            LOGGER.info("Sending reminder %s to chat %s", reminder.id, reminder.chat_id)
            try:
                await self._handler(reminder)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Reminder %s delivery failed, will retry next sweep", reminder.id)
                continue
            self._db.mark_reminder_sent(reminder.id)
            reminder.sent = True
            delivered.append(reminder)
        return delivered

    async def run_forever(self) -> None:
        """Run poll loop until stop() is called."""

        while not self._stop_event.is_set():
            try:
                await self.poll_once()
            except Exception:  # noqa: BLE001
                LOGGER.exception("Reminder sweep failed")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval_seconds)
            except asyncio.TimeoutError:
                pass

    def stop(self) -> None:
        """Signal the loop to stop."""

        self._stop_event.set()
