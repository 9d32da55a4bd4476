"""Per-chat session state: processing guard, pending batch, idle timer, reply gate."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Iterator

from norel.models import InboundMessage

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class PendingBatch:
    """Unaddressed messages collected during one debounce window."""

    trigger: InboundMessage
    started_at: float
    count: int = 1
    task: asyncio.Task[None] | None = None


class ReplyGate:
    """Decides whether a passive result is delivered.

    Every flushed batch adds its message count to an accumulator. When the
    accumulator reaches the current threshold the gate fires, the threshold is
    subtracted (overflow carries over) and a new threshold is drawn. Thresholds
    are drawn uniformly around ``1 / chance`` messages, so in the long run about
    ``chance`` of the passive messages get a reply.
    """

    def __init__(self, chance: float, rng: random.Random | None = None) -> None:
        self._chance = chance
        self._rng = rng or random.Random()
        self._counter = 0.0
        self._threshold = self._draw()

    @property
    def counter(self) -> float:
        return self._counter

    @property
    def threshold(self) -> float:
        return self._threshold

    def _draw(self) -> float:
        if self._chance <= 0:
            return float("inf")
        mean = 1.0 / self._chance
        return self._rng.uniform(0.5 * mean, 1.5 * mean)

    def register(self, count: int) -> bool:
        self._counter += count
        if self._counter < self._threshold:
            return False
        self._counter -= self._threshold
        self._threshold = self._draw()
        return True


@dataclass
class ChatSession:
    """Process-local state for one chat; lost on restart."""

    chat_id: int
    reply_gate: ReplyGate
    batch: PendingBatch | None = None
    idle_task: asyncio.Task[None] | None = None
    _busy: bool = field(default=False, repr=False)

    @property
    def busy(self) -> bool:
        return self._busy

    def try_acquire(self) -> bool:
        """Mark the chat as being processed; False if a run is already in progress."""

        if self._busy:
            LOGGER.debug("[%s] Chat busy, skipping trigger", self.chat_id)
            return False
        self._busy = True
        return True

    def release(self) -> None:
        self._busy = False


class SessionRegistry:
    """Get-or-create store of chat sessions."""

    def __init__(self, reply_chance: float = 0.08, rng: random.Random | None = None) -> None:
        self._reply_chance = reply_chance
        self._rng = rng or random.Random()
        self._sessions: dict[int, ChatSession] = {}

    def get(self, chat_id: int) -> ChatSession:
        session = self._sessions.get(chat_id)
        if session is None:
            session = ChatSession(chat_id=chat_id, reply_gate=ReplyGate(self._reply_chance, self._rng))
            self._sessions[chat_id] = session
        return session

    def __contains__(self, chat_id: object) -> bool:
        return chat_id in self._sessions

    def __iter__(self) -> Iterator[ChatSession]:
        return iter(list(self._sessions.values()))

    def __len__(self) -> int:
        return len(self._sessions)
