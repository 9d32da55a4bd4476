import asyncio
import random
from datetime import datetime, timezone

import pytest

from norel.models import InboundMessage
from norel.sessions import PendingBatch, SessionRegistry
from norel.triggers import IdleWakeScheduler, PassiveBatchScheduler


def _msg(chat_id: int, text: str, sender_id: int = 10) -> InboundMessage:
    return InboundMessage(chat_id=chat_id, sender_id=sender_id, text=text, timestamp=datetime.now(timezone.utc))


class Recorder:
    def __init__(self) -> None:
        self.calls: list[tuple] = []

    async def __call__(self, *args) -> None:  # noqa: ANN002
        self.calls.append(args)


@pytest.mark.asyncio
async def test_batch_flushes_once_with_count_and_last_trigger():
    sessions = SessionRegistry()
    recorder = Recorder()
    batcher = PassiveBatchScheduler(sessions, recorder, window_seconds=0.05)

    batcher.add(_msg(1, "a"))
    batcher.add(_msg(1, "b"))
    batcher.add(_msg(1, "c", sender_id=11))
    assert batcher.pending(1).count == 3

    await asyncio.sleep(0.15)

    assert len(recorder.calls) == 1
    chat_id, batch = recorder.calls[0]
    assert chat_id == 1
    assert isinstance(batch, PendingBatch)
    assert batch.count == 3
    assert batch.trigger.text == "c"
    assert batch.trigger.sender_id == 11
    assert batcher.pending(1) is None


@pytest.mark.asyncio
async def test_window_is_not_extended_by_later_messages():
    sessions = SessionRegistry()
    recorder = Recorder()
    batcher = PassiveBatchScheduler(sessions, recorder, window_seconds=0.1)

    batcher.add(_msg(1, "a"))
    await asyncio.sleep(0.06)
    batcher.add(_msg(1, "b"))
    await asyncio.sleep(0.08)

    assert len(recorder.calls) == 1
    assert recorder.calls[0][1].count == 2


@pytest.mark.asyncio
async def test_batches_are_per_chat():
    sessions = SessionRegistry()
    recorder = Recorder()
    batcher = PassiveBatchScheduler(sessions, recorder, window_seconds=0.05)

    batcher.add(_msg(1, "a"))
    batcher.add(_msg(2, "b"))
    await asyncio.sleep(0.15)

    assert sorted(call[0] for call in recorder.calls) == [1, 2]


@pytest.mark.asyncio
async def test_cancel_prevents_flush():
    sessions = SessionRegistry()
    recorder = Recorder()
    batcher = PassiveBatchScheduler(sessions, recorder, window_seconds=0.05)

    batcher.add(_msg(1, "a"))
    assert batcher.cancel(1) is True
    assert batcher.cancel(1) is False
    await asyncio.sleep(0.1)

    assert recorder.calls == []


@pytest.mark.asyncio
async def test_new_batch_after_flush():
    sessions = SessionRegistry()
    recorder = Recorder()
    batcher = PassiveBatchScheduler(sessions, recorder, window_seconds=0.03)

    batcher.add(_msg(1, "a"))
    await asyncio.sleep(0.08)
    batcher.add(_msg(1, "b"))
    await asyncio.sleep(0.08)

    assert [call[1].count for call in recorder.calls] == [1, 1]


@pytest.mark.asyncio
async def test_handler_errors_are_contained():
    sessions = SessionRegistry()

    async def failing(chat_id: int, batch: PendingBatch) -> None:
        raise RuntimeError("boom")

    batcher = PassiveBatchScheduler(sessions, failing, window_seconds=0.02)
    batcher.add(_msg(1, "a"))
    await asyncio.sleep(0.06)

    assert batcher.pending(1) is None


@pytest.mark.asyncio
async def test_idle_wake_fires_after_delay():
    sessions = SessionRegistry()
    recorder = Recorder()
    idle = IdleWakeScheduler(sessions, recorder, min_seconds=0.03, jitter_seconds=0.0)

    delay = idle.reset(1)
    assert delay == pytest.approx(0.03)
    await asyncio.sleep(0.1)

    assert recorder.calls == [(1,)]
    assert sessions.get(1).idle_task is None


@pytest.mark.asyncio
async def test_idle_reset_replaces_timer_without_double_fire():
    sessions = SessionRegistry()
    recorder = Recorder()
    idle = IdleWakeScheduler(sessions, recorder, min_seconds=0.06, jitter_seconds=0.0)

    idle.reset(1)
    await asyncio.sleep(0.04)
    idle.reset(1)
    await asyncio.sleep(0.04)
    assert recorder.calls == []

    await asyncio.sleep(0.06)
    assert recorder.calls == [(1,)]


@pytest.mark.asyncio
async def test_idle_delay_is_within_jitter_range():
    sessions = SessionRegistry()
    idle = IdleWakeScheduler(sessions, Recorder(), min_seconds=100, jitter_seconds=50, rng=random.Random(1))

    delays = [idle.reset(1) for _ in range(20)]
    idle.shutdown()

    assert all(100 <= d <= 150 for d in delays)
    assert sessions.get(1).idle_task is None


@pytest.mark.asyncio
async def test_shutdown_cancels_everything():
    sessions = SessionRegistry()
    recorder = Recorder()
    batcher = PassiveBatchScheduler(sessions, recorder, window_seconds=0.03)
    idle = IdleWakeScheduler(sessions, recorder, min_seconds=0.03, jitter_seconds=0.0)

    batcher.add(_msg(1, "a"))
    idle.reset(2)
    batcher.shutdown()
    idle.shutdown()
    await asyncio.sleep(0.08)

    assert recorder.calls == []
