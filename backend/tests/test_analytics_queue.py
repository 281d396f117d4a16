from __future__ import annotations

import asyncio

from app.services import analytics_queue
from app.services.analytics_queue import AnalyticsQueue


class _FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


class _Processor:
    def __init__(self, *, fail_for=(), delay: float = 0.0):
        self.calls: list[int] = []
        self.completed: list[int] = []
        self.fail_for = set(fail_for)
        self.delay = delay
        self.active = 0
        self.max_active = 0

    async def __call__(self, post_id: int):
        self.calls.append(post_id)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
            if post_id in self.fail_for:
                raise RuntimeError(f"boom {post_id}")
            self.completed.append(post_id)
            return {"post_id": post_id}
        finally:
            self.active -= 1


def test_enqueue_collapses_duplicates_into_one_unit_of_work():
    processor = _Processor()
    queue = AnalyticsQueue(processor, clock=_FakeClock())

    for post_id in (7, 7, 3, 7, 3):
        queue.enqueue(post_id)
    assert queue.size() == 2
    assert queue.pending() == [7, 3]

    result = asyncio.run(queue.process_batch())

    assert sorted(processor.calls) == [3, 7]
    assert result.processed == [7, 3]
    assert queue.size() == 0


def test_batch_is_capped_and_processed_in_concurrency_chunks():
    processor = _Processor(delay=0.001)
    queue = AnalyticsQueue(processor, max_batch_size=50, concurrency=5, clock=_FakeClock())
    for post_id in range(1, 121):
        queue.enqueue(post_id)

    result = asyncio.run(queue.process_batch())

    assert len(result.processed) == 50
    assert processor.calls == list(range(1, 51))
    assert processor.max_active <= 5
    assert queue.size() == 70
    assert queue.pending()[0] == 51


def test_failures_are_isolated_and_removed_from_the_dirty_set(caplog):
    processor = _Processor(fail_for={2})
    queue = AnalyticsQueue(processor, clock=_FakeClock())
    for post_id in (1, 2, 3):
        queue.enqueue(post_id)

    with caplog.at_level("ERROR", logger=analytics_queue.__name__):
        result = asyncio.run(queue.process_batch())

    assert result.processed == [1, 3]
    assert list(result.failed) == [2]
    assert queue.size() == 0
    assert "post 2" in caplog.text
    status = queue.get_status()
    assert status["total_failed"] == 1
    assert status["total_processed"] == 2
    assert status["last_error"] == "boom 2"


def test_enqueue_during_processing_keeps_post_dirty_for_next_tick():
    queue: AnalyticsQueue

    async def processor(post_id: int):
        # A tracking call lands for the same post while it is being recomputed.
        queue.enqueue(post_id)

    queue = AnalyticsQueue(processor, clock=_FakeClock())
    queue.enqueue(9)

    result = asyncio.run(queue.process_batch())

    assert result.processed == [9]
    assert queue.pending() == [9]


def test_tick_is_a_noop_while_a_flush_is_in_progress():
    processor = _Processor()
    queue = AnalyticsQueue(processor, clock=_FakeClock())
    queue.enqueue(1)
    queue.processing = True

    result = asyncio.run(queue.process_batch())

    assert result.skipped is True
    assert processor.calls == []
    assert queue.size() == 1


def test_empty_queue_batch_does_nothing():
    processor = _Processor()
    queue = AnalyticsQueue(processor, clock=_FakeClock())

    result = asyncio.run(queue.process_batch())

    assert result.attempted == 0
    assert queue.get_status()["batches_run"] == 0


def test_periodic_loop_processes_on_each_tick_and_stop_flushes_remaining():
    processor = _Processor()
    ticks: list[float] = []

    async def _scenario():
        tick_gate = asyncio.Event()

        async def fake_sleep(seconds: float):
            ticks.append(seconds)
            await tick_gate.wait()
            tick_gate.clear()

        queue = AnalyticsQueue(
            processor,
            interval_seconds=30,
            max_batch_size=2,
            clock=_FakeClock(),
            sleep=fake_sleep,
        )
        await queue.start()
        for post_id in (1, 2, 3, 4, 5):
            queue.enqueue(post_id)

        # Let the loop reach its first sleep, then fire one tick.
        await asyncio.sleep(0)
        tick_gate.set()
        for _ in range(50):
            if queue.size() <= 3 and not queue.processing:
                break
            await asyncio.sleep(0)
        after_tick = queue.pending()

        await queue.stop(flush=True)
        return queue, after_tick

    queue, after_tick = asyncio.run(_scenario())

    assert ticks and ticks[0] == 30
    assert after_tick == [3, 4, 5]
    assert sorted(processor.calls) == [1, 2, 3, 4, 5]
    assert queue.size() == 0
    assert queue.running is False


def test_stop_waits_for_the_batch_already_in_flight():
    processor = _Processor(delay=0.05)

    async def _scenario():
        tick_gate = asyncio.Event()

        async def fake_sleep(seconds: float):
            await tick_gate.wait()
            tick_gate.clear()

        queue = AnalyticsQueue(processor, clock=_FakeClock(), sleep=fake_sleep)
        queue.enqueue(7)
        await queue.start()

        await asyncio.sleep(0)
        tick_gate.set()
        for _ in range(50):
            if processor.calls:
                break
            await asyncio.sleep(0)
        assert queue.processing is True

        await queue.stop(flush=True)
        return queue

    queue = asyncio.run(_scenario())

    assert processor.completed == [7]
    assert processor.calls == [7]
    assert queue.size() == 0
    assert queue.get_status()["total_processed"] == 1


def test_cancelled_batch_leaves_posts_dirty():
    started = []

    async def processor(post_id: int):
        started.append(post_id)
        await asyncio.Event().wait()

    async def _scenario():
        queue = AnalyticsQueue(processor, clock=_FakeClock())
        queue.enqueue(7)
        batch = asyncio.create_task(queue.process_batch())
        for _ in range(50):
            if started:
                break
            await asyncio.sleep(0)
        batch.cancel()
        try:
            await batch
        except asyncio.CancelledError:
            pass
        return queue

    queue = asyncio.run(_scenario())

    assert started == [7]
    assert queue.pending() == [7]
    assert queue.processing is False

def test_stop_without_flush_leaves_dirty_posts():
    processor = _Processor()

    async def _scenario():
        queue = AnalyticsQueue(processor, clock=_FakeClock())
        await queue.start()
        queue.enqueue(4)
        await queue.stop(flush=False)
        return queue

    queue = asyncio.run(_scenario())
    assert processor.calls == []
    assert queue.pending() == [4]


def test_status_reports_oldest_pending_age():
    clock = _FakeClock(start=100.0)
    queue = AnalyticsQueue(_Processor(), clock=clock)
    queue.enqueue(1)
    clock.now = 112.5
    queue.enqueue(2)
    queue.enqueue(1)

    status = queue.get_status()

    assert status["queue_size"] == 2
    assert status["oldest_pending_seconds"] == 12.5
    assert status["running"] is False
    assert status["processing"] is False


def test_from_settings_reads_queue_knobs(monkeypatch):
    monkeypatch.setattr(analytics_queue.settings, "ANALYTICS_BATCH_INTERVAL_SECONDS", 5.0, raising=False)
    monkeypatch.setattr(analytics_queue.settings, "ANALYTICS_MAX_BATCH_SIZE", 10, raising=False)
    monkeypatch.setattr(analytics_queue.settings, "ANALYTICS_BATCH_CONCURRENCY", 2, raising=False)

    queue = AnalyticsQueue.from_settings(_Processor())

    assert queue.interval_seconds == 5.0
    assert queue.max_batch_size == 10
    assert queue.concurrency == 2
