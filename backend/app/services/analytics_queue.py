"""
Deduplicating, time-batched aggregation queue.

Tracking calls mark a post dirty; a periodic tick drains up to a batch of dirty
posts and recomputes them with bounded concurrency. The dirty set is plain
in-process state: each instance keeps its own, and redundant recomputation
across instances is harmless because aggregation fully overwrites its row.
"""
from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from app.core.config import settings

logger = logging.getLogger(__name__)

Processor = Callable[[int], Awaitable[Any]]


@dataclass
class BatchResult:
    processed: list[int] = field(default_factory=list)
    failed: dict[int, str] = field(default_factory=dict)
    skipped: bool = False

    @property
    def attempted(self) -> int:
        return len(self.processed) + len(self.failed)


class AnalyticsQueue:
    """Dirty set of post ids plus the batch loop that drains it."""

    def __init__(
        self,
        processor: Processor,
        *,
        interval_seconds: float = 30.0,
        max_batch_size: int = 50,
        concurrency: int = 5,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.processor = processor
        self.interval_seconds = max(0.0, float(interval_seconds))
        self.max_batch_size = max(1, int(max_batch_size))
        self.concurrency = max(1, int(concurrency))
        self._clock = clock
        self._sleep = sleep

        # post_id -> (enqueue sequence, first queued at); insertion order is flush order.
        self._dirty: dict[int, tuple[int, float]] = {}
        self._seq = 0
        self._lock = threading.Lock()

        self.processing = False
        self.running = False
        self._task: Optional[asyncio.Task] = None
        self._in_tick = False

        self.batches_run = 0
        self.total_processed = 0
        self.total_failed = 0
        self.last_batch_at: Optional[float] = None
        self.last_error: Optional[str] = None

    @classmethod
    def from_settings(cls, processor: Processor) -> "AnalyticsQueue":
        return cls(
            processor,
            interval_seconds=float(getattr(settings, "ANALYTICS_BATCH_INTERVAL_SECONDS", 30.0) or 30.0),
            max_batch_size=int(getattr(settings, "ANALYTICS_MAX_BATCH_SIZE", 50) or 50),
            concurrency=int(getattr(settings, "ANALYTICS_BATCH_CONCURRENCY", 5) or 5),
        )

    def enqueue(self, post_id: int) -> None:
        """Mark a post dirty. Never blocks and never raises for a valid id."""
        post_id = int(post_id)
        with self._lock:
            self._seq += 1
            previous = self._dirty.get(post_id)
            queued_at = previous[1] if previous else self._clock()
            # A fresh sequence number marks a post touched again mid-flush.
            self._dirty[post_id] = (self._seq, queued_at)
        logger.debug("Queued analytics recompute for post %s", post_id)

    def size(self) -> int:
        with self._lock:
            return len(self._dirty)

    def pending(self) -> list[int]:
        with self._lock:
            return list(self._dirty.keys())

    def _take_batch(self) -> list[tuple[int, int]]:
        with self._lock:
            items = list(self._dirty.items())[: self.max_batch_size]
        return [(post_id, seq) for post_id, (seq, _) in items]

    def _complete(self, post_id: int, seq: int) -> None:
        with self._lock:
            current = self._dirty.get(post_id)
            # A newer enqueue during processing keeps the post dirty for the next tick.
            if current is not None and current[0] == seq:
                del self._dirty[post_id]

    async def _process_one(self, post_id: int, seq: int) -> None:
        # Cancellation is not caught here, so an interrupted recompute stays dirty.
        try:
            await self.processor(post_id)
        except Exception:
            self._complete(post_id, seq)
            raise
        self._complete(post_id, seq)

    async def process_batch(self) -> BatchResult:
        """Drain up to max_batch_size dirty posts. A flush already in progress makes this a no-op."""
        if self.processing:
            return BatchResult(skipped=True)

        batch = self._take_batch()
        if not batch:
            return BatchResult()

        self.processing = True
        result = BatchResult()
        started = self._clock()
        try:
            for start in range(0, len(batch), self.concurrency):
                chunk = batch[start:start + self.concurrency]
                outcomes = await asyncio.gather(
                    *(self._process_one(post_id, seq) for post_id, seq in chunk),
                    return_exceptions=True,
                )
                for (post_id, _), outcome in zip(chunk, outcomes):
                    if isinstance(outcome, BaseException):
                        result.failed[post_id] = str(outcome) or outcome.__class__.__name__
                        logger.error("Failed to update analytics for post %s: %s", post_id, outcome)
                    else:
                        result.processed.append(post_id)
        finally:
            self.processing = False

        self.batches_run += 1
        self.total_processed += len(result.processed)
        self.total_failed += len(result.failed)
        self.last_batch_at = self._clock()
        if result.failed:
            self.last_error = next(iter(result.failed.values()))

        logger.info(
            "Processed analytics batch: %s ok, %s failed, %s remaining (%.2fs)",
            len(result.processed),
            len(result.failed),
            self.size(),
            self.last_batch_at - started,
        )
        return result

    async def start(self) -> None:
        if self.running:
            return
        self.running = True
        self._task = asyncio.create_task(self._run_periodic())
        logger.info(
            "Analytics queue started (interval=%ss batch=%s concurrency=%s)",
            self.interval_seconds,
            self.max_batch_size,
            self.concurrency,
        )

    async def stop(self, *, flush: bool = True) -> None:
        """Stop the timer, then synchronously flush whatever is still dirty.

        A batch already running is awaited to completion rather than cancelled.
        """
        self.running = False
        if self._task is not None:
            if not self._in_tick:
                self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if flush:
            await self.flush()
        logger.info("Analytics queue stopped")

    async def flush(self) -> int:
        """Process batches until the dirty set is empty or a batch makes no progress."""
        flushed = 0
        # Enough rounds for everything dirty now; posts re-marked meanwhile are not chased forever.
        rounds_left = self.size() // self.max_batch_size + 2
        while self.size() > 0 and rounds_left > 0:
            rounds_left -= 1
            result = await self.process_batch()
            if result.skipped or result.attempted == 0:
                break
            flushed += result.attempted
        if flushed:
            logger.info("Flushed %s pending analytics updates", flushed)
        return flushed

    async def _run_periodic(self) -> None:
        while self.running:
            await self._sleep(self.interval_seconds)
            if not self.running:
                break
            self._in_tick = True
            try:
                await self.process_batch()
            except Exception as e:
                logger.error("Error in analytics batch: %s", e)
            finally:
                self._in_tick = False

    def get_status(self) -> dict[str, Any]:
        with self._lock:
            queued = list(self._dirty.values())
            size = len(self._dirty)
        oldest_age = None
        if queued:
            oldest_age = round(max(0.0, self._clock() - min(queued_at for _, queued_at in queued)), 3)
        return {
            "running": self.running,
            "processing": self.processing,
            "queue_size": size,
            "oldest_pending_seconds": oldest_age,
            "interval_seconds": self.interval_seconds,
            "max_batch_size": self.max_batch_size,
            "concurrency": self.concurrency,
            "batches_run": self.batches_run,
            "total_processed": self.total_processed,
            "total_failed": self.total_failed,
            "last_error": self.last_error,
        }
