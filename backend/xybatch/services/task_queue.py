"""In-process task queue with bounded concurrency and fixed inter-batch spacing.

Tasks are zero-argument coroutine functions that perform one generation end
to end and record their own failure. The queue drains its FIFO list in
batches of ``concurrency`` tasks: each batch is awaited to completion
(individual failures are logged, never propagated to siblings), then, if
more work remains, the queue sleeps ``batch_delay`` seconds before the next
batch. The delay is a fixed courtesy towards providers' implicit rate
limits, not a backoff.

One drain loop at most: ``enqueue`` only starts a loop when the queue was
idle; otherwise it just appends.

Usage::

    queue = TaskQueue(concurrency=2, batch_delay=2.0)
    queue.enqueue([job_a, job_b, job_c])
    await queue.join()
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable

logger = logging.getLogger(__name__)

Task = Callable[[], Awaitable[object]]
SleepFn = Callable[[float], Awaitable[object]]


@dataclass
class QueueStats:
    """Counters exposed for the status endpoint and tests."""
    pending: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0
    batches: int = 0
    is_draining: bool = False
    concurrency: int = 1
    batch_delay: float = 0.0


class TaskQueue:
    """Single-process FIFO queue drained in fixed-size concurrent batches."""

    def __init__(
        self,
        concurrency: int = 1,
        batch_delay: float = 2.0,
        sleep: SleepFn = asyncio.sleep,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if batch_delay < 0:
            raise ValueError("batch_delay must be >= 0")
        self.concurrency = concurrency
        self.batch_delay = batch_delay
        self._sleep = sleep
        self._pending: deque[Task] = deque()
        self._draining = False
        self._drain_task: asyncio.Task | None = None
        self._idle = asyncio.Event()
        self._idle.set()
        self._running = 0
        self._completed = 0
        self._failed = 0
        self._batches = 0

    # ── Public API ─────────────────────────────────────────────────────

    @property
    def is_draining(self) -> bool:
        return self._draining

    def enqueue(self, tasks: Iterable[Task]) -> int:
        """Append *tasks*; start the drain loop if the queue was idle.

        Must be called from inside a running event loop. Returns the number
        of tasks appended.
        """
        added = 0
        for task in tasks:
            self._pending.append(task)
            added += 1
        if not added:
            return 0

        if not self._draining:
            self._draining = True
            self._idle.clear()
            self._drain_task = asyncio.get_running_loop().create_task(
                self._drain(), name="task-queue-drain",
            )
        logger.info(
            "Queued %d task(s) (pending=%d, draining=%s)",
            added, len(self._pending), self._draining,
        )
        return added

    async def join(self) -> None:
        """Wait until every enqueued task has finished."""
        await self._idle.wait()

    def stats(self) -> QueueStats:
        return QueueStats(
            pending=len(self._pending),
            running=self._running,
            completed=self._completed,
            failed=self._failed,
            batches=self._batches,
            is_draining=self._draining,
            concurrency=self.concurrency,
            batch_delay=self.batch_delay,
        )

    async def shutdown(self) -> int:
        """Drop not-yet-started tasks and wait for the in-flight batch.

        Returns the number of dropped tasks.
        """
        dropped = len(self._pending)
        self._pending.clear()
        if self._drain_task is not None and not self._drain_task.done():
            await self._drain_task
        if dropped:
            logger.warning("Task queue shut down with %d task(s) never started", dropped)
        return dropped

    # ── Internal ───────────────────────────────────────────────────────

    def _next_batch(self) -> list[Task]:
        batch = []
        while self._pending and len(batch) < self.concurrency:
            batch.append(self._pending.popleft())
        return batch

    @staticmethod
    async def _invoke(task: Task) -> object:
        return await task()

    async def _run_batch(self, batch: list[Task]) -> None:
        self._running = len(batch)
        self._batches += 1
        try:
            results = await asyncio.gather(
                *(self._invoke(task) for task in batch), return_exceptions=True,
            )
        finally:
            self._running = 0

        for result in results:
            if isinstance(result, BaseException):
                self._failed += 1
                logger.error(
                    "Queued task raised %s: %s",
                    type(result).__name__, result, exc_info=result,
                )
            else:
                self._completed += 1

    async def _drain(self) -> None:
        try:
            while self._pending:
                batch = self._next_batch()
                logger.debug(
                    "Running batch %d of %d task(s), %d left",
                    self._batches + 1, len(batch), len(self._pending),
                )
                await self._run_batch(batch)
                if self._pending and self.batch_delay > 0:
                    await self._sleep(self.batch_delay)
        finally:
            self._draining = False
            self._drain_task = None
            self._idle.set()
