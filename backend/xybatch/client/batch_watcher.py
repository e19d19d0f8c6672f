"""Follow an XY batch to completion through the shared polling loop."""
from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

from xybatch.client.api_client import XYBatchClient
from xybatch.client.polling import PollingCoordinator, SubscriptionHandle
from xybatch.schemas.generation import BatchDescriptor, GenerationResponse
from xybatch.services.generation_lifecycle import GenerationStatus, TERMINAL_STATUSES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchProgress:
    total: int
    pending: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0
    missing: int = 0

    @property
    def finished(self) -> int:
        return self.completed + self.failed + self.missing

    @property
    def is_done(self) -> bool:
        return self.finished >= self.total

    @property
    def pct(self) -> float:
        return 100.0 if not self.total else round(100.0 * self.finished / self.total, 1)


ProgressCallback = Callable[[BatchProgress], Union[Awaitable[Any], Any]]


def summarize(batch: BatchDescriptor, generations: list[GenerationResponse]) -> BatchProgress:
    """Count the batch's jobs by status; rows that disappeared count as missing."""
    counts = {status: 0 for status in GenerationStatus}
    for generation in generations:
        counts[generation.status] += 1
    return BatchProgress(
        total=len(batch.jobs),
        pending=counts[GenerationStatus.PENDING],
        running=counts[GenerationStatus.RUNNING],
        completed=counts[GenerationStatus.COMPLETED],
        failed=counts[GenerationStatus.FAILED],
        missing=len(batch.jobs) - len(generations),
    )


class BatchWatcher:
    """Subscribe a batch refresh to the coordinator; unsubscribe once every job is terminal."""

    def __init__(
        self,
        client: XYBatchClient,
        coordinator: PollingCoordinator,
        batch: BatchDescriptor,
        on_progress: ProgressCallback | None = None,
    ):
        self.client = client
        self.coordinator = coordinator
        self.batch = batch
        self.on_progress = on_progress
        self.generations: dict[str, GenerationResponse] = {}
        self.progress = BatchProgress(total=len(batch.jobs))
        self._handle: SubscriptionHandle | None = None
        self._done = asyncio.Event()

    def start(self) -> None:
        if self._handle is None and not self._done.is_set():
            self._handle = self.coordinator.subscribe(self.refresh)

    def stop(self) -> None:
        if self._handle is not None:
            self.coordinator.unsubscribe(self._handle)
            self._handle = None

    async def wait(self) -> BatchProgress:
        await self._done.wait()
        return self.progress

    async def refresh(self) -> None:
        # Only ids not yet terminal need another round trip
        ids = [
            job.generation_id for job in self.batch.jobs
            if job.generation_id not in self.generations
            or self.generations[job.generation_id].status not in TERMINAL_STATUSES
        ]
        for generation in await self.client.lookup_generations(ids):
            self.generations[generation.id] = generation

        known = [self.generations[j.generation_id] for j in self.batch.jobs if j.generation_id in self.generations]
        self.progress = summarize(self.batch, known)
        logger.debug(
            "Batch %s: %d/%d finished (%d failed)",
            self.batch.batch_id, self.progress.finished, self.progress.total, self.progress.failed,
        )

        if self.on_progress is not None:
            result = self.on_progress(self.progress)
            if inspect.isawaitable(result):
                await result

        if self.progress.is_done:
            self.stop()
            self._done.set()
            logger.info("Batch %s finished", self.batch.batch_id)
