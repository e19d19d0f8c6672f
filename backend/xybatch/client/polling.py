"""Shared polling loop for clients watching generation state.

One :class:`PollingCoordinator` per client process. Any number of consumers
subscribe a refresh callback; the coordinator runs a single loop while at
least one subscriber exists and stops it when the last one leaves:

  - a refresh runs immediately when the loop starts, then every ``interval``
    seconds, awaiting every callback before scheduling the next tick;
  - refreshes never overlap, and two refresh starts are never closer than
    ``min_interval`` seconds whatever triggered them (a trigger arriving too
    soon is dropped);
  - manual refreshes are debounced: a burst of triggers yields one refresh
    ``debounce`` seconds after the last trigger of the burst.

Callbacks may be plain functions or coroutine functions. A failing callback
is logged and never affects the others.

The timing rules live in :class:`ManualTriggerDebouncer` and
:class:`MinIntervalGuard`, which take explicit timestamps so they can be
exercised without a clock.
"""
from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

logger = logging.getLogger(__name__)

RefreshCallback = Callable[[], Union[Awaitable[Any], Any]]
Clock = Callable[[], float]
SleepFn = Callable[[float], Awaitable[Any]]


# ── Pure timing helpers ────────────────────────────────────────────────

class ManualTriggerDebouncer:
    """Trailing-edge debounce whose only state is the time of the last call."""

    def __init__(self, delay: float = 0.5):
        if delay < 0:
            raise ValueError("delay must be >= 0")
        self.delay = delay
        self.last_call: float | None = None

    def record(self, now: float) -> None:
        self.last_call = now

    def fire_at(self) -> float | None:
        if self.last_call is None:
            return None
        return self.last_call + self.delay

    def remaining(self, now: float) -> float:
        """Seconds until the debounced call is due (0 when due or idle)."""
        fire_at = self.fire_at()
        if fire_at is None:
            return 0.0
        return max(0.0, fire_at - now)

    def is_due(self, now: float) -> bool:
        return self.last_call is not None and now >= self.last_call + self.delay

    def reset(self) -> None:
        self.last_call = None


class MinIntervalGuard:
    """Admit an event only if the previous admitted one is at least ``min_interval`` old."""

    def __init__(self, min_interval: float = 2.0):
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        self.min_interval = min_interval
        self.last_start: float | None = None

    def allows(self, now: float) -> bool:
        return self.last_start is None or now - self.last_start >= self.min_interval

    def try_acquire(self, now: float) -> bool:
        if not self.allows(now):
            return False
        self.last_start = now
        return True


# ── Coordinator ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SubscriptionHandle:
    id: int


@dataclass(frozen=True)
class PollingStatus:
    is_active: bool
    subscriber_count: int
    last_refresh_at: float | None


class PollingCoordinator:
    """Single cooperative refresh loop shared by every subscriber.

    Must be used from inside a running event loop.
    """

    def __init__(
        self,
        interval: float = 3.0,
        min_interval: float = 2.0,
        debounce: float = 0.5,
        clock: Clock = time.monotonic,
        sleep: SleepFn = asyncio.sleep,
    ):
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._guard = MinIntervalGuard(min_interval)
        self._debouncer = ManualTriggerDebouncer(debounce)
        self._ids = itertools.count(1)
        self._subscribers: dict[int, RefreshCallback] = {}
        self._active = False
        self._refreshing = False
        self._loop_task: asyncio.Task | None = None
        self._debounce_task: asyncio.Task | None = None
        self._last_refresh_at: float | None = None

    @classmethod
    def from_settings(cls, settings) -> "PollingCoordinator":
        return cls(
            interval=settings.POLL_INTERVAL_SECONDS,
            min_interval=settings.POLL_MIN_INTERVAL_SECONDS,
            debounce=settings.POLL_DEBOUNCE_SECONDS,
        )

    # ── Public API ─────────────────────────────────────────────────────

    def subscribe(self, callback: RefreshCallback) -> SubscriptionHandle:
        handle = SubscriptionHandle(next(self._ids))
        self._subscribers[handle.id] = callback
        if len(self._subscribers) == 1:
            self._start()
        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Remove a subscriber; unknown or already-removed handles are ignored."""
        if self._subscribers.pop(handle.id, None) is None:
            return
        if not self._subscribers:
            self._stop()

    def trigger_manual_refresh(self) -> asyncio.Task | None:
        """Request a refresh ``debounce`` seconds from now.

        Returns the pending debounced refresh, or None when nobody is
        subscribed.
        """
        if not self._subscribers:
            return None
        self._debouncer.record(self._clock())
        if self._debounce_task is None or self._debounce_task.done():
            self._debounce_task = asyncio.get_running_loop().create_task(
                self._run_debounced(), name="polling-manual-refresh",
            )
        return self._debounce_task

    def get_status(self) -> PollingStatus:
        return PollingStatus(
            is_active=self._active,
            subscriber_count=len(self._subscribers),
            last_refresh_at=self._last_refresh_at,
        )

    async def aclose(self) -> None:
        """Drop every subscriber and wait for background tasks to finish."""
        tasks = [t for t in (self._loop_task, self._debounce_task) if t is not None]
        self._subscribers.clear()
        self._stop()
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ── Internal ───────────────────────────────────────────────────────

    def _start(self) -> None:
        self._active = True
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.get_running_loop().create_task(
                self._run(), name="polling-loop",
            )
        logger.debug("Polling started")

    def _stop(self) -> None:
        self._active = False
        # A loop in the middle of a refresh exits on its own once it returns
        if self._loop_task is not None and not self._refreshing:
            self._loop_task.cancel()
            self._loop_task = None
        self._debouncer.reset()
        logger.debug("Polling stopped")

    async def _run(self) -> None:
        me = asyncio.current_task()
        try:
            while self._active:
                await self.refresh_now(source="interval")
                if not self._active:
                    break
                await self._sleep(self.interval)
        finally:
            if self._loop_task is me:
                self._loop_task = None

    async def _run_debounced(self) -> None:
        while True:
            remaining = self._debouncer.remaining(self._clock())
            if remaining <= 0:
                break
            await self._sleep(remaining)
        if self._debouncer.last_call is None:
            return
        self._debouncer.reset()
        await self.refresh_now(source="manual")

    async def refresh_now(self, source: str = "manual") -> bool:
        """Run every callback once, unless a refresh is in flight or too recent.

        Returns True when the refresh ran.
        """
        if self._refreshing or not self._subscribers:
            return False
        now = self._clock()
        if not self._guard.try_acquire(now):
            logger.debug("Dropped %s refresh: within minimum interval", source)
            return False

        self._refreshing = True
        self._last_refresh_at = now
        try:
            callbacks = list(self._subscribers.values())
            results = await asyncio.gather(
                *(self._invoke(cb) for cb in callbacks), return_exceptions=True,
            )
        finally:
            self._refreshing = False

        for result in results:
            if isinstance(result, Exception):
                logger.warning("Refresh callback failed: %s", result, exc_info=result)
        return True

    @staticmethod
    async def _invoke(callback: RefreshCallback) -> Any:
        result = callback()
        if inspect.isawaitable(result):
            result = await result
        return result
