"""Tests for the shared polling coordinator and its timing helpers."""
import asyncio

import pytest

from xybatch.client.polling import (
    ManualTriggerDebouncer,
    MinIntervalGuard,
    PollingCoordinator,
    SubscriptionHandle,
)


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class ManualSleep:
    """Sleep that blocks until the test releases it; releasing advances the clock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.waiting: list[tuple[float, asyncio.Future]] = []

    async def __call__(self, delay: float) -> None:
        fut = asyncio.get_running_loop().create_future()
        self.waiting.append((delay, fut))
        await fut

    def pending_delays(self) -> list[float]:
        return [d for d, f in self.waiting if not f.done()]

    def release(self, delay: float, advance: bool = True) -> None:
        for i, (d, fut) in enumerate(self.waiting):
            if d == delay and not fut.done():
                self.waiting.pop(i)
                if advance:
                    self.clock.now += d
                fut.set_result(None)
                return
        raise AssertionError(f"nobody is sleeping {delay}s")


async def settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeper(clock):
    return ManualSleep(clock)


@pytest.fixture
def coordinator(clock, sleeper):
    return PollingCoordinator(interval=3.0, min_interval=2.0, debounce=0.5, clock=clock, sleep=sleeper)


# ── Pure helpers ───────────────────────────────────────────────────────

class TestManualTriggerDebouncer:
    def test_due_after_delay_from_last_call(self):
        d = ManualTriggerDebouncer(0.5)
        assert not d.is_due(10.0)
        d.record(1.0)
        assert not d.is_due(1.25)
        assert d.is_due(1.5)
        assert d.remaining(1.25) == 0.25

    def test_later_call_pushes_deadline(self):
        d = ManualTriggerDebouncer(0.5)
        d.record(1.0)
        d.record(1.25)
        assert d.fire_at() == 1.75
        assert not d.is_due(1.5)
        assert d.is_due(1.75)

    def test_reset(self):
        d = ManualTriggerDebouncer(0.5)
        d.record(1.0)
        d.reset()
        assert d.fire_at() is None
        assert d.remaining(0.0) == 0.0


class TestMinIntervalGuard:
    def test_drops_events_too_close(self):
        g = MinIntervalGuard(2.0)
        assert g.try_acquire(0.0)
        assert not g.try_acquire(1.5)
        assert not g.allows(1.999)
        assert g.try_acquire(2.0)
        assert g.last_start == 2.0

    def test_rejected_event_does_not_move_window(self):
        g = MinIntervalGuard(2.0)
        g.try_acquire(0.0)
        g.try_acquire(1.0)
        assert g.try_acquire(2.0)


# ── Coordinator ────────────────────────────────────────────────────────

class TestLoopLifecycle:
    @pytest.mark.asyncio
    async def test_first_subscriber_starts_loop_with_immediate_refresh(self, coordinator, sleeper):
        calls = []
        coordinator.subscribe(lambda: calls.append("a"))
        await settle()
        assert calls == ["a"]
        status = coordinator.get_status()
        assert status.is_active
        assert status.subscriber_count == 1
        assert status.last_refresh_at == 0.0
        assert sleeper.pending_delays() == [3.0]

        sleeper.release(3.0)
        await settle()
        assert calls == ["a", "a"]
        assert coordinator.get_status().last_refresh_at == 3.0
        await coordinator.aclose()

    @pytest.mark.asyncio
    async def test_single_loop_for_many_subscribers(self, coordinator, sleeper):
        calls = []
        coordinator.subscribe(lambda: calls.append("a"))
        coordinator.subscribe(lambda: calls.append("b"))
        coordinator.subscribe(lambda: calls.append("c"))
        await settle()
        assert sorted(calls) == ["a", "b", "c"]
        assert sleeper.pending_delays() == [3.0]
        await coordinator.aclose()

    @pytest.mark.asyncio
    async def test_last_unsubscribe_stops_loop(self, coordinator, sleeper):
        a = coordinator.subscribe(lambda: None)
        b = coordinator.subscribe(lambda: None)
        await settle()

        coordinator.unsubscribe(a)
        assert coordinator.get_status().is_active

        coordinator.unsubscribe(b)
        await settle()
        status = coordinator.get_status()
        assert not status.is_active
        assert status.subscriber_count == 0
        assert sleeper.pending_delays() == []

    @pytest.mark.asyncio
    async def test_unknown_handle_ignored(self, coordinator):
        coordinator.subscribe(lambda: None)
        await settle()
        coordinator.unsubscribe(SubscriptionHandle(999))
        assert coordinator.get_status().subscriber_count == 1
        await coordinator.aclose()

    @pytest.mark.asyncio
    async def test_resubscribe_restarts(self, coordinator, clock):
        calls = []
        h = coordinator.subscribe(lambda: calls.append(1))
        await settle()
        coordinator.unsubscribe(h)
        await settle()

        clock.now = 10.0
        coordinator.subscribe(lambda: calls.append(2))
        await settle()
        assert calls == [1, 2]
        assert coordinator.get_status().is_active
        await coordinator.aclose()

    @pytest.mark.asyncio
    async def test_unsubscribe_from_inside_callback(self, coordinator, sleeper):
        handle = {}

        def once():
            coordinator.unsubscribe(handle["h"])

        handle["h"] = coordinator.subscribe(once)
        await settle()
        assert not coordinator.get_status().is_active
        assert sleeper.pending_delays() == []
        assert coordinator._loop_task is None


class TestRefresh:
    @pytest.mark.asyncio
    async def test_callback_failures_isolated(self, coordinator):
        calls = []

        async def async_ok():
            calls.append("async")

        def broken():
            raise RuntimeError("boom")

        async def async_broken():
            raise ValueError("also boom")

        coordinator.subscribe(broken)
        coordinator.subscribe(async_ok)
        coordinator.subscribe(async_broken)
        coordinator.subscribe(lambda: calls.append("sync"))
        await settle()
        assert sorted(calls) == ["async", "sync"]
        await coordinator.aclose()

    @pytest.mark.asyncio
    async def test_min_interval_drops_early_refresh(self, coordinator, clock):
        calls = []
        coordinator.subscribe(lambda: calls.append(clock.now))
        await settle()

        clock.now = 1.0
        assert await coordinator.refresh_now() is False
        clock.now = 2.0
        assert await coordinator.refresh_now() is True
        assert calls == [0.0, 2.0]
        await coordinator.aclose()

    @pytest.mark.asyncio
    async def test_no_reentry_while_refreshing(self, coordinator, clock):
        gate = asyncio.Event()
        started = []

        async def slow():
            started.append(clock.now)
            await gate.wait()

        coordinator.subscribe(slow)
        await settle()
        assert started == [0.0]

        clock.now = 5.0
        assert await coordinator.refresh_now() is False
        gate.set()
        await settle()
        assert started == [0.0]
        await coordinator.aclose()


class TestManualTrigger:
    @pytest.mark.asyncio
    async def test_no_subscribers(self, coordinator):
        assert coordinator.trigger_manual_refresh() is None

    @pytest.mark.asyncio
    async def test_burst_collapses_into_one_refresh(self, coordinator, clock, sleeper):
        calls = []
        coordinator.subscribe(lambda: calls.append(clock.now))
        await settle()
        assert calls == [0.0]

        clock.now = 5.0
        first = coordinator.trigger_manual_refresh()
        await settle()
        clock.now = 5.25
        assert coordinator.trigger_manual_refresh() is first
        clock.now = 5.5
        assert coordinator.trigger_manual_refresh() is first

        # the first wait ends at 5.5 but the burst's last call moved the deadline to 6.0
        sleeper.release(0.5, advance=False)
        await settle()
        assert calls == [0.0]
        sleeper.release(0.5)
        await first
        assert calls == [0.0, 6.0]
        await coordinator.aclose()

    @pytest.mark.asyncio
    async def test_manual_refresh_inside_min_interval_is_dropped(self, coordinator, clock, sleeper):
        calls = []
        coordinator.subscribe(lambda: calls.append(clock.now))
        await settle()

        clock.now = 0.25
        task = coordinator.trigger_manual_refresh()
        await settle()
        sleeper.release(0.5)
        await task
        assert calls == [0.0]
        await coordinator.aclose()


class TestConstruction:
    def test_from_settings(self):
        from xybatch.config import Settings

        c = PollingCoordinator.from_settings(Settings(POLL_INTERVAL_SECONDS=5.0))
        assert c.interval == 5.0

    def test_rejects_bad_interval(self):
        with pytest.raises(ValueError):
            PollingCoordinator(interval=0)
