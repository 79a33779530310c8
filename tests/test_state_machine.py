"""
Unit tests for the lifecycle state machine, timers, health and latency helpers.
"""

import asyncio

import pytest

from interview_coach.core.health import TickHealth
from interview_coach.core.latency import LatencyTracer
from interview_coach.core.state_machine import LifecycleState, LifecycleStateMachine
from interview_coach.core.timers import AsyncioScheduler


class TestLifecycleStateMachine:
    def test_full_cycle(self):
        seen = []
        sm = LifecycleStateMachine(on_transition=lambda prev, target, reason: seen.append(target))
        for target in (LifecycleState.STARTING, LifecycleState.RUNNING,
                       LifecycleState.STOPPING, LifecycleState.STOPPED):
            sm.transition(target)
        assert sm.state is LifecycleState.STOPPED
        assert seen[-1] is LifecycleState.STOPPED
        assert len(sm.history) == 4

    def test_failed_start_goes_straight_to_stopped(self):
        sm = LifecycleStateMachine()
        sm.transition(LifecycleState.STARTING)
        sm.transition(LifecycleState.STOPPED, "permission denied")
        assert sm.history[-1]["reason"] == "permission denied"

    @pytest.mark.parametrize("path", [
        (LifecycleState.RUNNING,),
        (LifecycleState.STOPPING,),
        (LifecycleState.STARTING, LifecycleState.RUNNING, LifecycleState.STARTING),
        (LifecycleState.STARTING, LifecycleState.RUNNING, LifecycleState.STOPPED),
    ])
    def test_illegal_transitions_raise(self, path):
        sm = LifecycleStateMachine()
        with pytest.raises(ValueError):
            for target in path:
                sm.transition(target)

    def test_same_state_is_noop(self):
        sm = LifecycleStateMachine()
        sm.transition(LifecycleState.STOPPED)
        assert sm.history == []

    def test_listener_errors_do_not_block_transition(self):
        def boom(prev, target, reason):
            raise RuntimeError("listener failed")

        sm = LifecycleStateMachine(on_transition=boom)
        sm.transition(LifecycleState.STARTING)
        assert sm.state is LifecycleState.STARTING


class TestTickHealth:
    def test_fresh_after_hit(self):
        health = TickHealth(stale_after=2.0)
        health.report_hit(10.0)
        assert not health.is_stale(11.0)
        assert health.is_stale(12.5)

    def test_misses_before_any_hit_are_stale(self):
        health = TickHealth(stale_after=2.0)
        assert not health.is_stale(0.0)
        health.report_miss("face")
        assert health.is_stale(0.0)
        assert health.consecutive_misses == 1

    def test_hit_clears_miss_streak(self):
        health = TickHealth(stale_after=2.0)
        for _ in range(3):
            health.report_miss("pose")
        health.report_hit(1.0)
        diag = health.diagnostics(1.5)
        assert diag["consecutive_misses"] == 0
        assert diag["longest_miss_streak"] == 3
        assert diag["last_hit_age_s"] == 0.5


class TestLatencyTracer:
    def test_only_first_mark_counts(self):
        tracer = LatencyTracer("s1")
        tracer.mark("start_requested", 1.0)
        tracer.mark("first_snapshot", 1.1)
        tracer.mark("first_snapshot", 9.0)
        assert tracer.summary()["deltas"]["start_to_first_snapshot_ms"] == 100.0

    def test_unknown_milestone(self):
        with pytest.raises(ValueError):
            LatencyTracer("s1").mark("bogus", 0.0)


class TestAsyncioScheduler:
    async def test_fires_repeatedly_until_cancelled(self):
        scheduler = AsyncioScheduler()
        fired = []
        timer = scheduler.call_every(0.01, lambda: fired.append(scheduler.time()), name="t")
        await asyncio.sleep(0.08)
        assert len(fired) >= 3
        assert scheduler.active_count == 1

        timer.cancel()
        await asyncio.sleep(0)
        count = len(fired)
        await asyncio.sleep(0.03)
        assert len(fired) == count
        assert scheduler.active_count == 0
        assert not timer.active

    async def test_callback_errors_keep_timer_alive(self):
        scheduler = AsyncioScheduler()
        calls = []

        async def flaky():
            calls.append(1)
            raise RuntimeError("boom")

        timer = scheduler.call_every(0.01, flaky)
        await asyncio.sleep(0.05)
        assert len(calls) >= 2
        assert timer.active
        timer.cancel()

    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            AsyncioScheduler().call_every(0, lambda: None)

    async def test_slow_callback_keeps_fixed_rate(self):
        scheduler = AsyncioScheduler()
        loop = asyncio.get_running_loop()
        fired = []

        async def slow():
            fired.append(loop.time())
            await asyncio.sleep(0.03)

        start = loop.time()
        timer = scheduler.call_every(0.05, slow, name="slow")
        await asyncio.sleep(0.29)
        timer.cancel()

        assert len(fired) >= 5
        for n, at in enumerate(fired[:5], start=1):
            assert at - start == pytest.approx(n * 0.05, abs=0.025)

    async def test_cancel_from_own_callback(self):
        scheduler = AsyncioScheduler()
        calls = []

        def once():
            calls.append(1)
            timer.cancel()

        timer = scheduler.call_every(0.01, once, name="once")
        await asyncio.sleep(0.06)
        assert calls == [1]
        assert not timer.active
        assert scheduler.active_count == 0
        assert [t for t in asyncio.all_tasks() if t.get_name() == "timer-once"] == []
