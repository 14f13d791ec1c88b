"""Wall-clock behaviour of the scheduler on the realtime loop."""

from __future__ import annotations

import pytest

from tasklift import RealtimeLoop, Scheduler, sleep, use_scheduler, wait


pytestmark = pytest.mark.realtime


@pytest.fixture
def realtime_scheduler():
    loop = RealtimeLoop()
    sched = Scheduler(loop=loop)
    with use_scheduler(sched):
        yield sched
    loop.close()


def sleeper(ms):
    elapsed = yield sleep(ms)
    return elapsed


class TestRealtimeSleep:
    def test_sleep_precision(self, realtime_scheduler: Scheduler, tolerance_ms: float) -> None:
        future = realtime_scheduler.async_(sleeper, 50)
        realtime_scheduler.run()

        assert 50 <= future.value < 50 + tolerance_ms

    def test_concurrent_sleeps_overlap(
        self, realtime_scheduler: Scheduler, tolerance_ms: float
    ) -> None:
        loop = realtime_scheduler.loop
        started = loop.now()
        futures = [realtime_scheduler.async_(sleeper, 40) for _ in range(20)]
        realtime_scheduler.run()

        assert all(f.value >= 40 for f in futures)
        assert loop.now() - started < 40 + tolerance_ms

    def test_wait_timeout(self, realtime_scheduler: Scheduler) -> None:
        child = realtime_scheduler.async_(sleeper, 80)

        def parent():
            outcome = yield wait(child, timeout_ms=20)
            return outcome

        future = realtime_scheduler.async_(parent)
        realtime_scheduler.run()

        assert future.results == [False, "timed out"]
        assert child.value >= 80
