import asyncio
import unittest
from unittest.mock import AsyncMock

from contracts.observation import Observation, Target
from core.metrics_manager import MetricsManager
from core.probe_limiter import ProbeLimiter
from core.probe_scheduler import ProbeScheduler


class FakeProber:
    def __init__(self, release: asyncio.Event = None, delay: float = 0):
        self.release = release
        self.delay = delay
        self.started = []
        self.active = 0
        self.peak = 0

    async def probe(self, target):
        self.started.append(target.url)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            if self.release is not None:
                await self.release.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            return Observation.success(target.url, 10.0, "NRT")
        finally:
            self.active -= 1


def make_targets(n):
    return [Target(url=f"https://{i}.example") for i in range(n)]


class TestProbeLimiter(unittest.IsolatedAsyncioTestCase):
    def test_rejects_zero(self):
        with self.assertRaises(ValueError):
            ProbeLimiter(0)

    async def test_counts(self):
        limiter = ProbeLimiter(1)
        async with limiter:
            self.assertEqual(limiter.in_flight, 1)
        self.assertEqual(limiter.in_flight, 0)
        self.assertEqual(limiter.peak_in_flight, 1)


class TestProbeScheduler(unittest.IsolatedAsyncioTestCase):
    async def test_limiter_bounds_concurrency_in_fifo_order(self):
        release = asyncio.Event()
        prober = FakeProber(release)
        limiter = ProbeLimiter(2)
        handler = AsyncMock()
        targets = make_targets(5)
        scheduler = ProbeScheduler(targets, prober, limiter, 60, handler)

        tasks = scheduler.run_cycle()
        await asyncio.sleep(0.01)
        self.assertEqual(prober.active, 2)
        self.assertEqual(limiter.waiting, 3)
        self.assertEqual(scheduler.in_flight, 5)

        release.set()
        await asyncio.gather(*tasks)

        self.assertEqual(prober.peak, 2)
        self.assertEqual(limiter.peak_in_flight, 2)
        self.assertEqual(prober.started, [t.url for t in targets])
        self.assertEqual(handler.await_count, 5)
        self.assertEqual(scheduler.in_flight, 0)

    async def test_cycles_overlap(self):
        release = asyncio.Event()
        prober = FakeProber(release)
        scheduler = ProbeScheduler(make_targets(3), prober, ProbeLimiter(10), 60, AsyncMock())

        scheduler.run_cycle()
        scheduler.run_cycle()
        await asyncio.sleep(0.01)
        self.assertEqual(scheduler.in_flight, 6)
        self.assertEqual(scheduler.cycles, 2)

        release.set()
        self.assertEqual(await scheduler.shutdown(1.0), 0)

    async def test_handler_error_is_isolated(self):
        prober = FakeProber()
        calls = []

        async def handler(observation):
            calls.append(observation.url)
            if observation.url == "https://0.example":
                raise RuntimeError("handler failed")

        scheduler = ProbeScheduler(make_targets(3), prober, ProbeLimiter(1), 60, handler)
        await asyncio.gather(*scheduler.run_cycle())
        self.assertEqual(len(calls), 3)

    async def test_shutdown_cancels_after_grace(self):
        prober = FakeProber(delay=10)
        handler = AsyncMock()
        scheduler = ProbeScheduler(make_targets(4), prober, ProbeLimiter(2), 60, handler)

        scheduler.run_cycle()
        await asyncio.sleep(0.01)
        cancelled = await scheduler.shutdown(0.05)

        self.assertEqual(cancelled, 4)
        handler.assert_not_awaited()
        self.assertEqual(scheduler.in_flight, 0)

    async def test_shutdown_waits_for_fast_probes(self):
        prober = FakeProber(delay=0.02)
        handler = AsyncMock()
        scheduler = ProbeScheduler(make_targets(2), prober, ProbeLimiter(2), 60, handler)

        scheduler.run_cycle()
        self.assertEqual(await scheduler.shutdown(1.0), 0)
        self.assertEqual(handler.await_count, 2)

    async def test_run_ticks_until_stopped(self):
        prober = FakeProber()
        metrics = MetricsManager()
        handler = AsyncMock()
        scheduler = ProbeScheduler(make_targets(2), prober, ProbeLimiter(2), 0.05, handler, metrics)

        runner = asyncio.create_task(scheduler.run())
        await asyncio.sleep(0.12)
        scheduler.stop()
        await asyncio.wait_for(runner, timeout=1)
        await scheduler.shutdown(1.0)

        self.assertGreaterEqual(scheduler.cycles, 2)
        self.assertEqual(handler.await_count, scheduler.cycles * 2)
        self.assertEqual(
            metrics.get_value("tracekey_probes_total", {"url": "https://0.example", "outcome": "success"}),
            float(scheduler.cycles),
        )
        self.assertEqual(metrics.get_value("tracekey_probes_in_flight"), 0.0)

    async def test_stop_before_run_starts_no_cycle(self):
        scheduler = ProbeScheduler(make_targets(1), FakeProber(), ProbeLimiter(1), 0.05, AsyncMock())
        scheduler.stop()
        await scheduler.run()
        self.assertEqual(scheduler.cycles, 0)


if __name__ == "__main__":
    unittest.main()
