import asyncio
import os
import shutil
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import httpx

from config.settings import Visibility, parse_settings
from contracts.errors import MonitorError
from contracts.observation import Observation, OutcomeKind
from core.jsonl_observation_store import JsonlObservationStore
from core.metrics_manager import MetricsManager
from core.monitor import Monitor

A = "https://a.example"
B = "https://b.example"
T0 = datetime(2024, 5, 1, tzinfo=timezone.utc)


def make_settings(**overrides):
    raw = {
        "target_urls": [A, B],
        "misskey_token": "secret",
        "check_interval_seconds": 0.05,
        "colo_change_notify_misskey": True,
        "shutdown_grace_seconds": 1,
        "reporting": {"misskey_visibility": "followers"},
    }
    raw.update(overrides)
    return parse_settings(raw)


def make_notifier():
    notifier = MagicMock()
    notifier.post = AsyncMock(return_value=True)
    return notifier


class TestMonitorHandleObservation(unittest.IsolatedAsyncioTestCase):
    async def test_change_is_persisted_and_notified(self):
        store = MagicMock()
        notifier = make_notifier()
        metrics = MetricsManager()
        monitor = Monitor(make_settings(), client=None, store=store, notifier=notifier, metrics_manager=metrics)
        monitor.log_writer.start()
        monitor.dispatcher.start()

        await monitor.handle_observation(Observation.success(A, 40.0, "NRT", timestamp=T0))
        await monitor.handle_observation(
            Observation.failure(A, OutcomeKind.TIMEOUT, timestamp=T0 + timedelta(seconds=60))
        )
        await monitor.handle_observation(
            Observation.success(A, 45.0, "KIX", timestamp=T0 + timedelta(seconds=120))
        )

        await monitor.log_writer.stop()
        await monitor.dispatcher.stop(timeout=1)

        self.assertEqual(store.append.call_count, 3)
        self.assertEqual(metrics.get_value("tracekey_colo_changes_total", {"url": A}), 1.0)
        notifier.post.assert_awaited_once()
        text, visibility = notifier.post.await_args.args
        self.assertIn("`NRT`", text)
        self.assertIn("`KIX`", text)
        self.assertEqual(visibility, Visibility.FOLLOWERS)

    async def test_write_failure_does_not_block_detection(self):
        store = MagicMock()
        store.append.side_effect = OSError("read-only file system")
        monitor = Monitor(make_settings(), client=None, store=store, notifier=make_notifier())
        monitor.log_writer.start()

        await monitor.handle_observation(Observation.success(A, 40.0, "NRT", timestamp=T0))
        self.assertEqual((await monitor.tracker.get_state(A)).colo, "NRT")
        await monitor.log_writer.stop()
        self.assertEqual(monitor.log_writer.failed, 1)

    async def test_scheduler_failure_stops_the_monitor(self):
        store = MagicMock()
        notifier = make_notifier()
        monitor = Monitor(make_settings(), client=None, store=store, notifier=notifier)
        monitor.scheduler.run = AsyncMock(side_effect=RuntimeError("scheduler crashed"))

        with self.assertRaises(MonitorError) as ctx:
            await asyncio.wait_for(monitor.run(), timeout=5)

        self.assertIn("probe-scheduler", str(ctx.exception))
        self.assertIsInstance(ctx.exception.__cause__, RuntimeError)
        # shutdown still ran
        store.close.assert_called_once()
        self.assertEqual(monitor.dispatcher._workers, [])

    def test_no_dispatcher_when_notifications_off(self):
        monitor = Monitor(
            make_settings(colo_change_notify_misskey=False), client=None, store=MagicMock(), notifier=make_notifier()
        )
        self.assertIsNone(monitor.dispatcher)
        self.assertIsNone(monitor.periodic_reporter)


class TestMonitorRun(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.dir = tempfile.mkdtemp()
        self.path = os.path.join(self.dir, "results.jsonl")

    async def asyncTearDown(self):
        shutil.rmtree(self.dir)

    async def test_run_probes_and_persists_until_stopped(self):
        counter = {"n": 0}

        def handler(request):
            if request.url.host == "b.example":
                return httpx.Response(503)
            counter["n"] += 1
            colo = "NRT" if counter["n"] % 2 else "KIX"
            return httpx.Response(200, headers={"cf-ray": f"abc-{colo}"})

        notifier = make_notifier()
        metrics = MetricsManager()
        store = JsonlObservationStore(self.path, fsync=False)
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            monitor = Monitor(make_settings(), client, store, notifier=notifier, metrics_manager=metrics)
            task = asyncio.create_task(monitor.run())
            await asyncio.sleep(0.18)
            monitor.request_stop()
            await asyncio.wait_for(task, timeout=5)

        observations = JsonlObservationStore(self.path).read()
        by_url = {url: [o for o in observations if o.url == url] for url in (A, B)}
        self.assertGreaterEqual(len(by_url[A]), 2)
        self.assertEqual(len(by_url[A]), len(by_url[B]))
        self.assertTrue(all(o.outcome is OutcomeKind.HTTP_ERROR for o in by_url[B]))
        self.assertEqual(
            metrics.get_value("tracekey_colo_changes_total", {"url": A}), float(len(by_url[A]) - 1)
        )
        # cooldown allows a single note for A
        notifier.post.assert_awaited_once()

    async def test_warm_start_seeds_tracker(self):
        store = JsonlObservationStore(self.path, fsync=False)
        store.append(Observation.success(A, 40.0, "LAX", timestamp=T0))
        store.close()

        def handler(request):
            return httpx.Response(200, headers={"cf-ray": "abc-NRT"})

        notifier = make_notifier()
        settings = make_settings(target_urls=[A], state={"warm_start": True})
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            monitor = Monitor(settings, client, store, notifier=notifier)
            task = asyncio.create_task(monitor.run())
            await asyncio.sleep(0.1)
            monitor.request_stop()
            await asyncio.wait_for(task, timeout=5)

        # the first live probe is compared against the colo from the log
        notifier.post.assert_awaited_once()
        self.assertIn("`LAX`", notifier.post.await_args.args[0])
        self.assertEqual((await monitor.tracker.get_state(A)).colo, "NRT")


if __name__ == "__main__":
    unittest.main()
