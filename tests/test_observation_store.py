import asyncio
import os
import shutil
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from config.settings import OutputMode
from contracts.observation import Observation, OutcomeKind
from core.jsonl_observation_store import JsonlObservationStore
from core.log_writer import LogWriter
from core.metrics_manager import MetricsManager
from core.null_observation_store import NullObservationStore
from core.store_factory import StoreFactory

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class TestJsonlObservationStore(unittest.TestCase):
    def setUp(self):
        self.dir = tempfile.mkdtemp()
        self.path = os.path.join(self.dir, "nested", "results.jsonl")
        self.store = JsonlObservationStore(self.path, fsync=False)

    def tearDown(self):
        self.store.close()
        shutil.rmtree(self.dir)

    def test_missing_file_reads_empty(self):
        self.assertEqual(self.store.read(), [])

    def test_append_and_read_preserves_order_and_fields(self):
        written = [
            Observation.success("https://a.example", 12.345, "NRT", timestamp=T0),
            Observation.failure(
                "https://b.example", OutcomeKind.HTTP_ERROR, status_code=503,
                error="HTTP 503", timestamp=T0 + timedelta(seconds=1),
            ),
            Observation.failure(
                "https://a.example", OutcomeKind.TIMEOUT, error="timed out after 10s",
                timestamp=T0 + timedelta(seconds=2),
            ),
        ]
        for obs in written:
            self.store.append(obs)
        self.assertEqual(self.store.read(), written)

        with open(self.path, encoding="utf-8") as fh:
            self.assertEqual(len(fh.readlines()), 3)

    def test_read_filters_half_open_window(self):
        for i in range(5):
            self.store.append(
                Observation.success("https://a.example", 10.0, timestamp=T0 + timedelta(minutes=i))
            )
        result = self.store.read(T0 + timedelta(minutes=1), T0 + timedelta(minutes=3))
        self.assertEqual(
            [o.timestamp for o in result],
            [T0 + timedelta(minutes=1), T0 + timedelta(minutes=2)],
        )

    def test_malformed_lines_are_skipped(self):
        self.store.append(Observation.success("https://a.example", 10.0, timestamp=T0))
        self.store.close()
        with open(self.path, "a", encoding="utf-8") as fh:
            fh.write("{not json\n\n")
            fh.write('{"timestamp": "2024-05-01T12:00:00Z", "url": "u", "outcome": "success"}\n')
        self.store.append(Observation.success("https://b.example", 20.0, timestamp=T0))

        result = self.store.read()
        self.assertEqual([o.url for o in result], ["https://a.example", "https://b.example"])


class TestNullObservationStore(unittest.TestCase):
    def test_discards_everything(self):
        store = NullObservationStore()
        store.append(Observation.success("https://a.example", 10.0, timestamp=T0))
        self.assertEqual(store.read(), [])


class TestStoreFactory(unittest.TestCase):
    def test_create_store(self):
        self.assertIsInstance(StoreFactory.create_store(OutputMode.NONE), NullObservationStore)
        store = StoreFactory.create_store(OutputMode.JSONL, "data/results.jsonl")
        self.assertIsInstance(store, JsonlObservationStore)
        self.assertIsInstance(
            StoreFactory.create_store(OutputMode.JSON, "data/results.json"), JsonlObservationStore
        )

    def test_file_mode_requires_path(self):
        with self.assertRaises(ValueError):
            StoreFactory.create_store(OutputMode.JSONL, None)


class TestLogWriter(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.dir = tempfile.mkdtemp()
        self.path = os.path.join(self.dir, "results.jsonl")

    async def asyncTearDown(self):
        shutil.rmtree(self.dir)

    async def test_records_persist_in_submission_order(self):
        store = JsonlObservationStore(self.path, fsync=False)
        writer = LogWriter(store)
        writer.start()
        submitted = [
            Observation.success(f"https://{i}.example", float(i), "NRT", timestamp=T0 + timedelta(seconds=i))
            for i in range(20)
        ]
        for obs in submitted:
            writer.submit(obs)
        await writer.stop()

        self.assertEqual(writer.written, 20)
        self.assertEqual(writer.failed, 0)
        self.assertEqual(JsonlObservationStore(self.path).read(), submitted)

    async def test_concurrent_submitters_never_interleave(self):
        store = JsonlObservationStore(self.path, fsync=False)
        writer = LogWriter(store)
        writer.start()

        async def produce(n):
            for i in range(25):
                writer.submit(Observation.success(f"https://{n}.example", float(i), timestamp=T0))
                await asyncio.sleep(0)

        await asyncio.gather(*(produce(n) for n in range(4)))
        await writer.stop()

        with open(self.path, encoding="utf-8") as fh:
            lines = fh.read().splitlines()
        self.assertEqual(len(lines), 100)
        self.assertEqual(len(JsonlObservationStore(self.path).read()), 100)

    async def test_failed_write_is_isolated(self):
        store = MagicMock()
        store.append.side_effect = [OSError("disk full"), None]
        metrics = MetricsManager()
        writer = LogWriter(store, metrics)
        writer.start()

        writer.submit(Observation.success("https://a.example", 1.0, timestamp=T0))
        writer.submit(Observation.success("https://b.example", 2.0, timestamp=T0))
        await writer.stop()

        self.assertEqual(writer.failed, 1)
        self.assertEqual(writer.written, 1)
        self.assertEqual(metrics.get_value("tracekey_log_write_failures_total"), 1.0)
        store.close.assert_called_once()

    async def test_stop_without_start_closes_store(self):
        store = MagicMock()
        writer = LogWriter(store)
        await writer.stop()
        store.close.assert_called_once()
        self.assertEqual(writer.pending, 0)


if __name__ == "__main__":
    unittest.main()
