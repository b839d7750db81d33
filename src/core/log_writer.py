import asyncio
import logging
from typing import Optional

from abstractions.observation_store import ObservationStore
from contracts.observation import Observation
from core.metrics_manager import MetricsManager

logger = logging.getLogger(__name__)


class LogWriter:
    """
    Single writer in front of the observation store.

    Observations are queued in the order probes complete and a single task
    appends them one at a time, so records never interleave. A failed write is
    logged and the observation is dropped from persistence; it never reaches
    the caller.
    """

    def __init__(self, store: ObservationStore, metrics_manager: Optional[MetricsManager] = None):
        self.store = store
        self.metrics_manager = metrics_manager
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self.written = 0
        self.failed = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self):
        if self._task is None:
            self._task = asyncio.create_task(self._writer_loop(), name="log-writer")
            logger.info("Log writer started.")

    def submit(self, observation: Observation):
        """
        Queue an observation for persistence. Never blocks.
        """
        self._queue.put_nowait(observation)

    async def _writer_loop(self):
        while True:
            observation = await self._queue.get()
            try:
                await asyncio.to_thread(self.store.append, observation)
                self.written += 1
            except Exception as e:
                self.failed += 1
                if self.metrics_manager:
                    self.metrics_manager.log_write_failed()
                logger.error(f"Failed to write result for {observation.url}: {e}")
            finally:
                self._queue.task_done()

    async def stop(self, timeout: Optional[float] = None):
        """
        Flush everything already submitted, then stop the writer task.

        Args:
            timeout (Optional[float]): Upper bound in seconds for the flush.
                Observations still queued afterwards are dropped and logged.
        """
        if self._task is not None:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.error(
                    f"Log writer flush timed out; {self._queue.qsize()} observations not persisted"
                )
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await asyncio.to_thread(self.store.close)
        logger.info(f"Log writer stopped ({self.written} written, {self.failed} failed).")
