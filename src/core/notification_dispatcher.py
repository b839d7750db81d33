import asyncio
import logging
from typing import List, Optional

from abstractions.notifier import Notifier
from config.settings import Visibility
from core.metrics_manager import MetricsManager

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """
    Fire-and-forget hand-off between the probe path and the notifier.

    submit() only enqueues. A fixed pool of worker tasks posts messages; a
    worker that wakes up joins everything else already queued into a single
    post. Failures are logged and counted, never raised to the submitter.
    """

    def __init__(
        self,
        notifier: Notifier,
        visibility: Visibility,
        concurrency: int = 1,
        metrics_manager: Optional[MetricsManager] = None,
    ):
        self.notifier = notifier
        self.visibility = visibility
        self.concurrency = concurrency
        self.metrics_manager = metrics_manager
        self._queue: asyncio.Queue = asyncio.Queue()
        self._workers: List[asyncio.Task] = []
        self.sent = 0
        self.failed = 0

    def start(self):
        if self._workers:
            return
        for i in range(self.concurrency):
            self._workers.append(
                asyncio.create_task(self._worker_loop(), name=f"notifier-worker-{i}")
            )
        logger.info(f"Notification dispatcher started with {self.concurrency} worker(s).")

    def submit(self, text: str):
        self._queue.put_nowait(text)

    def _drain(self, first: str) -> List[str]:
        batch = [first]
        while True:
            try:
                batch.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                return batch

    async def _worker_loop(self):
        while True:
            first = await self._queue.get()
            batch = self._drain(first)
            try:
                await self._deliver("\n".join(batch))
            finally:
                for _ in batch:
                    self._queue.task_done()

    async def _deliver(self, text: str):
        try:
            ok = await self.notifier.post(text, self.visibility)
        except Exception as e:
            logger.error(f"Notifier raised while posting: {e!r}")
            ok = False
        if ok:
            self.sent += 1
            logger.info("Colo change posted successfully.")
        else:
            self.failed += 1
            logger.error("Failed to post colo change notification.")
        if self.metrics_manager:
            self.metrics_manager.notification_sent(ok)

    async def stop(self, timeout: Optional[float] = None):
        """
        Give queued messages up to ``timeout`` seconds to go out, then stop
        the workers.
        """
        if self._workers:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    f"Notification dispatcher stopped with {self._queue.qsize()} message(s) unsent"
                )
            for worker in self._workers:
                worker.cancel()
            await asyncio.gather(*self._workers, return_exceptions=True)
            self._workers = []
        logger.info(f"Notification dispatcher stopped ({self.sent} sent, {self.failed} failed).")
