import asyncio
import logging
from typing import Optional

import httpx
from rich.console import Console

from abstractions.notifier import Notifier
from abstractions.observation_store import ObservationStore
from config.settings import Settings
from contracts.errors import MonitorError
from contracts.observation import Observation
from core.change_notifier import ChangeNotifier
from core.colo_state_tracker import ColoStateTracker
from core.log_writer import LogWriter
from core.metrics_manager import MetricsManager
from core.notification_dispatcher import NotificationDispatcher
from core.probe_limiter import ProbeLimiter
from core.probe_scheduler import ProbeScheduler
from core.prober import Prober
from core.report_runner import PeriodicReporter, ReportRunner

logger = logging.getLogger(__name__)


class Monitor:
    """
    Wires the prober, state tracker, log writer, notifier and reporter
    together and owns their lifecycle.
    """

    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient,
        store: ObservationStore,
        notifier: Optional[Notifier] = None,
        metrics_manager: Optional[MetricsManager] = None,
        console: Optional[Console] = None,
    ):
        self.settings = settings
        self.store = store
        self.metrics_manager = metrics_manager
        self.tracker = ColoStateTracker()
        self.log_writer = LogWriter(store, metrics_manager)

        self.dispatcher = None
        if notifier is not None and settings.colo_change_notify_misskey:
            self.dispatcher = NotificationDispatcher(
                notifier,
                settings.reporting.misskey_visibility,
                concurrency=settings.misskey_concurrent_notifications,
                metrics_manager=metrics_manager,
            )
        self.change_notifier = ChangeNotifier(self.dispatcher, settings.colo_change_cooldown_seconds)

        prober = Prober(
            client,
            request_timeout=settings.request_timeout_seconds,
            probe_path=settings.probe_path,
            colo_header=settings.colo_header,
            colo_body_fallback=settings.colo_body_fallback,
        )
        self.scheduler = ProbeScheduler(
            settings.targets,
            prober,
            ProbeLimiter(settings.max_concurrent_checks),
            settings.check_interval_seconds,
            self.handle_observation,
            metrics_manager,
        )

        self.periodic_reporter = None
        if settings.reporting.enabled:
            runner = ReportRunner(settings, store, notifier, console)
            self.periodic_reporter = PeriodicReporter(runner, settings.reporting.interval)

        self._stop_event = asyncio.Event()

    async def handle_observation(self, observation: Observation):
        """
        Persist the observation and run change detection. Neither step can
        prevent the other.
        """
        self.log_writer.submit(observation)

        event = await self.tracker.record(observation)
        if event is None:
            return
        if self.metrics_manager:
            self.metrics_manager.colo_changed(event.url)
        self.change_notifier.notify(event)

    async def warm_start(self):
        observations = await asyncio.to_thread(self.store.read)
        await self.tracker.seed(observations)

    def request_stop(self):
        logger.info("Shutdown requested.")
        self._stop_event.set()
        self.scheduler.stop()

    async def run(self):
        logger.info(f"Starting tracekey monitoring with User-Agent: {self.settings.user_agent}")
        if self.settings.state.warm_start:
            try:
                await self.warm_start()
            except OSError as e:
                logger.error(f"Warm start failed, starting with empty colo state: {e}")

        self.log_writer.start()
        if self.dispatcher:
            self.dispatcher.start()

        tasks = [asyncio.create_task(self.scheduler.run(), name="probe-scheduler")]
        if self.periodic_reporter:
            tasks.append(
                asyncio.create_task(self.periodic_reporter.run(self._stop_event), name="periodic-reporter")
            )

        stop_waiter = asyncio.create_task(self._stop_event.wait(), name="stop-waiter")
        failed = None
        try:
            done, _ = await asyncio.wait({stop_waiter, *tasks}, return_when=asyncio.FIRST_COMPLETED)
            if not self._stop_event.is_set():
                # scheduler and reporter only return once stop was requested
                failed = next(task for task in tasks if task in done)
                logger.error(
                    f"{failed.get_name()} stopped unexpectedly, shutting down",
                    exc_info=failed.exception(),
                )
                self.request_stop()
        finally:
            stop_waiter.cancel()
            await asyncio.gather(stop_waiter, return_exceptions=True)
            await self.shutdown(tasks)

        if failed is not None:
            raise MonitorError(f"{failed.get_name()} stopped unexpectedly") from failed.exception()

    async def shutdown(self, tasks):
        grace = self.settings.shutdown_grace_seconds
        self.scheduler.stop()
        await self.scheduler.shutdown(grace)

        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        await self.log_writer.stop()
        if self.dispatcher:
            await self.dispatcher.stop(timeout=grace)
        logger.info("Tracekey monitoring stopped.")
