import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Sequence, Set

from contracts.observation import Observation, Target
from core.metrics_manager import MetricsManager
from core.probe_limiter import ProbeLimiter
from core.prober import Prober

logger = logging.getLogger(__name__)

ObservationHandler = Callable[[Observation], Awaitable[None]]


class ProbeScheduler:
    """
    Starts one probe per target every ``interval_seconds``.

    Probes run as independent tasks admitted by the limiter, so a cycle never
    waits for the previous one: slow probes simply overlap the next cycle.
    Completed observations are handed to ``on_observation``.
    """

    def __init__(
        self,
        targets: Sequence[Target],
        prober: Prober,
        limiter: ProbeLimiter,
        interval_seconds: float,
        on_observation: ObservationHandler,
        metrics_manager: Optional[MetricsManager] = None,
    ):
        self.targets = list(targets)
        self.prober = prober
        self.limiter = limiter
        self.interval_seconds = interval_seconds
        self.on_observation = on_observation
        self.metrics_manager = metrics_manager
        self._in_flight: Set[asyncio.Task] = set()
        self._stop_event = asyncio.Event()
        self.cycles = 0
        logger.info(
            f"ProbeScheduler initialized for {len(self.targets)} targets, "
            f"interval={interval_seconds}s, max_concurrent={limiter.max_concurrent}"
        )

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def run_cycle(self) -> List[asyncio.Task]:
        """
        Spawn one probe task per target, in configured order, without waiting
        for any of them.
        """
        self.cycles += 1
        logger.info(f"Running check cycle {self.cycles} ({len(self._in_flight)} probes still in flight)")
        tasks = []
        for target in self.targets:
            task = asyncio.create_task(self._probe_target(target), name=f"probe-{target.url}")
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)
            tasks.append(task)
        return tasks

    async def _probe_target(self, target: Target):
        async with self.limiter:
            if self.metrics_manager:
                self.metrics_manager.probe_started()
            try:
                observation = await self.prober.probe(target)
            finally:
                if self.metrics_manager:
                    self.metrics_manager.probe_finished()

        if self.metrics_manager:
            self.metrics_manager.observe_probe(observation)
        try:
            await self.on_observation(observation)
        except Exception as e:
            logger.error(f"Failed to process observation for {target.url}", exc_info=e)

    async def run(self):
        """
        Tick until stop() is called. Ticks that fall more than one interval
        behind are skipped rather than run back to back.
        """
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        logger.info("Probe scheduler started.")

        while not self._stop_event.is_set():
            self.run_cycle()

            next_tick += self.interval_seconds
            now = loop.time()
            if now > next_tick:
                missed = int((now - next_tick) // self.interval_seconds) + 1
                next_tick += missed * self.interval_seconds
                logger.warning(f"Scheduler fell behind, skipping {missed} tick(s)")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=next_tick - now)
            except asyncio.TimeoutError:
                pass

        logger.info("Probe scheduler stopped starting new cycles.")

    def stop(self):
        self._stop_event.set()

    async def shutdown(self, grace_seconds: float):
        """
        Stop starting cycles, give in-flight probes ``grace_seconds`` to
        finish and cancel the rest. Cancelled probes produce no observation.

        Returns:
            int: Number of probes cancelled.
        """
        self.stop()
        pending = set(self._in_flight)
        if not pending:
            return 0

        logger.info(f"Waiting up to {grace_seconds}s for {len(pending)} in-flight probe(s)")
        _, still_running = await asyncio.wait(pending, timeout=grace_seconds)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
            logger.warning(f"Cancelled {len(still_running)} probe(s) still running after the grace period")
        return len(still_running)
