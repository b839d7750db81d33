import asyncio
import logging
from typing import Dict, Iterable, Optional

from contracts.colo import ChangeEvent, ColoState
from contracts.observation import Observation

logger = logging.getLogger(__name__)


class ColoStateTracker:
    """
    Last known colo per target, and detection of colo transitions.

    The map is only touched through record() and seed(), both of which run
    under one asyncio.Lock so the compare-and-update for a target is atomic
    even when probes of the same target overlap.
    """

    def __init__(self):
        self._states: Dict[str, ColoState] = {}  # url -> ColoState
        self._lock = asyncio.Lock()
        logger.info("ColoStateTracker initialized with empty state")

    async def record(self, observation: Observation) -> Optional[ChangeEvent]:
        """
        Apply one observation and report a colo change if it reveals one.

        Args:
            observation (Observation): A completed probe result.

        Returns:
            Optional[ChangeEvent]: The detected transition, or None. The first
                success for a target, a repeated colo, a success without a
                colo and any non-success observation all return None.
        """
        if not observation.is_success:
            return None

        async with self._lock:
            previous = self._states.get(observation.url)

            if observation.colo is None:
                # keep the last known colo, only refresh the confirmation time
                self._states[observation.url] = ColoState(
                    url=observation.url,
                    colo=previous.colo if previous else None,
                    confirmed_at=observation.timestamp,
                )
                return None

            self._states[observation.url] = ColoState(
                url=observation.url,
                colo=observation.colo,
                confirmed_at=observation.timestamp,
            )

            if previous is None or previous.colo is None:
                logger.info(f"Baseline colo for {observation.url}: {observation.colo}")
                return None

            if previous.colo == observation.colo:
                return None

            event = ChangeEvent(
                url=observation.url,
                previous_colo=previous.colo,
                new_colo=observation.colo,
                timestamp=observation.timestamp,
                rtt_ms=observation.rtt_ms,
            )
        logger.info(f"Colo transition for {event.url}: {event.previous_colo} -> {event.new_colo}")
        return event

    async def seed(self, observations: Iterable[Observation]) -> int:
        """
        Warm start: adopt the last colo seen per target in historical
        observations. Never produces change events.

        Returns:
            int: Number of targets seeded.
        """
        latest: Dict[str, Observation] = {}
        for observation in observations:
            if observation.is_success and observation.colo is not None:
                current = latest.get(observation.url)
                if current is None or observation.timestamp >= current.timestamp:
                    latest[observation.url] = observation

        async with self._lock:
            for url, observation in latest.items():
                self._states[url] = ColoState(
                    url=url, colo=observation.colo, confirmed_at=observation.timestamp
                )
        logger.info(f"Seeded colo state for {len(latest)} targets from the observation log")
        return len(latest)

    async def get_state(self, url: str) -> Optional[ColoState]:
        async with self._lock:
            return self._states.get(url)

    async def snapshot(self) -> Dict[str, ColoState]:
        async with self._lock:
            return dict(self._states)
