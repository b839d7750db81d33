import logging
from datetime import datetime
from typing import List, Optional

from abstractions.observation_store import ObservationStore
from contracts.observation import Observation

logger = logging.getLogger(__name__)


class NullObservationStore(ObservationStore):
    """
    Store used when output is disabled: writes are discarded and reads are empty.
    """

    def append(self, observation: Observation):
        logger.debug(f"Output disabled, not persisting {observation!r}")

    def read(
        self,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[Observation]:
        return []
