from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from contracts.observation import Observation


class ObservationStore(ABC):
    """
    Abstract base class for the append-only observation log.

    Implementations are synchronous and may block on I/O; callers on the event
    loop run them in a worker thread.
    """

    @abstractmethod
    def append(self, observation: Observation):
        """
        Append one observation as a self-contained record.

        Raises:
            OSError: If the record could not be written.
        """

    @abstractmethod
    def read(
        self,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[Observation]:
        """
        Return the stored observations in write order, optionally restricted to
        the half-open window [since, until).

        Returns:
            List[Observation]: Observations in the order they were appended.
        """

    def close(self):
        """
        Release the underlying handle, if any.
        """
