import logging
import os
import threading
from datetime import datetime
from typing import List, Optional

from pydantic import ValidationError

from abstractions.observation_store import ObservationStore
from contracts.observation import Observation

logger = logging.getLogger(__name__)


class JsonlObservationStore(ObservationStore):
    """
    Observation log stored as JSON lines, one observation per line.
    The file is only ever opened for appending; nothing is rewritten.
    """

    def __init__(self, path: str, fsync: bool = True):
        """
        Args:
            path (str): Location of the log file. Parent directories are created
                on first write.
            fsync (bool): Whether to fsync after every record.
        """
        self.path = path
        self.fsync = fsync
        self._handle = None
        self._lock = threading.Lock()
        logger.info(f"JsonlObservationStore initialized at {self.path}")

    def _open(self):
        parent = os.path.dirname(self.path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        return open(self.path, "a", encoding="utf-8")

    def append(self, observation: Observation):
        line = observation.model_dump_json() + "\n"
        with self._lock:
            if self._handle is None:
                self._handle = self._open()
            try:
                self._handle.write(line)
                self._handle.flush()
                if self.fsync:
                    os.fsync(self._handle.fileno())
            except OSError:
                # A broken handle is reopened on the next append
                self._close_handle()
                raise

    def read(
        self,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[Observation]:
        try:
            fh = open(self.path, "r", encoding="utf-8")
        except FileNotFoundError:
            logger.info(f"No observation log at {self.path} yet")
            return []

        observations = []
        with fh:
            for lineno, line in enumerate(fh, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    observation = Observation.model_validate_json(line)
                except ValidationError as e:
                    logger.warning(f"Skipping malformed line {lineno} in {self.path}: {e}")
                    continue
                if since is not None and observation.timestamp < since:
                    continue
                if until is not None and observation.timestamp >= until:
                    continue
                observations.append(observation)
        logger.debug(f"Read {len(observations)} observations from {self.path}")
        return observations

    def _close_handle(self):
        if self._handle is not None:
            try:
                self._handle.close()
            except OSError as e:
                logger.warning(f"Error closing {self.path}: {e}")
            self._handle = None

    def close(self):
        with self._lock:
            self._close_handle()
