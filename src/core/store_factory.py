"""
Store factory for creating observation store instances.
"""
import logging
from typing import Optional

from abstractions.observation_store import ObservationStore
from config.settings import OutputMode
from core.jsonl_observation_store import JsonlObservationStore
from core.null_observation_store import NullObservationStore

logger = logging.getLogger(__name__)


class StoreFactory:
    """
    Factory class for creating observation store instances.
    """

    @staticmethod
    def create_store(output_mode: OutputMode, output_path: Optional[str] = None) -> ObservationStore:
        """
        Create an observation store for the configured output mode.

        Args:
            output_mode (OutputMode): Configured output format.
            output_path (Optional[str]): Log file location; required unless the
                mode is OutputMode.NONE.

        Returns:
            ObservationStore: A store instance.

        Raises:
            ValueError: If a file-backed mode is requested without a path.
        """
        logger.info(f"Creating observation store for output mode '{output_mode.value}'")

        if output_mode is OutputMode.NONE:
            return NullObservationStore()

        if output_mode in (OutputMode.JSON, OutputMode.JSONL):
            if not output_path:
                raise ValueError(f"Output mode '{output_mode.value}' requires an output path")
            return JsonlObservationStore(output_path)

        raise ValueError(f"Unsupported output mode: {output_mode}")
