import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

from contracts.colo import ChangeEvent
from core.notification_dispatcher import NotificationDispatcher
from reporting.markup_renderer import format_change_message

logger = logging.getLogger(__name__)


class ChangeNotifier:
    """
    Turns colo change events into notes, at most one per target per cooldown.
    """

    def __init__(self, dispatcher: Optional[NotificationDispatcher], cooldown_seconds: float = 300):
        self.dispatcher = dispatcher
        self.cooldown = timedelta(seconds=cooldown_seconds)
        self._last_notified: Dict[str, datetime] = {}  # url -> event timestamp

    def notify(self, event: ChangeEvent) -> bool:
        """
        Queue a note for the event unless notifications are disabled or the
        target is still in its cooldown.

        Returns:
            bool: True if a note was queued.
        """
        if self.dispatcher is None:
            return False

        last = self._last_notified.get(event.url)
        if last is not None and event.timestamp - last < self.cooldown:
            logger.info(
                f"Suppressing colo change note for {event.url}: last note sent at {last.isoformat()}"
            )
            return False

        self._last_notified[event.url] = event.timestamp
        self.dispatcher.submit(format_change_message(event))
        logger.info(f"Queued colo change note for {event.url}")
        return True
