from abc import ABC, abstractmethod

from config.settings import Visibility


class Notifier(ABC):
    """
    Abstract base class for the messaging service that receives colo change
    notifications and reports.
    """

    @abstractmethod
    async def post(self, text: str, visibility: Visibility) -> bool:
        """
        Publish a message.

        Args:
            text (str): The formatted message body.
            visibility (Visibility): Who may see the message.

        Returns:
            bool: True if the message was published, False otherwise.
                Implementations report failures through the return value and
                logging; they do not raise for delivery problems.
        """

    async def close(self):
        """
        Release any resources held by the notifier.
        """
