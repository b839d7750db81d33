import asyncio
import logging
import random
from urllib.parse import urljoin

import httpx

from abstractions.notifier import Notifier
from config.settings import Visibility

logger = logging.getLogger(__name__)


class MisskeyNotifier(Notifier):
    """
    Posts notes to a Misskey instance through /api/notes/create.

    Server errors and transport errors are retried with exponential backoff
    plus jitter; client errors (4xx) are not retried.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        token: str,
        max_attempts: int = 5,
        initial_delay: float = 1.0,
        request_timeout: float = 10.0,
    ):
        self.client = client
        self.api_url = urljoin(base_url, "/api/notes/create")
        self.token = token
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.request_timeout = request_timeout
        logger.info(f"MisskeyNotifier initialized for {self.api_url}")

    async def post(self, text: str, visibility: Visibility) -> bool:
        payload = {"i": self.token, "text": text, "visibility": visibility.value}
        delay = self.initial_delay

        for attempt in range(1, self.max_attempts + 1):
            try:
                resp = await self.client.post(
                    self.api_url, json=payload, timeout=self.request_timeout
                )
                if resp.is_success:
                    logger.info("Posted note to Misskey.")
                    return True
                if resp.is_client_error:
                    logger.error(f"Misskey API client error {resp.status_code} - {resp.text}")
                    return False
                logger.warning(
                    f"Attempt {attempt} failed: Misskey API returned status {resp.status_code} - {resp.text}"
                )
            except httpx.HTTPError as e:
                logger.warning(f"Attempt {attempt} failed: Request error: {e!r}")

            if attempt < self.max_attempts:
                await asyncio.sleep(delay)
                delay = delay * 2 + random.uniform(0, 1)

        logger.error(f"Failed to post to Misskey after {self.max_attempts} attempts")
        return False
