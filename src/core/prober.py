import asyncio
import logging
import time
from typing import Optional
from urllib.parse import urljoin

import httpx

from contracts.observation import Observation, OutcomeKind, Target
from core.profiler import Profiler

logger = logging.getLogger(__name__)

TRACE_COLO_PREFIX = "colo="


def parse_trace_colo(body: str) -> Optional[str]:
    """
    Extract the colo from a Cloudflare /cdn-cgi/trace body (``key=value`` lines).
    """
    for line in body.splitlines():
        if line.startswith(TRACE_COLO_PREFIX):
            colo = line[len(TRACE_COLO_PREFIX):].strip()
            return colo or None
    return None


def colo_from_header(header_name: str, value: Optional[str]) -> Optional[str]:
    """
    Turn a raw header value into a colo identifier.

    A CF-Ray value looks like ``8d1f2e3a4b5c6d7e-NRT``; the colo is the part
    after the last dash. Other headers are taken verbatim.
    """
    if value is None:
        return None
    value = value.strip()
    if header_name.lower() == "cf-ray":
        if "-" not in value:
            return None
        value = value.rsplit("-", 1)[1]
    return value or None


class Prober:
    """
    Runs a single check against a target and classifies the outcome.

    probe() never raises for network problems: timeouts, transport errors and
    non-2xx responses all come back as an Observation with the matching
    outcome. There are no retries; the next scheduler cycle is the retry.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        request_timeout: float = 10.0,
        probe_path: str = "/cdn-cgi/trace",
        colo_header: str = "cf-ray",
        colo_body_fallback: bool = True,
    ):
        """
        Args:
            client (httpx.AsyncClient): Shared client used for every probe.
            request_timeout (float): Default wall-clock ceiling per probe in
                seconds, used when the target has no override.
            probe_path (str): Path joined onto the target URL.
            colo_header (str): Response header carrying the colo.
            colo_body_fallback (bool): Read the body for a ``colo=`` line when
                the header is missing.
        """
        self.client = client
        self.request_timeout = request_timeout
        self.probe_path = probe_path
        self.colo_header = colo_header
        self.colo_body_fallback = colo_body_fallback

    def probe_url(self, target: Target) -> str:
        if not self.probe_path:
            return target.url
        return urljoin(target.url, self.probe_path)

    @Profiler.profile
    async def probe(self, target: Target) -> Observation:
        timeout = target.timeout_seconds or self.request_timeout
        url = self.probe_url(target)
        headers = {"User-Agent": target.user_agent} if target.user_agent else None

        try:
            observation = await asyncio.wait_for(
                self._fetch(target, url, headers, timeout), timeout=timeout
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            logger.warning(f"Probe timeout for {target.url} after {timeout}s: {e!r}")
            return Observation.failure(
                target.id, OutcomeKind.TIMEOUT, error=f"timed out after {timeout}s"
            )
        except httpx.HTTPError as e:
            logger.warning(f"Probe network error for {target.url}: {e!r}")
            return Observation.failure(
                target.id, OutcomeKind.NETWORK_ERROR, error=str(e) or type(e).__name__
            )
        except Exception as e:
            logger.error(f"Unexpected probe error for {target.url}", exc_info=e)
            return Observation.failure(
                target.id, OutcomeKind.NETWORK_ERROR, error=repr(e)
            )

        if observation.is_success:
            logger.info(
                f"Result for {target.url}: colo={observation.colo or 'N/A'}, rtt={observation.rtt_ms:.1f}ms"
            )
        else:
            logger.warning(f"Probe failed for {target.url}: status={observation.status_code}")
        return observation

    async def _fetch(self, target: Target, url: str, headers, timeout: float) -> Observation:
        start = time.perf_counter()
        async with self.client.stream("GET", url, headers=headers, timeout=timeout) as response:
            # headers are in once stream() yields
            rtt_ms = (time.perf_counter() - start) * 1000.0

            if not response.is_success:
                return Observation.failure(
                    target.id,
                    OutcomeKind.HTTP_ERROR,
                    status_code=response.status_code,
                    error=f"HTTP {response.status_code}",
                )

            colo = colo_from_header(self.colo_header, response.headers.get(self.colo_header))
            if colo is None and self.colo_body_fallback:
                body = await response.aread()
                colo = parse_trace_colo(body.decode("utf-8", errors="replace"))

        return Observation.success(target.id, round(rtt_ms, 3), colo)
