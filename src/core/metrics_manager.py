import logging
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server

from contracts.observation import Observation

logger = logging.getLogger(__name__)

RTT_BUCKETS_MS = (10, 25, 50, 100, 200, 300, 500, 750, 1000, 2500, 5000, 10000)


class MetricsManager:
    """
    Prometheus metrics for probes, colo changes, log writes and notifications.

    Each instance owns its own CollectorRegistry so that several managers (for
    example one per test) never collide on metric names.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        self.PROBES = Counter(
            "tracekey_probes_total",
            "Completed probes by target and outcome",
            ["url", "outcome"],
            registry=self.registry,
        )
        self.PROBE_RTT = Histogram(
            "tracekey_probe_rtt_milliseconds",
            "RTT of successful probes in milliseconds",
            ["url"],
            buckets=RTT_BUCKETS_MS,
            registry=self.registry,
        )
        self.IN_FLIGHT = Gauge(
            "tracekey_probes_in_flight",
            "Number of probes currently admitted and running",
            registry=self.registry,
        )
        self.COLO_CHANGES = Counter(
            "tracekey_colo_changes_total",
            "Detected colocation changes by target",
            ["url"],
            registry=self.registry,
        )
        self.LOG_WRITE_FAILURES = Counter(
            "tracekey_log_write_failures_total",
            "Observations that could not be persisted",
            registry=self.registry,
        )
        self.NOTIFICATIONS = Counter(
            "tracekey_notifications_total",
            "Notification posts by result",
            ["result"],
            registry=self.registry,
        )
        logger.info("MetricsManager initialized.")

    def observe_probe(self, observation: Observation):
        self.PROBES.labels(url=observation.url, outcome=observation.outcome.value).inc()
        if observation.rtt_ms is not None:
            self.PROBE_RTT.labels(url=observation.url).observe(observation.rtt_ms)

    def probe_started(self):
        self.IN_FLIGHT.inc()

    def probe_finished(self):
        self.IN_FLIGHT.dec()

    def colo_changed(self, url: str):
        self.COLO_CHANGES.labels(url=url).inc()

    def log_write_failed(self):
        self.LOG_WRITE_FAILURES.inc()

    def notification_sent(self, ok: bool):
        self.NOTIFICATIONS.labels(result="success" if ok else "failure").inc()

    def get_value(self, name: str, labels: Optional[dict] = None) -> float:
        """
        Read a sample value from this manager's registry, 0.0 if absent.
        """
        value = self.registry.get_sample_value(name, labels or {})
        return value if value is not None else 0.0

    def serve(self, port: int):
        """
        Expose the registry over HTTP on the given port.
        """
        start_http_server(port, registry=self.registry)
        logger.info(f"Prometheus metrics exposed on port {port}")
