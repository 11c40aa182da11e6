"""Metrics scraping: fetch the node's Prometheus endpoint and read peer counts."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

import requests

from bnt.backoff import BackoffPolicy
from bnt.models import MetricsSnapshot, MetricsStatus

if TYPE_CHECKING:
    from bnt.process import ProbeProcess

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 5.0

# Exposition metric name → semantic key.
PEER_METRICS: dict[str, str] = {
    "substrate_sub_libp2p_peerset_num_discovered": "discovered",
    "substrate_sub_libp2p_peers_count": "connected",
}


class ScrapeError(Exception):
    """Raised when the metrics endpoint stayed unreachable after all retries."""


class MetricsScraper:
    """Reads peer counts from a probe's metrics endpoint.

    Args:
        session: HTTP session to issue requests with.
        policy: Retry schedule for failed requests.
        timeout: Per-request timeout in seconds.
        sleep: Sleep function, injectable for tests.
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        policy: BackoffPolicy | None = None,
        *,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.session = session or requests.Session()
        self.policy = policy or BackoffPolicy()
        self.timeout = timeout
        self.sleep = sleep

    def check(self, probe: ProbeProcess) -> MetricsSnapshot:
        """Fetch and parse one snapshot.

        A node that has already exited is reported as ``UNAVAILABLE``
        without touching its endpoint.

        Raises:
            ScrapeError: If the endpoint could not be fetched.
        """
        exit_code = probe.exit_code
        if exit_code is not None:
            return MetricsSnapshot(
                status=MetricsStatus.UNAVAILABLE,
                reason=f"node process exited with code {exit_code}",
            )
        return parse_metrics(self.fetch(probe))

    def fetch(self, probe: ProbeProcess) -> str:
        """Return the raw exposition text served by *probe*.

        Raises:
            ScrapeError: After ``policy.max_attempts`` failed attempts.
        """
        url = probe.metrics_url
        attempts = self.policy.max_attempts
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                response = self.session.get(url, timeout=self.timeout)
                response.raise_for_status()
                return response.text
            except requests.RequestException as exc:
                last_error = exc
                logger.info(
                    "Fetch attempt %d/%d failed for %s: %s",
                    attempt,
                    attempts,
                    probe.describe(),
                    exc,
                )
            if attempt < attempts:
                self.sleep(self.policy.delay(attempt))

        raise ScrapeError(
            f"Failed to fetch metrics after {attempts} attempts for "
            f"{probe.describe()}: {last_error}"
        )


def parse_metrics(text: str) -> MetricsSnapshot:
    """Extract peer counts from Prometheus text exposition format.

    Comment and blank lines are skipped.  The metric name is the first
    token up to any ``{`` label block; the value is the last token,
    truncated to a non-negative integer.  Lines that fail to parse are
    skipped individually.

    Args:
        text: Raw payload.

    Returns:
        A ``MetricsSnapshot``; ``AVAILABLE`` if the discovered or connected
        metric was present, ``NO_METRIC_FOUND`` otherwise (an empty payload
        included).
    """
    counts: dict[str, int] = {}
    for lineno, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue

        tokens = line.split()
        name = tokens[0].split("{", 1)[0]
        key = PEER_METRICS.get(name)
        if key is None:
            continue

        try:
            value = float(tokens[-1])
            counts[key] = max(int(value), 0)
        except (ValueError, OverflowError) as exc:
            # "NaN" and "+Inf" land here too.
            logger.debug("Skipping malformed metrics line %d %r: %s", lineno, line, exc)

    if not counts:
        return MetricsSnapshot(status=MetricsStatus.NO_METRIC_FOUND)
    return MetricsSnapshot(counts=counts, status=MetricsStatus.AVAILABLE)
