"""Prometheus exporter for probe outcomes.

Example alerting rules::

    - alert: BootnodeDown
      expr: bootnode_status == 0
      for: 5m
      annotations:
        summary: "Bootnode {{ $labels.provider }}/{{ $labels.network }} is down"
        description: "Failed with reason: {{ $labels.failure_reason }}"

    - alert: NetworkWithoutBootnodes
      expr: bootnode_network_up == 0
      for: 15m
"""

import logging

import prometheus_client
from prometheus_client import CollectorRegistry, Counter, Gauge

from bnt.aggregator import NetworkState
from bnt.models import FAILURE_REASONS, Target, TestOutcome

logger = logging.getLogger(__name__)

_ALL_REASONS = ("none", "below_min_peers", *FAILURE_REASONS.values())


class TelemetryExporter:
    """Gauges and counters describing the latest outcome of every bootnode.

    Args:
        registry: Registry to register metrics in; a private one by default
            so several exporters (e.g. in tests) never clash.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()

        self.status = Gauge(
            "bootnode_status",
            "Current bootnode status with reason (1=working, 0=failed)",
            ["network", "provider", "bootnode", "failure_reason"],
            registry=self.registry,
        )
        self.check_duration = Gauge(
            "bootnode_check_duration_ms",
            "Duration of last check in milliseconds",
            ["network", "provider", "bootnode"],
            registry=self.registry,
        )
        self.discovered_peers = Gauge(
            "bootnode_discovered_peers",
            "Peers discovered through the bootnode in the last check",
            ["network", "provider", "bootnode"],
            registry=self.registry,
        )
        self.test_success = Gauge(
            "bootnode_test_success",
            "Whether the last check passed (1) or failed (0), by node type",
            ["network", "provider", "bootnode_type"],
            registry=self.registry,
        )
        self.protocol_success = Gauge(
            "bootnode_protocol_success",
            "Whether the last check over this transport passed (1) or failed (0)",
            ["network", "provider", "protocol"],
            registry=self.registry,
        )
        self.failures = Counter(
            "bootnode_failures",
            "Failed checks by reason",
            ["network", "provider", "reason"],
            registry=self.registry,
        )
        self.network_working = Gauge(
            "bootnode_network_working_bootnodes",
            "Bootnodes of the network that passed in the last cycle",
            ["network"],
            registry=self.registry,
        )
        self.network_total = Gauge(
            "bootnode_network_total_bootnodes",
            "Bootnodes of the network checked in the last cycle",
            ["network"],
            registry=self.registry,
        )
        self.network_up = Gauge(
            "bootnode_network_up",
            "1 if at least one bootnode of the network passed in the last cycle",
            ["network"],
            registry=self.registry,
        )

    def record(self, target: Target, outcome: TestOutcome) -> None:
        """Update every per-bootnode metric from *outcome*."""
        network, provider, bootnode = target.network, target.operator, target.bootnode
        reason = outcome.failure_reason
        passed = 1 if outcome.valid else 0

        # Only the current reason's series may exist for a bootnode.
        for other in _ALL_REASONS:
            if other != reason:
                try:
                    self.status.remove(network, provider, bootnode, other)
                except KeyError:
                    pass
        self.status.labels(network, provider, bootnode, reason).set(passed)

        self.check_duration.labels(network, provider, bootnode).set(outcome.test_duration_ms)
        self.discovered_peers.labels(network, provider, bootnode).set(outcome.discovered_peers)
        self.test_success.labels(network, provider, target.command_kind).set(passed)
        self.protocol_success.labels(network, provider, target.protocol).set(passed)

        if not outcome.valid:
            self.failures.labels(network, provider, reason).inc()

    def update_networks(self, states: list[NetworkState]) -> None:
        """Publish per-network state computed at the end of a cycle."""
        for state in states:
            self.network_working.labels(state.network).set(state.working)
            self.network_total.labels(state.network).set(state.total)
            self.network_up.labels(state.network).set(1 if state.up else 0)

    def render(self) -> bytes:
        """Return the current metrics in text exposition format."""
        return prometheus_client.generate_latest(self.registry)

    def serve(self, port: int, addr: str = "0.0.0.0") -> None:
        """Serve ``/metrics`` on *port* from a daemon thread."""
        prometheus_client.start_http_server(port, addr=addr, registry=self.registry)
        logger.info("Serving metrics on %s:%d/metrics", addr, port)
