"""Data models: Target, MetricsSnapshot, TestOutcome, CycleSummary."""

from dataclasses import dataclass, field
from enum import Enum

# Command kinds that attach to a relay chain over RPC.
PARACHAIN_KINDS = frozenset({"parachain", "encointer"})


@dataclass(frozen=True)
class Target:
    """One (network, operator, bootnode) combination to probe.

    Attributes:
        network: Network name (e.g. "polkadot", "asset-hub-kusama").
        operator: Operator / provider id that runs the bootnode.
        bootnode: Multiaddr of the bootnode under test.
        command_kind: Node flavour, e.g. "relaychain" or "parachain".
    """

    network: str
    operator: str
    bootnode: str
    command_kind: str = "relaychain"

    @property
    def is_parachain(self) -> bool:
        return self.command_kind in PARACHAIN_KINDS

    @property
    def relay_chain(self) -> str:
        """Relay chain name: the part of the network name after the last ``-``."""
        return self.network.rsplit("-", 1)[-1]

    @property
    def protocol(self) -> str:
        """Transport of the bootnode multiaddr (``wss``, ``ws``, ``tcp``)."""
        parts = self.bootnode.split("/")
        for proto in ("wss", "ws", "tcp"):
            if proto in parts:
                return proto
        return "unknown"

    def __str__(self) -> str:
        return f"{self.operator}/{self.network}"


class MetricsStatus(Enum):
    """How usable a single metrics scrape was."""

    AVAILABLE = "available"
    NO_METRIC_FOUND = "noMetricFound"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class MetricsSnapshot:
    """Result of parsing one metrics payload.

    Attributes:
        counts: Semantic key (``discovered``, ``connected``) to peer count.
        status: Whether a recognized metric was present.
        reason: Why the payload was unusable, for ``UNAVAILABLE``.
    """

    counts: dict[str, int] = field(default_factory=dict)
    status: MetricsStatus = MetricsStatus.NO_METRIC_FOUND
    reason: str | None = None

    @property
    def peers(self) -> int:
        return self.counts.get("discovered", 0)


class TestStatus(Enum):
    """Terminal status of one probe, serialized in camelCase."""

    __test__ = False  # not a pytest test class

    SUCCESS = "success"
    METRICS_UNAVAILABLE = "metricsUnavailable"
    NO_METRIC_FOUND = "noMetricFound"
    TIMEOUT = "timeout"
    NODE_STARTUP_FAILED = "nodeStartupFailed"


# Label used for the failure_reason dimension of exported metrics.
FAILURE_REASONS: dict[TestStatus, str] = {
    TestStatus.NODE_STARTUP_FAILED: "startup_failed",
    TestStatus.METRICS_UNAVAILABLE: "metrics_unavailable",
    TestStatus.NO_METRIC_FOUND: "no_metrics",
    TestStatus.TIMEOUT: "timeout",
}


@dataclass(frozen=True)
class TestOutcome:
    """Durable result of one probe.

    Attributes:
        id: Operator id of the probed bootnode.
        network: Network name.
        bootnode: Bootnode multiaddr.
        valid: Whether the bootnode passed.
        test_duration_ms: Wall-clock duration of the probe.
        discovered_peers: Peers discovered (0 unless the probe succeeded).
        status: Terminal status.
        error_details: Error text, when the probe failed with one.
    """

    __test__ = False

    id: str
    network: str
    bootnode: str
    valid: bool
    test_duration_ms: int
    discovered_peers: int
    status: TestStatus
    error_details: str | None = None

    @classmethod
    def build(
        cls,
        target: Target,
        *,
        status: TestStatus,
        discovered_peers: int,
        duration_ms: int,
        min_peers: int,
        error_details: str | None = None,
    ) -> "TestOutcome":
        """Create an outcome, deriving ``valid`` from status and peer count."""
        return cls(
            id=target.operator,
            network=target.network,
            bootnode=target.bootnode,
            valid=status is TestStatus.SUCCESS and discovered_peers >= min_peers,
            test_duration_ms=duration_ms,
            discovered_peers=discovered_peers,
            status=status,
            error_details=error_details,
        )

    @property
    def failure_reason(self) -> str:
        if self.valid:
            return "none"
        return FAILURE_REASONS.get(self.status, "below_min_peers")

    def to_dict(self) -> dict:
        """Serialize to the result-file representation."""
        return {
            "id": self.id,
            "network": self.network,
            "bootnode": self.bootnode,
            "valid": self.valid,
            "test_duration_ms": self.test_duration_ms,
            "discovered_peers": self.discovered_peers,
            "status": self.status.value,
            "error_details": self.error_details,
        }


@dataclass
class CycleSummary:
    """Aggregate over one full pass of the target set.

    Attributes:
        total: Number of probes scheduled.
        success_count: Number of valid outcomes.
        failed: ``(network, operator, bootnode)`` triples that did not pass.
        duration_seconds: Wall-clock duration of the cycle.
        outcomes: Every outcome produced, in completion order.
        errors: Number of probes that crashed without producing an outcome.
        peak_concurrency: Most probes that held a slot at the same time.
    """

    total: int = 0
    success_count: int = 0
    failed: list[tuple[str, str, str]] = field(default_factory=list)
    duration_seconds: float = 0.0
    outcomes: list[TestOutcome] = field(default_factory=list)
    errors: int = 0
    peak_concurrency: int = 0

    def add(self, outcome: TestOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.valid:
            self.success_count += 1
        else:
            self.failed.append((outcome.network, outcome.id, outcome.bootnode))
