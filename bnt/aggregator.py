"""Aggregator: per-network bootnode health for one cycle."""

from dataclasses import dataclass, field

from bnt.models import TestOutcome


@dataclass
class NetworkState:
    """Health of one network's bootnodes in a cycle.

    Attributes:
        network: Network name.
        working: Bootnodes that passed.
        total: Bootnodes probed.
        failure_reasons: ``(reason, count)`` pairs sorted by count descending.
    """

    network: str
    working: int = 0
    total: int = 0
    failure_reasons: list[tuple[str, int]] = field(default_factory=list)

    @property
    def up(self) -> bool:
        """A network is usable as long as one of its bootnodes works."""
        return self.working > 0


def aggregate(outcomes: list[TestOutcome]) -> list[NetworkState]:
    """Group outcomes by network.

    Args:
        outcomes: Outcomes of one cycle.

    Returns:
        One ``NetworkState`` per network, sorted by network name.
    """
    states: dict[str, NetworkState] = {}
    reasons: dict[str, dict[str, int]] = {}

    for outcome in outcomes:
        state = states.setdefault(outcome.network, NetworkState(network=outcome.network))
        state.total += 1
        if outcome.valid:
            state.working += 1
        else:
            counts = reasons.setdefault(outcome.network, {})
            counts[outcome.failure_reason] = counts.get(outcome.failure_reason, 0) + 1

    for network, counts in reasons.items():
        states[network].failure_reasons = sorted(
            counts.items(), key=lambda item: (-item[1], item[0])
        )

    return [states[name] for name in sorted(states)]


def down_networks(states: list[NetworkState]) -> list[str]:
    """Names of networks where no bootnode worked."""
    return [s.network for s in states if not s.up]
