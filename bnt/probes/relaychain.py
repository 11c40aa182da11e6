"""Relay-chain node command."""

from bnt.config import BntConfig
from bnt.probes import NodeCommand


class RelayChainCommand(NodeCommand):
    """Runs the ``polkadot`` binary against a relay-chain spec."""

    def binary(self, config: BntConfig) -> str:
        return config.polkadot_binary
