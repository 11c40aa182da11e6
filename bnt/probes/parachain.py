"""Parachain node commands (collator binaries that follow a relay chain)."""

from bnt.config import BntConfig
from bnt.models import Target
from bnt.probes import NodeCommand

RELAY_RPC_TEMPLATE = "wss://{relay}.dotters.network/"


class ParachainCommand(NodeCommand):
    """Runs ``polkadot-parachain`` with a remote relay-chain RPC.

    The relay chain is not synced locally; the node follows it over RPC
    at ``wss://<relay>.dotters.network/``, where ``<relay>`` is the last
    hyphen-separated part of the network name (``asset-hub-kusama`` →
    ``kusama``).
    """

    def binary(self, config: BntConfig) -> str:
        return config.parachain_binary

    def extra_args(self, target: Target) -> list[str]:
        return [
            "--relay-chain-rpc-urls",
            RELAY_RPC_TEMPLATE.format(relay=target.relay_chain),
        ]


class EncointerCommand(ParachainCommand):
    """Encointer ships its own collator binary."""

    def binary(self, config: BntConfig) -> str:
        return config.encointer_binary
