"""Node command registry and abstract NodeCommand base class."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from bnt.config import BntConfig
    from bnt.models import Target


class NodeCommand(ABC):
    """Builds the command line of a throwaway node for one command kind.

    Every node is started with hardware benchmarks and mDNS disabled so
    the only way it can find peers is through the bootnode under test.
    """

    @abstractmethod
    def binary(self, config: BntConfig) -> str:
        """Return the node binary for this command kind."""

    def extra_args(self, target: Target) -> list[str]:
        """Arguments appended after the common ones."""
        return []

    def argv(
        self,
        target: Target,
        config: BntConfig,
        *,
        data_dir: Path,
        chain_spec: Path,
        metrics_port: int,
        p2p_port: int,
    ) -> list[str]:
        """Build the full argument vector for *target*.

        Args:
            target: Target being probed.
            config: Loaded application configuration.
            data_dir: Private working directory of the node.
            chain_spec: Chain specification of the target's network.
            metrics_port: Port for the node's Prometheus endpoint.
            p2p_port: Port for the node's peer-to-peer listener.

        Returns:
            The argument vector, binary first.
        """
        return [
            self.binary(config),
            "--no-hardware-benchmarks",
            "--no-mdns",
            "--prometheus-external",
            f"--prometheus-port={metrics_port}",
            f"--port={p2p_port}",
            "-d",
            str(data_dir),
            "--chain",
            str(chain_spec),
            "--bootnodes",
            target.bootnode,
            *self.extra_args(target),
        ]


def _build_registry() -> dict[str, type[NodeCommand]]:
    """Build the command-kind → NodeCommand-class mapping.

    Imports are deferred to avoid circular imports.
    """
    from bnt.probes.parachain import EncointerCommand, ParachainCommand
    from bnt.probes.relaychain import RelayChainCommand

    return {
        "relaychain": RelayChainCommand,
        "parachain": ParachainCommand,
        "encointer": EncointerCommand,
    }


def get_command(kind: str) -> NodeCommand:
    """Look up and instantiate the node command for *kind*.

    Raises:
        ValueError: If *kind* is not in the registry.
    """
    registry = _build_registry()
    command_cls = registry.get(kind)
    if command_cls is None:
        known = ", ".join(sorted(registry))
        raise ValueError(f"Unknown command kind {kind!r}. Known kinds: {known}")
    return command_cls()


def registered_kinds() -> list[str]:
    """Return a sorted list of all registered command kinds."""
    return sorted(_build_registry())
