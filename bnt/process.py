"""Lifecycle of the throwaway node process spawned for one probe."""

from __future__ import annotations

import hashlib
import logging
import shutil
import subprocess
import time
from pathlib import Path
from typing import TYPE_CHECKING

from bnt.probes import get_command

if TYPE_CHECKING:
    from bnt.config import BntConfig
    from bnt.models import Target
    from bnt.ports import PortAllocator

logger = logging.getLogger(__name__)

# Seconds to wait for the node to exit after SIGTERM before SIGKILL.
KILL_GRACE_SECONDS = 1.0


class StartupFailed(Exception):
    """Raised when the node for a probe could not be started."""


def working_dir_for(target: Target, data_dir: Path | str) -> Path:
    """Return the private working directory for *target*.

    Keyed by operator and network plus a short digest of the bootnode so
    two bootnodes of the same operator never share a directory.
    """
    digest = hashlib.sha1(target.bootnode.encode("utf-8")).hexdigest()[:8]
    return Path(data_dir) / f"{target.operator}_{target.network}_{digest}"


class ProbeProcess:
    """A running node dialing exactly one bootnode.

    Use as a context manager: leaving the ``with`` block always kills the
    node and removes its working directory, whatever the probe's result.

    Attributes:
        target: Target being probed.
        process: Handle of the spawned node.
        data_dir: Private working directory.
        metrics_port: Port of the node's Prometheus endpoint.
        p2p_port: Port of the node's peer-to-peer listener.
        started_at: ``time.monotonic()`` value at spawn.
    """

    def __init__(
        self,
        target: Target,
        process: subprocess.Popen,
        data_dir: Path,
        metrics_port: int,
        p2p_port: int,
    ) -> None:
        self.target = target
        self.process = process
        self.data_dir = data_dir
        self.metrics_port = metrics_port
        self.p2p_port = p2p_port
        self.started_at = time.monotonic()
        self._cleaned_up = False

    @classmethod
    def start(
        cls,
        target: Target,
        config: BntConfig,
        ports: PortAllocator,
    ) -> ProbeProcess:
        """Spawn a node for *target*.

        Args:
            target: Target to probe.
            config: Loaded application configuration.
            ports: Allocator the metrics and p2p ports are drawn from.

        Returns:
            The running ``ProbeProcess``.

        Raises:
            StartupFailed: If the working directory cannot be created, the
                chain spec is missing, the command kind is unknown, or the
                binary cannot be executed.
        """
        data_dir = working_dir_for(target, config.data_dir)
        try:
            data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StartupFailed(f"Cannot create data dir {data_dir}: {exc}") from exc

        try:
            return cls._spawn(target, config, ports, data_dir)
        except StartupFailed:
            _remove_dir(data_dir)
            raise

    @classmethod
    def _spawn(
        cls,
        target: Target,
        config: BntConfig,
        ports: PortAllocator,
        data_dir: Path,
    ) -> ProbeProcess:
        chain_spec = Path(config.chain_spec_dir) / f"{target.network}.json"
        if not chain_spec.exists():
            raise StartupFailed(f"Chain spec file does not exist: {chain_spec}")

        try:
            command = get_command(target.command_kind)
        except ValueError as exc:
            raise StartupFailed(str(exc)) from exc

        metrics_port, p2p_port = ports.pair()
        argv = command.argv(
            target,
            config,
            data_dir=data_dir,
            chain_spec=chain_spec,
            metrics_port=metrics_port,
            p2p_port=p2p_port,
        )

        logger.info(
            "Starting node for %s prometheus: %d, p2p: %d",
            target,
            metrics_port,
            p2p_port,
        )
        logger.debug("Node command: %s", " ".join(argv))

        try:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as exc:
            raise StartupFailed(f"Failed to spawn node process {argv[0]}: {exc}") from exc

        return cls(target, process, data_dir, metrics_port, p2p_port)

    @property
    def metrics_url(self) -> str:
        return f"http://127.0.0.1:{self.metrics_port}/metrics"

    @property
    def exit_code(self) -> int | None:
        """Exit status of the node, or ``None`` while it is still running."""
        return self.process.poll()

    def describe(self) -> str:
        """Identify this probe in log and error messages."""
        return (
            f"{self.target} (bootnode: {self.target.bootnode}) "
            f"on ports {self.metrics_port}/{self.p2p_port}"
        )

    def cleanup(self, grace: float = KILL_GRACE_SECONDS) -> None:
        """Stop the node and remove its working directory.

        Sends SIGTERM, waits up to *grace* seconds and then SIGKILLs a node
        that is still alive.  Runs at most once; later calls are no-ops.
        Errors are logged, never raised.
        """
        if self._cleaned_up:
            return
        self._cleaned_up = True

        try:
            self.process.terminate()
            try:
                self.process.wait(timeout=grace)
            except subprocess.TimeoutExpired:
                logger.warning(
                    "Process still running after graceful shutdown, force killing %s",
                    self.describe(),
                )
                self.process.kill()
                self.process.wait(timeout=grace)
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.error("Failed to stop node for %s: %s", self.describe(), exc)

        _remove_dir(self.data_dir)

    def __enter__(self) -> ProbeProcess:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cleanup()


def _remove_dir(path: Path) -> None:
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.error("Failed to remove data dir %s: %s", path, exc)
