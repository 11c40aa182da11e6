"""Probe scheduling: bounded fan-out over targets and the cycle loop."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed

from bnt.aggregator import aggregate, down_networks
from bnt.config import BntConfig
from bnt.models import CycleSummary, Target, TestOutcome, TestStatus
from bnt.persistence import ResultStore, ResultStoreError
from bnt.poller import HealthPoller
from bnt.ports import PortAllocator
from bnt.process import ProbeProcess, StartupFailed
from bnt.telemetry import TelemetryExporter

logger = logging.getLogger(__name__)


class AdmissionGate:
    """Counting gate bounding how many probes hold a slot at once.

    Also tracks the current and peak number of slot holders.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self.in_flight = 0
        self.peak = 0
        self._slots = threading.BoundedSemaphore(capacity)
        self._lock = threading.Lock()

    def reset_peak(self) -> None:
        """Start a new peak measurement from the current holders."""
        with self._lock:
            self.peak = self.in_flight

    def __enter__(self) -> AdmissionGate:
        self._slots.acquire()
        with self._lock:
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
        return self

    def __exit__(self, *exc_info: object) -> None:
        with self._lock:
            self.in_flight -= 1
        self._slots.release()


class ProbeScheduler:
    """Runs every target through start → poll → cleanup, N at a time.

    Args:
        config: Loaded application configuration.
        poller: Poller deciding each probe's outcome.
        store: Result store outcomes are merged into.
        exporter: Telemetry updated with each outcome, if any.
        ports: Port allocator; built from the config's range by default.
        starter: Spawns the node for a target.
        clock: Monotonic clock, injectable for tests.
        sleep: Sleep function used between cycles.
    """

    def __init__(
        self,
        config: BntConfig,
        poller: HealthPoller,
        store: ResultStore,
        exporter: TelemetryExporter | None = None,
        *,
        ports: PortAllocator | None = None,
        starter: Callable[[Target, BntConfig, PortAllocator], ProbeProcess] = ProbeProcess.start,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.poller = poller
        self.store = store
        self.exporter = exporter
        self.ports = ports or PortAllocator(config.base_port, config.max_port)
        self.starter = starter
        self.clock = clock
        self.sleep = sleep
        self.gate = AdmissionGate(config.max_concurrent)

    # ------------------------------------------------------------------
    # One probe
    # ------------------------------------------------------------------

    def run_probe(self, target: Target) -> TestOutcome:
        """Probe a single bootnode and return its outcome.

        Startup failures are returned as ``nodeStartupFailed`` outcomes
        without polling.  The node is always cleaned up before returning.
        """
        logger.info("Testing bootnode %s for %s", target.bootnode, target)
        started = self.clock()

        try:
            process = self.starter(target, self.config, self.ports)
        except StartupFailed as exc:
            logger.error("Node startup failed for %s: %s", target, exc)
            return TestOutcome.build(
                target,
                status=TestStatus.NODE_STARTUP_FAILED,
                discovered_peers=0,
                duration_ms=self._elapsed_ms(started),
                min_peers=self.config.min_peers,
                error_details=str(exc),
            )

        with process:
            state = self.poller.run(process)
            duration_ms = self._elapsed_ms(started)

        return TestOutcome.build(
            target,
            status=state.status,
            discovered_peers=state.peers,
            duration_ms=duration_ms,
            min_peers=self.config.min_peers,
            error_details=state.error,
        )

    def _run_unit(self, target: Target) -> TestOutcome:
        with self.gate:
            return self.run_probe(target)

    def _elapsed_ms(self, started: float) -> int:
        return int((self.clock() - started) * 1000)

    # ------------------------------------------------------------------
    # One cycle
    # ------------------------------------------------------------------

    def run_cycle(self, targets: list[Target]) -> CycleSummary:
        """Probe every target once and publish the outcomes.

        A probe that raises is logged and counted as failed; it never
        affects its siblings.
        """
        started = self.clock()
        summary = CycleSummary(total=len(targets))
        if not targets:
            logger.warning("No bootnode targets to test")
            return summary

        self.gate.reset_peak()

        with ThreadPoolExecutor(
            max_workers=self.config.max_concurrent, thread_name_prefix="probe"
        ) as pool:
            futures = {pool.submit(self._run_unit, target): target for target in targets}
            for future in as_completed(futures):
                target = futures[future]
                try:
                    outcome = future.result()
                except Exception:
                    logger.exception("Test failed for %s", target)
                    summary.errors += 1
                    summary.failed.append((target.network, target.operator, target.bootnode))
                    continue
                self._publish(target, outcome)
                summary.add(outcome)

        if self.exporter is not None:
            self.exporter.update_networks(aggregate(summary.outcomes))

        summary.peak_concurrency = self.gate.peak
        summary.duration_seconds = self.clock() - started
        return summary

    def _publish(self, target: Target, outcome: TestOutcome) -> None:
        try:
            self.store.merge(outcome)
        except ResultStoreError as exc:
            logger.error("Failed to store result for %s: %s", target, exc)
        if self.exporter is not None:
            self.exporter.record(target, outcome)

    # ------------------------------------------------------------------
    # Cycle loop
    # ------------------------------------------------------------------

    def run_forever(
        self,
        targets: list[Target],
        *,
        max_cycles: int | None = None,
    ) -> CycleSummary | None:
        """Run cycles back to back, each padded to ``config.interval`` seconds.

        Args:
            targets: Targets probed in every cycle.
            max_cycles: Stop after this many cycles; ``None`` runs forever.

        Returns:
            The summary of the last successful cycle, if any.
        """
        logger.info("Starting continuous bootnode testing...")
        last: CycleSummary | None = None
        cycle = 0

        while max_cycles is None or cycle < max_cycles:
            cycle += 1
            cycle_start = self.clock()
            try:
                last = self.run_cycle(targets)
            except Exception:
                logger.exception("Test cycle failed")
            else:
                log_summary(last)

            if max_cycles is not None and cycle >= max_cycles:
                break

            delay = self.config.interval - (self.clock() - cycle_start)
            if delay > 0:
                logger.info("Waiting %.1fs before next cycle", delay)
                self.sleep(delay)
            else:
                logger.info("Cycle took longer than target time, starting next cycle immediately")

        return last


def log_summary(summary: CycleSummary) -> None:
    """Log success counts and every failing (network, operator, bootnode)."""
    logger.info(
        "Test cycle completed: %d/%d successful, %d failed. Cycle duration: %.1fs",
        summary.success_count,
        summary.total,
        len(summary.failed),
        summary.duration_seconds,
    )
    logger.debug(
        "Peak concurrent probes: %d of %d scheduled", summary.peak_concurrency, summary.total
    )
    if summary.failed:
        logger.info("Failed bootnodes:")
        for network, operator, bootnode in summary.failed:
            logger.info("- %s/%s: %s", operator, network, bootnode)

    down = down_networks(aggregate(summary.outcomes))
    if down:
        logger.warning("No working bootnode for: %s", ", ".join(down))
