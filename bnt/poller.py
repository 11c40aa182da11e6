"""Health polling: decide whether a probe's node discovers enough peers.

The poller is an explicit state machine::

    STARTING → POLLING → SUCCESS
                       → NO_METRIC_FOUND
                       → METRICS_UNAVAILABLE
                       → TIMEOUT

``advance`` is the pure transition function; ``HealthPoller.run`` drives it
against a live node with a warm-up delay, a fixed poll interval and an
absolute deadline.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING

from bnt.models import MetricsSnapshot, MetricsStatus, TestStatus
from bnt.scraper import MetricsScraper, ScrapeError

if TYPE_CHECKING:
    from bnt.process import ProbeProcess

logger = logging.getLogger(__name__)

WARMUP_SECONDS = 5.0
POLL_INTERVAL_SECONDS = 1.0
FAILURE_THRESHOLD = 3


class Phase(Enum):
    STARTING = "starting"
    POLLING = "polling"
    SUCCESS = "success"
    NO_METRIC_FOUND = "noMetricFound"
    METRICS_UNAVAILABLE = "metricsUnavailable"
    TIMEOUT = "timeout"


_TERMINAL_STATUS: dict[Phase, TestStatus] = {
    Phase.SUCCESS: TestStatus.SUCCESS,
    Phase.NO_METRIC_FOUND: TestStatus.NO_METRIC_FOUND,
    Phase.METRICS_UNAVAILABLE: TestStatus.METRICS_UNAVAILABLE,
    Phase.TIMEOUT: TestStatus.TIMEOUT,
}


@dataclass(frozen=True)
class PollState:
    """Where a probe is in the polling protocol.

    Attributes:
        phase: Current phase.
        failures: Consecutive non-success observations.
        peers: Discovered peers, set on ``SUCCESS``.
        error: Failure detail, set on ``METRICS_UNAVAILABLE``.
    """

    phase: Phase = Phase.STARTING
    failures: int = 0
    peers: int = 0
    error: str | None = None

    @property
    def terminal(self) -> bool:
        return self.phase in _TERMINAL_STATUS

    @property
    def status(self) -> TestStatus:
        """Outcome status of a terminal state."""
        try:
            return _TERMINAL_STATUS[self.phase]
        except KeyError:
            raise ValueError(f"State {self.phase.value} is not terminal") from None


Observation = MetricsSnapshot | ScrapeError


def advance(
    state: PollState,
    observation: Observation,
    *,
    min_peers: int,
    failure_threshold: int = FAILURE_THRESHOLD,
) -> PollState:
    """Apply one scrape result to *state* and return the next state.

    Args:
        state: Current, non-terminal state.
        observation: Snapshot of a successful scrape, or the ``ScrapeError``
            of a failed one.
        min_peers: Discovered peers needed for ``SUCCESS``.
        failure_threshold: Consecutive failures that end polling early.

    Returns:
        The next state.  Terminal states are returned unchanged.
    """
    if state.terminal:
        return state

    if isinstance(observation, ScrapeError):
        return _fail(state, Phase.METRICS_UNAVAILABLE, str(observation), failure_threshold)

    if observation.status is MetricsStatus.AVAILABLE:
        if observation.peers >= min_peers:
            return PollState(Phase.SUCCESS, peers=observation.peers)
        return PollState(Phase.POLLING)

    if observation.status is MetricsStatus.NO_METRIC_FOUND:
        return _fail(state, Phase.NO_METRIC_FOUND, None, failure_threshold)

    return _fail(state, Phase.METRICS_UNAVAILABLE, observation.reason, failure_threshold)


def _fail(state: PollState, phase: Phase, error: str | None, threshold: int) -> PollState:
    failures = state.failures + 1
    if failures >= threshold:
        return PollState(phase, failures=failures, error=error)
    return replace(state, phase=Phase.POLLING, failures=failures)


def timed_out(state: PollState) -> PollState:
    """Terminal ``TIMEOUT`` state for a probe that ran out of time."""
    if state.terminal:
        return state
    return PollState(Phase.TIMEOUT, failures=state.failures)


class HealthPoller:
    """Polls one probe until it succeeds, fails or runs out of time.

    Args:
        scraper: Source of metrics snapshots.
        timeout: Seconds from the first poll to the deadline.
        min_peers: Discovered peers needed for success.
        warmup: Seconds to wait before the first poll.
        poll_interval: Seconds between polls.
        failure_threshold: Consecutive failures that end polling early.
        clock: Monotonic clock, injectable for tests.
        sleep: Sleep function, injectable for tests.
    """

    def __init__(
        self,
        scraper: MetricsScraper,
        *,
        timeout: float,
        min_peers: int,
        warmup: float = WARMUP_SECONDS,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        failure_threshold: int = FAILURE_THRESHOLD,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.scraper = scraper
        self.timeout = timeout
        self.min_peers = min_peers
        self.warmup = warmup
        self.poll_interval = poll_interval
        self.failure_threshold = failure_threshold
        self.clock = clock
        self.sleep = sleep

    def run(self, probe: ProbeProcess) -> PollState:
        """Poll *probe* and return the terminal state reached."""
        state = PollState()
        self.sleep(self.warmup)

        state = replace(state, phase=Phase.POLLING)
        deadline = self.clock() + self.timeout

        while self.clock() < deadline:
            observation: Observation
            try:
                observation = self.scraper.check(probe)
            except ScrapeError as exc:
                observation = exc

            state = advance(
                state,
                observation,
                min_peers=self.min_peers,
                failure_threshold=self.failure_threshold,
            )
            if state.terminal:
                self._log_terminal(probe, state)
                return state
            self.sleep(self.poll_interval)

        state = timed_out(state)
        self._log_terminal(probe, state)
        return state

    def _log_terminal(self, probe: ProbeProcess, state: PollState) -> None:
        if state.phase is Phase.SUCCESS:
            logger.info(
                "Bootnode working for %s - discovered %d peers", probe.target, state.peers
            )
        elif state.phase is Phase.NO_METRIC_FOUND:
            logger.warning("No metrics found for %s", probe.describe())
        elif state.phase is Phase.METRICS_UNAVAILABLE:
            logger.error("Metrics unavailable for %s: %s", probe.describe(), state.error)
        else:
            logger.warning("Timeout waiting for peer discovery for %s", probe.describe())
