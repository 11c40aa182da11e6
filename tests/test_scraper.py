"""Tests for bnt.scraper and bnt.backoff — fetching and parsing node metrics."""

import random
import textwrap
from unittest.mock import MagicMock

import pytest
import requests

from bnt.backoff import BackoffPolicy
from bnt.models import MetricsStatus
from bnt.poller import HealthPoller, Phase
from bnt.scraper import MetricsScraper, ScrapeError, parse_metrics

PAYLOAD = textwrap.dedent("""\
    # HELP substrate_sub_libp2p_peerset_num_discovered Number of nodes stored in the peerset
    # TYPE substrate_sub_libp2p_peerset_num_discovered gauge
    substrate_sub_libp2p_peerset_num_discovered{chain="polkadot"} 12
    # HELP substrate_sub_libp2p_peers_count Number of connected peers
    # TYPE substrate_sub_libp2p_peers_count gauge
    substrate_sub_libp2p_peers_count{chain="polkadot"} 4
    substrate_block_height{status="best",chain="polkadot"} 1234567
""")


def _probe() -> MagicMock:
    probe = MagicMock()
    probe.metrics_url = "http://127.0.0.1:50000/metrics"
    probe.exit_code = None
    probe.describe.return_value = "acme/polkadot (bootnode: /ip4/1.2.3.4) on ports 50000/50001"
    return probe


def _response(text: str = PAYLOAD, status: int = 200) -> MagicMock:
    response = MagicMock()
    response.text = text
    response.status_code = status
    if status >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status} Server Error")
    return response


class TestBackoffPolicy:
    """BackoffPolicy grows delays exponentially and adds bounded jitter."""

    def test_base_doubles(self) -> None:
        policy = BackoffPolicy(base_delay=0.5)
        assert [policy.base(n) for n in range(1, 5)] == [0.5, 1.0, 2.0, 4.0]

    def test_delay_within_jitter_bound(self) -> None:
        policy = BackoffPolicy(base_delay=0.5, max_jitter=0.25, rng=random.Random(7))
        for attempt in range(1, 5):
            delay = policy.delay(attempt)
            assert policy.base(attempt) <= delay <= policy.base(attempt) + 0.25

    def test_invalid_attempts_rejected(self) -> None:
        with pytest.raises(ValueError, match="max_attempts"):
            BackoffPolicy(max_attempts=0)


class TestParseMetrics:
    """parse_metrics() extracts the peer counters from exposition text."""

    def test_extracts_both_counters(self) -> None:
        snap = parse_metrics(PAYLOAD)
        assert snap.status is MetricsStatus.AVAILABLE
        assert snap.counts == {"discovered": 12, "connected": 4}
        assert snap.peers == 12

    def test_unlabelled_metric(self) -> None:
        snap = parse_metrics("substrate_sub_libp2p_peerset_num_discovered 3\n")
        assert snap.peers == 3

    def test_float_value_truncated(self) -> None:
        snap = parse_metrics("substrate_sub_libp2p_peerset_num_discovered 5.9\n")
        assert snap.peers == 5

    def test_no_recognized_metric(self) -> None:
        snap = parse_metrics("substrate_block_height 10\nprocess_open_fds 31\n")
        assert snap.status is MetricsStatus.NO_METRIC_FOUND
        assert snap.peers == 0

    def test_connected_only_is_available(self) -> None:
        snap = parse_metrics("substrate_sub_libp2p_peers_count 2\n")
        assert snap.status is MetricsStatus.AVAILABLE
        assert snap.peers == 0

    def test_malformed_line_is_skipped(self) -> None:
        text = textwrap.dedent("""\
            substrate_sub_libp2p_peers_count{chain="polkadot"} not-a-number
            substrate_sub_libp2p_peerset_num_discovered 8
            substrate_sub_libp2p_peers_count
        """)
        snap = parse_metrics(text)
        assert snap.counts == {"discovered": 8}

    def test_nan_is_skipped(self) -> None:
        snap = parse_metrics("substrate_sub_libp2p_peerset_num_discovered NaN\n")
        assert snap.status is MetricsStatus.NO_METRIC_FOUND

    @pytest.mark.parametrize("text", ["", "  \n", "# HELP only comments\n"])
    def test_empty_payload_has_no_metric(self, text: str) -> None:
        snap = parse_metrics(text)
        assert snap.status is MetricsStatus.NO_METRIC_FOUND
        assert snap.peers == 0


class TestFetch:
    """MetricsScraper.fetch() retries with backoff and reports exhaustion."""

    def test_returns_body(self) -> None:
        session = MagicMock()
        session.get.return_value = _response()
        scraper = MetricsScraper(session, sleep=MagicMock())

        assert scraper.fetch(_probe()) == PAYLOAD
        session.get.assert_called_once_with("http://127.0.0.1:50000/metrics", timeout=5.0)

    def test_recovers_after_transient_error(self) -> None:
        session = MagicMock()
        session.get.side_effect = [requests.ConnectionError("refused"), _response()]
        sleep = MagicMock()
        scraper = MetricsScraper(session, sleep=sleep)

        assert scraper.fetch(_probe()) == PAYLOAD
        assert session.get.call_count == 2
        assert sleep.call_count == 1

    def test_exhausts_retry_bound(self) -> None:
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("refused")
        sleep = MagicMock()
        policy = BackoffPolicy(rng=random.Random(1))
        scraper = MetricsScraper(session, policy, sleep=sleep)

        with pytest.raises(ScrapeError, match="after 5 attempts") as exc_info:
            scraper.fetch(_probe())

        assert session.get.call_count == 5
        delays = [c.args[0] for c in sleep.call_args_list]
        assert len(delays) == 4
        for attempt, delay in enumerate(delays, start=1):
            assert delay >= policy.base(attempt)
        assert "acme/polkadot" in str(exc_info.value)
        assert "50000/50001" in str(exc_info.value)

    def test_bad_status_counts_as_failure(self) -> None:
        session = MagicMock()
        session.get.return_value = _response(status=503)
        scraper = MetricsScraper(
            session, BackoffPolicy(max_attempts=2), sleep=MagicMock()
        )

        with pytest.raises(ScrapeError, match="503"):
            scraper.fetch(_probe())
        assert session.get.call_count == 2


class TestCheck:
    """MetricsScraper.check() combines fetch and parse."""

    def test_check(self) -> None:
        session = MagicMock()
        session.get.return_value = _response()
        snap = MetricsScraper(session, sleep=MagicMock()).check(_probe())
        assert snap.peers == 12

    def test_exited_node_is_unavailable(self) -> None:
        session = MagicMock()
        probe = _probe()
        probe.exit_code = 1

        snap = MetricsScraper(session, sleep=MagicMock()).check(probe)

        assert snap.status is MetricsStatus.UNAVAILABLE
        assert snap.reason == "node process exited with code 1"
        session.get.assert_not_called()

    def test_empty_body_ends_polling_as_no_metric_found(self) -> None:
        session = MagicMock()
        session.get.return_value = _response(text="")
        scraper = MetricsScraper(session, sleep=MagicMock())
        clock = [0.0]

        def sleep(seconds: float) -> None:
            clock[0] += seconds

        poller = HealthPoller(
            scraper, timeout=10_000, min_peers=1, clock=lambda: clock[0], sleep=sleep
        )
        state = poller.run(_probe())

        assert state.phase is Phase.NO_METRIC_FOUND
        assert state.failures == 3
        assert session.get.call_count == 3
