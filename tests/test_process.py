"""Tests for bnt.process — spawning and tearing down probe nodes."""

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from bnt.config import BntConfig
from bnt.models import Target
from bnt.ports import PortAllocator
from bnt.process import ProbeProcess, StartupFailed, working_dir_for

BOOTNODE = "/dns/boot.acme.io/tcp/30333/p2p/12D3KooWA"


@pytest.fixture
def config(tmp_path: Path) -> BntConfig:
    specs = tmp_path / "specs"
    specs.mkdir()
    (specs / "polkadot.json").write_text("{}", encoding="utf-8")
    (specs / "asset-hub-kusama.json").write_text("{}", encoding="utf-8")
    return BntConfig(data_dir=str(tmp_path / "data"), chain_spec_dir=str(specs))


def _target(**overrides: object) -> Target:
    defaults: dict = {"network": "polkadot", "operator": "acme", "bootnode": BOOTNODE}
    defaults.update(overrides)
    return Target(**defaults)


class TestWorkingDir:
    """working_dir_for() keys directories by operator, network and bootnode."""

    def test_prefix(self, tmp_path: Path) -> None:
        path = working_dir_for(_target(), tmp_path)
        assert path.parent == tmp_path
        assert path.name.startswith("acme_polkadot_")

    def test_distinct_bootnodes_get_distinct_dirs(self, tmp_path: Path) -> None:
        a = working_dir_for(_target(bootnode="/ip4/1.1.1.1/tcp/1"), tmp_path)
        b = working_dir_for(_target(bootnode="/ip4/2.2.2.2/tcp/1"), tmp_path)
        assert a != b


class TestStart:
    """ProbeProcess.start() spawns the node or raises StartupFailed."""

    @patch("bnt.process.subprocess.Popen")
    def test_spawns_with_allocated_ports(
        self, mock_popen: MagicMock, config: BntConfig
    ) -> None:
        proc = ProbeProcess.start(_target(), config, PortAllocator(50000, 50010))

        assert proc.metrics_port == 50000
        assert proc.p2p_port == 50001
        assert proc.data_dir.is_dir()
        assert proc.metrics_url == "http://127.0.0.1:50000/metrics"

        argv = mock_popen.call_args.args[0]
        assert "--prometheus-port=50000" in argv
        assert "--port=50001" in argv
        assert argv[argv.index("--bootnodes") + 1] == BOOTNODE
        kwargs = mock_popen.call_args.kwargs
        assert kwargs["stdout"] is subprocess.DEVNULL
        assert kwargs["stderr"] is subprocess.DEVNULL

    @patch("bnt.process.subprocess.Popen")
    def test_parachain_gets_relay_rpc(
        self, mock_popen: MagicMock, config: BntConfig
    ) -> None:
        target = _target(network="asset-hub-kusama", command_kind="parachain")
        ProbeProcess.start(target, config, PortAllocator(50000, 50010))

        argv = mock_popen.call_args.args[0]
        assert argv[0] == config.parachain_binary
        assert "wss://kusama.dotters.network/" in argv

    @patch("bnt.process.subprocess.Popen")
    def test_missing_chain_spec_fails_fast(
        self, mock_popen: MagicMock, config: BntConfig
    ) -> None:
        target = _target(network="rococo")

        with pytest.raises(StartupFailed, match="Chain spec file does not exist"):
            ProbeProcess.start(target, config, PortAllocator(50000, 50010))

        mock_popen.assert_not_called()
        assert not working_dir_for(target, config.data_dir).exists()

    @patch("bnt.process.subprocess.Popen")
    def test_unknown_command_kind_fails(
        self, mock_popen: MagicMock, config: BntConfig
    ) -> None:
        with pytest.raises(StartupFailed, match="Unknown command kind"):
            ProbeProcess.start(
                _target(command_kind="solochain"), config, PortAllocator(50000, 50010)
            )
        mock_popen.assert_not_called()

    @patch("bnt.process.subprocess.Popen", side_effect=FileNotFoundError("no such binary"))
    def test_spawn_error_fails(self, _mock_popen: MagicMock, config: BntConfig) -> None:
        target = _target()

        with pytest.raises(StartupFailed, match="Failed to spawn node process"):
            ProbeProcess.start(target, config, PortAllocator(50000, 50010))

        assert not working_dir_for(target, config.data_dir).exists()


class TestExitCode:
    """exit_code reflects whether the node is still running."""

    def test_running(self, tmp_path: Path) -> None:
        process = MagicMock()
        process.poll.return_value = None
        assert ProbeProcess(_target(), process, tmp_path, 50000, 50001).exit_code is None

    def test_exited(self, tmp_path: Path) -> None:
        process = MagicMock()
        process.poll.return_value = 101
        assert ProbeProcess(_target(), process, tmp_path, 50000, 50001).exit_code == 101


class TestCleanup:
    """cleanup() stops the node and removes its working directory once."""

    def _probe(self, tmp_path: Path, process: MagicMock) -> ProbeProcess:
        data_dir = tmp_path / "acme_polkadot"
        data_dir.mkdir()
        (data_dir / "db").mkdir()
        return ProbeProcess(_target(), process, data_dir, 50000, 50001)

    def test_graceful_stop(self, tmp_path: Path) -> None:
        process = MagicMock()
        probe = self._probe(tmp_path, process)

        probe.cleanup()

        process.terminate.assert_called_once()
        process.kill.assert_not_called()
        assert not probe.data_dir.exists()

    def test_force_kill_after_grace_period(self, tmp_path: Path) -> None:
        process = MagicMock()
        process.wait.side_effect = [subprocess.TimeoutExpired("polkadot", 1.0), 0]
        probe = self._probe(tmp_path, process)

        probe.cleanup()

        process.terminate.assert_called_once()
        process.kill.assert_called_once()
        assert not probe.data_dir.exists()

    def test_runs_once(self, tmp_path: Path) -> None:
        process = MagicMock()
        probe = self._probe(tmp_path, process)

        probe.cleanup()
        probe.cleanup()

        process.terminate.assert_called_once()

    def test_context_manager_cleans_up_on_error(self, tmp_path: Path) -> None:
        process = MagicMock()
        probe = self._probe(tmp_path, process)

        with pytest.raises(RuntimeError):
            with probe:
                raise RuntimeError("poll crashed")

        process.terminate.assert_called_once()
        assert not probe.data_dir.exists()

    def test_removal_failure_is_logged_not_raised(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        probe = self._probe(tmp_path, MagicMock())

        with patch("bnt.process.shutil.rmtree", side_effect=PermissionError("denied")):
            probe.cleanup()

        assert "Failed to remove data dir" in caplog.text

    def test_terminate_error_still_removes_dir(self, tmp_path: Path) -> None:
        process = MagicMock()
        process.terminate.side_effect = ProcessLookupError()
        probe = self._probe(tmp_path, process)

        probe.cleanup()

        assert not probe.data_dir.exists()
