"""YAML configuration file loading."""

import logging
from dataclasses import dataclass, fields, replace
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".bnt"
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.yaml"


@dataclass(frozen=True)
class BntConfig:
    """Top-level configuration for the bootnode tester.

    Every field has a default so that a bare ``bnt`` invocation works
    against a conventional Polkadot install.

    Attributes:
        polkadot_binary: Node binary used for relay-chain targets.
        parachain_binary: Node binary used for parachain targets.
        encointer_binary: Node binary used for Encointer targets.
        output_dir: Directory holding ``results.json``.
        data_dir: Parent of the per-probe working directories.
        chain_spec_dir: Directory containing ``<network>.json`` chain specs.
        bootnodes_config: Path of the target list (JSON or YAML).
        max_concurrent: Number of probes allowed to run at once.
        base_port: Lowest port handed out to spawned nodes.
        max_port: Highest port handed out to spawned nodes.
        prometheus_port: Port of our own ``/metrics`` endpoint.
        timeout: Polling deadline per probe, in seconds.
        interval: Target duration of one full cycle, in seconds.
        min_peers: Discovered-peer count a bootnode must reach to pass.
        debug: Enable debug logging.
    """

    polkadot_binary: str = "/usr/local/bin/polkadot"
    parachain_binary: str = "/usr/local/bin/polkadot-parachain"
    encointer_binary: str = "/usr/local/bin/encointer"
    output_dir: str = "/tmp/bootnode_tests"
    data_dir: str = "/tmp/bootnode_data"
    chain_spec_dir: str = "./chain-spec"
    bootnodes_config: str = "bootnodes.json"
    max_concurrent: int = 10
    base_port: int = 49615
    max_port: int = 65535
    prometheus_port: int = 9615
    timeout: int = 30
    interval: int = 300
    min_peers: int = 1
    debug: bool = False

    @property
    def results_path(self) -> Path:
        """Location of the persisted result document."""
        return Path(self.output_dir) / "results.json"

    def with_overrides(self, **overrides: object) -> "BntConfig":
        """Return a copy with every non-``None`` override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        if not changes:
            return self
        merged = replace(self, **changes)
        validate(merged)
        return merged


_CONFIG_FIELDS: frozenset[str] = frozenset(f.name for f in fields(BntConfig))


def load_config(path: Path | str | None = None) -> BntConfig:
    """Load configuration from a YAML file.

    Args:
        path: Explicit path to a YAML config file.  If ``None``, the
            default location (``~/.bnt/config.yaml``) is tried.  If the
            default file doesn't exist, a ``BntConfig`` with all defaults
            is returned silently.

    Returns:
        A populated and validated ``BntConfig`` instance.

    Raises:
        FileNotFoundError: If an explicit *path* was given but doesn't exist.
        ConfigError: If the file cannot be read, contains invalid YAML,
            has an unexpected top-level structure, or holds out-of-range
            values.
    """
    resolved = _resolve_path(path)

    if resolved is None:
        logger.debug("No config file found; using defaults")
        return BntConfig()

    logger.debug("Loading config from %s", resolved)
    try:
        text = resolved.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Cannot read config file {resolved}: {exc}") from exc

    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {resolved}: {exc}") from exc

    if raw is None:
        # Empty file: all defaults.
        return BntConfig()

    if not isinstance(raw, dict):
        raise ConfigError(
            f"Expected a YAML mapping at the top level in {resolved}, "
            f"got {type(raw).__name__}"
        )

    cfg = _build_config(raw, source=resolved)
    try:
        validate(cfg)
    except TypeError as exc:
        # e.g. a quoted number compared against an int
        raise ConfigError(f"Invalid value type in {resolved}: {exc}") from exc
    return cfg


def validate(cfg: BntConfig) -> None:
    """Reject configurations the probe pipeline cannot run with.

    Raises:
        ConfigError: On the first invalid value found.
    """
    if cfg.max_concurrent < 1:
        raise ConfigError(f"max_concurrent must be >= 1, got {cfg.max_concurrent}")
    if not 0 < cfg.base_port <= cfg.max_port <= 65535:
        raise ConfigError(
            f"Invalid port range {cfg.base_port}..{cfg.max_port} "
            f"(need 0 < base_port <= max_port <= 65535)"
        )
    if cfg.timeout <= 0:
        raise ConfigError(f"timeout must be positive, got {cfg.timeout}")
    if cfg.interval < 0:
        raise ConfigError(f"interval must not be negative, got {cfg.interval}")
    if cfg.min_peers < 0:
        raise ConfigError(f"min_peers must not be negative, got {cfg.min_peers}")

    # Each probe takes two ports.
    port_count = cfg.max_port - cfg.base_port + 1
    if port_count < 2 * cfg.max_concurrent:
        logger.warning(
            "Port range %d..%d holds %d ports, fewer than the %d needed by "
            "%d concurrent probes; ports may collide",
            cfg.base_port,
            cfg.max_port,
            port_count,
            2 * cfg.max_concurrent,
            cfg.max_concurrent,
        )


class ConfigError(Exception):
    """Raised when a configuration file is malformed or unreadable."""


# ------------------------------------------------------------------
# Internal helpers
# ------------------------------------------------------------------


def _resolve_path(path: Path | str | None) -> Path | None:
    """Return a concrete ``Path`` to read, or ``None`` if nothing to read.

    Raises:
        FileNotFoundError: If the caller supplied an explicit path that
            doesn't exist on disk.
    """
    if path is not None:
        p = Path(path).expanduser()
        if not p.is_file():
            raise FileNotFoundError(f"Config file not found: {p}")
        return p

    default = DEFAULT_CONFIG_PATH.expanduser()
    if default.is_file():
        return default
    return None


def _build_config(raw: dict, source: Path) -> BntConfig:
    """Map raw YAML dict to a ``BntConfig``, ignoring unknown keys."""
    kwargs: dict[str, object] = {
        key: value for key, value in raw.items() if key in _CONFIG_FIELDS
    }

    unknown = set(raw) - _CONFIG_FIELDS
    if unknown:
        logger.warning(
            "Ignoring unknown config keys in %s: %s",
            source,
            ", ".join(sorted(str(k) for k in unknown)),
        )

    try:
        return BntConfig(**kwargs)
    except TypeError as exc:
        raise ConfigError(f"Invalid configuration in {source}: {exc}") from exc
