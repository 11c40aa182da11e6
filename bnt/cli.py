"""CLI entry point for the bnt tool."""

import logging
import sys

import click

from bnt.config import BntConfig, ConfigError, load_config
from bnt.output import render
from bnt.persistence import ResultStore
from bnt.poller import HealthPoller
from bnt.scheduler import ProbeScheduler
from bnt.scraper import MetricsScraper
from bnt.targets import TargetsError, load_targets
from bnt.telemetry import TelemetryExporter

logger = logging.getLogger(__name__)

FORMATS = ("table", "json")


@click.command()
@click.option(
    "--config",
    "-c",
    "config_path",
    default=None,
    type=click.Path(exists=False),
    help="Path to YAML config file (default: ~/.bnt/config.yaml).",
)
@click.option(
    "--bootnodes",
    "-b",
    "bootnodes_path",
    default=None,
    type=click.Path(exists=False),
    help="Path to the bootnode target list (overrides the config file).",
)
@click.option(
    "--max-concurrent",
    type=click.IntRange(min=1),
    default=None,
    help="Number of probes run at the same time.",
)
@click.option(
    "--timeout",
    type=click.IntRange(min=1),
    default=None,
    help="Seconds a probe may poll before timing out.",
)
@click.option(
    "--min-peers",
    type=click.IntRange(min=0),
    default=None,
    help="Discovered peers a bootnode must yield to pass.",
)
@click.option(
    "--prometheus-port",
    type=click.IntRange(min=1, max=65535),
    default=None,
    help="Port of the exported /metrics endpoint.",
)
@click.option(
    "--once",
    is_flag=True,
    help="Run a single cycle, print the results and exit.",
)
@click.option(
    "--format",
    "-f",
    "output_format",
    default="table",
    type=click.Choice(FORMATS, case_sensitive=False),
    show_default=True,
    help="Output format for --once.",
)
@click.option("--debug", is_flag=True, help="Enable debug logging.")
def main(
    config_path: str | None,
    bootnodes_path: str | None,
    max_concurrent: int | None,
    timeout: int | None,
    min_peers: int | None,
    prometheus_port: int | None,
    once: bool,
    output_format: str,
    debug: bool,
) -> None:
    """Parallel bootnode tester for Polkadot networks."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    try:
        cfg = load_config(config_path).with_overrides(
            bootnodes_config=bootnodes_path,
            max_concurrent=max_concurrent,
            timeout=timeout,
            min_peers=min_peers,
            prometheus_port=prometheus_port,
            debug=True if debug else None,
        )
    except (ConfigError, FileNotFoundError) as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    if cfg.debug:
        logging.getLogger().setLevel(logging.DEBUG)
    logger.debug("Config loaded: %s", cfg)

    try:
        targets = load_targets(cfg.bootnodes_config)
    except TargetsError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    scheduler = build_scheduler(cfg)

    if once:
        summary = scheduler.run_forever(targets, max_cycles=1)
        if summary is not None:
            render(summary, output_format.lower())
        return

    try:
        scheduler.exporter.serve(cfg.prometheus_port)
    except OSError as exc:
        click.echo(f"Error: cannot serve metrics on port {cfg.prometheus_port}: {exc}", err=True)
        sys.exit(1)

    scheduler.run_forever(targets)


def build_scheduler(cfg: BntConfig) -> ProbeScheduler:
    """Wire the probe pipeline for *cfg*.

    Args:
        cfg: Loaded application configuration.

    Returns:
        A ``ProbeScheduler`` with a fresh exporter, store and poller.
    """
    poller = HealthPoller(
        MetricsScraper(),
        timeout=cfg.timeout,
        min_peers=cfg.min_peers,
    )
    return ProbeScheduler(
        cfg,
        poller,
        ResultStore(cfg.results_path),
        TelemetryExporter(),
    )
