"""Output renderer: rich tables and JSON for a cycle summary."""

import json
import sys
from io import StringIO

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from bnt.aggregator import aggregate
from bnt.models import CycleSummary, TestOutcome

# (header, attribute) pairs of the per-bootnode table.
_OUTCOME_COLUMNS = [
    ("Operator", "id"),
    ("Network", "network"),
    ("Status", "status"),
    ("Peers", "discovered_peers"),
    ("Duration (ms)", "test_duration_ms"),
    ("Bootnode", "bootnode"),
    ("Error", "error_details"),
]


def render(
    summary: CycleSummary,
    fmt: str,
    *,
    file: object | None = None,
    width: int | None = None,
) -> None:
    """Dispatch output to the appropriate formatter.

    Args:
        summary: Cycle summary to render.
        fmt: Output format — ``"table"`` or ``"json"``.
        file: Writable file object for output (default: ``sys.stdout``).
        width: Explicit console width (default: auto-detect).

    Raises:
        ValueError: If *fmt* is not ``"table"`` or ``"json"``.
    """
    if fmt == "table":
        render_table(summary, file=file, width=width)
    elif fmt == "json":
        render_json(summary, file=file)
    else:
        raise ValueError(f"Unknown output format: {fmt!r}")


# ---------------------------------------------------------------------------
# Table (rich) formatter
# ---------------------------------------------------------------------------


def render_table(
    summary: CycleSummary,
    *,
    file: object | None = None,
    width: int | None = None,
) -> None:
    """Render *summary* as ``rich`` tables to *file*.

    Prints one row per probed bootnode, then a per-network table and a
    one-line total.
    """
    out = file or sys.stdout
    console = Console(file=out, highlight=False, width=width)

    outcomes = sorted(summary.outcomes, key=lambda o: (o.network, o.id, o.bootnode))

    table = Table(title=f"Bootnodes — {summary.success_count}/{summary.total} working")
    for header, _ in _OUTCOME_COLUMNS:
        table.add_column(header)
    for outcome in outcomes:
        table.add_row(*[_fmt_cell(outcome, attr) for _, attr in _OUTCOME_COLUMNS])
    console.print(table)

    states = aggregate(summary.outcomes)
    if states:
        t = Table(title="Networks")
        t.add_column("Network")
        t.add_column("Working", justify="right")
        t.add_column("Total", justify="right")
        t.add_column("Failure reasons")
        for state in states:
            reasons = ", ".join(f"{r} ×{n}" for r, n in state.failure_reasons)
            working = str(state.working) if state.up else f"[red]{state.working}[/red]"
            t.add_row(escape(state.network), working, str(state.total), reasons or "—")
        console.print(t)

    console.print(
        f"  {summary.success_count}/{summary.total} successful, "
        f"{len(summary.failed)} failed, {summary.errors} crashed "
        f"in {summary.duration_seconds:.1f}s"
    )


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------


def render_json(summary: CycleSummary, *, file: object | None = None) -> None:
    """Render *summary* as JSON to *file*."""
    out = file or sys.stdout
    json.dump(_summary_to_dict(summary), out, indent=2)
    out.write("\n")  # type: ignore[union-attr]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _summary_to_dict(summary: CycleSummary) -> dict:
    return {
        "total": summary.total,
        "success_count": summary.success_count,
        "errors": summary.errors,
        "peak_concurrency": summary.peak_concurrency,
        "duration_seconds": round(summary.duration_seconds, 3),
        "failed": [
            {"network": network, "operator": operator, "bootnode": bootnode}
            for network, operator, bootnode in summary.failed
        ],
        "results": [o.to_dict() for o in summary.outcomes],
    }


def _fmt_cell(outcome: TestOutcome, attr: str) -> str:
    """Format one table cell; ``None`` becomes ``"—"``."""
    if attr == "status":
        colour = "green" if outcome.valid else "red"
        return f"[{colour}]{outcome.status.value}[/{colour}]"
    value = getattr(outcome, attr)
    if value is None:
        return "—"
    return escape(str(value))


def render_to_string(summary: CycleSummary, fmt: str, *, width: int = 200) -> str:
    """Render to a string instead of stdout — useful for testing."""
    buf = StringIO()
    render(summary, fmt, file=buf, width=width)
    return buf.getvalue()
