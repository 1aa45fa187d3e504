from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Sequence

from rich import box
from rich.console import Console
from rich.table import Table

from ranksync.domain.models import Record

PREVIEW_LIMIT = 10

_COUNT_ROWS = (
    ("Rows scanned", "total_scanned"),
    ("Records decoded", "records_decoded"),
    ("Rows skipped", "rows_skipped"),
    ("Duplicate ids", "duplicates"),
    ("New", "new_count"),
    ("Changed", "changed_count"),
    ("Unchanged", "unchanged_count"),
    ("Written", "written"),
)


def print_run_summary(result: Mapping[str, Any], console: Optional[Console] = None) -> None:
    """
    Render a sync run result as a rich table.

    Counts come first, then one row per profiled phase when the run
    recorded any.
    """
    console = console or Console()

    if not result:
        console.print("[yellow]No results to display.[/yellow]")
        return

    title = f"Sync Results: {result.get('source', 'unknown source')}"
    if result.get("no_changes"):
        title = f"{title}\n[dim]No changes detected; store already up to date[/dim]"

    table = Table(title=title, box=box.ROUNDED)
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", justify="right", style="magenta")

    for label, key in _COUNT_ROWS:
        if key in result:
            table.add_row(label, f"{result[key]:,}")
    if "state" in result:
        table.add_row("Final state", str(result["state"]))
    for collection, strategy in result.get("reindexed", {}).items():
        table.add_row(f"Reindex {collection}", strategy)

    console.print(table)

    phases = result.get("phases") or {}
    if phases:
        print_phase_timings(phases, console=console)


def print_phase_timings(phases: Mapping[str, Dict[str, Any]], console: Optional[Console] = None) -> None:
    console = console or Console()

    table = Table(title="Phase Timings", box=box.ROUNDED)
    table.add_column("Phase", style="cyan", no_wrap=True)
    table.add_column("Duration (s)", justify="right", style="green")
    table.add_column("Peak Memory (MB)", justify="right", style="yellow")
    table.add_column("CPU %", justify="right", style="red")

    for phase, stats in phases.items():
        duration = stats.get("duration_seconds") or 0.0
        mem_bytes = stats.get("peak_rss_bytes")
        mem_str = f"{mem_bytes / (1024 * 1024):.2f}" if mem_bytes else "N/A"
        cpu = stats.get("cpu_percent")
        cpu_str = f"{cpu:.1f}" if cpu is not None else "N/A"
        table.add_row(phase, f"{duration:.3f}", mem_str, cpu_str)

    console.print(table)


def print_new_records(
    records: Sequence[Record],
    limit: int = PREVIEW_LIMIT,
    console: Optional[Console] = None,
) -> None:
    """
    Preview newly inserted records: the first and last `limit` of them.
    """
    console = console or Console()

    if not records:
        console.print("[dim]No new records.[/dim]")
        return

    table = Table(
        title=f"New Records ({len(records):,})",
        box=box.SIMPLE,
        caption=f"Showing first and last {limit}" if len(records) > 2 * limit else None,
    )
    table.add_column("ID", justify="right", style="magenta")
    table.add_column("Name", style="cyan")
    table.add_column("Year", justify="right")
    table.add_column("Rank", justify="right", style="green")

    if len(records) > 2 * limit:
        head, tail = records[:limit], records[-limit:]
    else:
        head, tail = records, []

    for record in head:
        table.add_row(*_preview_row(record))
    if tail:
        table.add_row("...", "...", "", "")
        for record in tail:
            table.add_row(*_preview_row(record))

    console.print(table)


def _preview_row(record: Record) -> tuple[str, str, str, str]:
    year = str(record.year_published) if record.year_published is not None else "-"
    rank = f"{record.rank:,}" if record.rank is not None else "-"
    return str(record.id), record.name, year, rank


__all__ = ["print_new_records", "print_phase_timings", "print_run_summary"]
