#!/usr/bin/env python3
"""GC Diagnose - JVM garbage collection log analysis.

Reads a GC log from any HotSpot collector (Serial, Parallel, CMS, G1,
Shenandoah, Z; legacy or unified logging), reports throughput, pause and
safepoint statistics, and lists findings ranked error > warn > info.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

from gc_diagnose.analyzer import RunSnapshot, analyze_log
from gc_diagnose.models import AnalysisSettings, TimeWarpError, finding_level

__version__ = "1.0.0"

logger = logging.getLogger("gc_diagnose")

# ============================================================
# RICH OUTPUT RENDERING
# ============================================================

GC_DIAGNOSE_THEME = Theme(
    {
        "critical": "bold red",
        "warning": "bold yellow",
        "success": "bold green",
        "info": "cyan",
        "metric": "white",
        "label": "dim white",
        "header": "bold magenta",
    }
)

console = Console(theme=GC_DIAGNOSE_THEME)

LEVEL_STYLES = {"error": "critical", "warn": "warning", "info": "info"}


def configure_logging(verbose: bool) -> None:
    """Route library logging through the themed console."""
    handler = RichHandler(console=console, show_path=False, markup=False)
    logger.handlers = [handler]
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger.propagate = False


def format_micros(micros: int) -> str:
    return f"{micros / 1_000_000:.3f} secs"


def format_kb(kb: int) -> str:
    if kb >= 1024 * 1024:
        return f"{kb / (1024 * 1024):.1f}G"
    if kb >= 1024:
        return f"{kb / 1024:.1f}M"
    return f"{kb}K"


def format_bytes(value: int) -> str:
    return format_kb(value // 1024)


def create_key_value_table(title: str, rows: list[tuple[str, str]]) -> Table:
    """Create a simple two-column key/value table."""
    table = Table(title=title, show_header=False, box=None, padding=(0, 2))
    table.add_column("Metric", style="label")
    table.add_column("Value", style="metric")
    for label, value in rows:
        table.add_row(label, value)
    return table


def build_overview_rows(snapshot: RunSnapshot) -> list[tuple[str, str]]:
    rows: list[tuple[str, str]] = []
    if snapshot.release_string:
        rows.append(("JVM Version", snapshot.release_string))
    elif snapshot.vm_info:
        rows.append(("JVM Version", snapshot.vm_info))
    if snapshot.jvm_options:
        rows.append(("Options", snapshot.jvm_options))
    if snapshot.collectors:
        rows.append(("Collectors", ", ".join(c.value for c in snapshot.collectors)))
    if snapshot.memory:
        rows.append(("Memory", snapshot.memory))
    if snapshot.start_date is not None:
        rows.append(("Start Date", snapshot.start_date.isoformat(timespec="milliseconds")))
    rows.append(("Run Duration", f"{snapshot.jvm_run_duration / 1000:.3f} secs"))
    return rows


def build_gc_rows(snapshot: RunSnapshot) -> list[tuple[str, str]]:
    rows = [
        ("Blocking Events", str(snapshot.blocking_event_count)),
        ("GC Throughput", f"{snapshot.gc_throughput}%"),
        ("GC Max Pause", format_micros(snapshot.gc_pause_max)),
        ("GC Total Pause", format_micros(snapshot.gc_pause_total)),
    ]
    if snapshot.max_heap_space > 0:
        rows.append(("Heap Space Max", format_kb(snapshot.max_heap_space)))
        rows.append(("Heap Occupancy Max", format_kb(snapshot.max_heap_occupancy)))
        rows.append(("Heap After GC Max", format_kb(snapshot.max_heap_after_gc)))
    if snapshot.max_perm_space > 0:
        rows.append(("Metaspace/Perm Space Max", format_kb(snapshot.max_perm_space)))
        rows.append(("Metaspace/Perm After GC Max", format_kb(snapshot.max_perm_after_gc)))
    if snapshot.new_ratio > 0:
        rows.append(("NewRatio", str(snapshot.new_ratio)))
    if snapshot.parallel_count > 0:
        rows.append(("Parallel Events", str(snapshot.parallel_count)))
        rows.append(("Inverted Parallelism", str(snapshot.inverted_parallelism_count)))
    if snapshot.serial_count > 0:
        rows.append(("Serial Events", str(snapshot.serial_count)))
        rows.append(("Inverted Serialism", str(snapshot.inverted_serialism_count)))
    if snapshot.sys_gt_user_count > 0:
        rows.append(("Sys > User", str(snapshot.sys_gt_user_count)))
    for allocation in snapshot.allocations:
        if allocation.allocated_kb_per_sec > 0:
            rows.append((f"{allocation.allocation_type} Allocation Rate", f"{allocation.allocated_kb_per_sec}K/sec"))
    return rows


def build_safepoint_rows(snapshot: RunSnapshot) -> list[tuple[str, str]]:
    rows: list[tuple[str, str]] = []
    if snapshot.stopped_time_event_count > 0:
        rows += [
            ("Stopped Time Events", str(snapshot.stopped_time_event_count)),
            ("Stopped Time Throughput", f"{snapshot.stopped_time_throughput}%"),
            ("Stopped Time Max Pause", format_micros(snapshot.stopped_time_max)),
            ("Stopped Time Total", format_micros(snapshot.stopped_time_total)),
            ("GC/Stopped Ratio", f"{snapshot.gc_stopped_ratio}%"),
        ]
    if snapshot.unified_safepoint_event_count > 0:
        rows += [
            ("Safepoint Events", str(snapshot.unified_safepoint_event_count)),
            ("Safepoint Throughput", f"{snapshot.unified_safepoint_throughput}%"),
            ("Safepoint Max Pause", format_micros(snapshot.unified_safepoint_time_max // 1000)),
            ("Safepoint Total", format_micros(snapshot.unified_safepoint_time_total // 1000)),
            ("GC/Safepoint Ratio", f"{snapshot.gc_unified_safepoint_ratio}%"),
        ]
    return rows


def render_findings_panel(snapshot: RunSnapshot) -> Panel:
    """Render findings coloured by level."""
    if not snapshot.analysis:
        return Panel(Text("No findings", style="success"), title="Analysis", border_style="green")

    border_style = {"error": "red", "warn": "yellow", "info": "cyan"}[snapshot.worst_level or "info"]
    text = Text()
    for index, (key, literal) in enumerate(snapshot.analysis):
        style = LEVEL_STYLES[finding_level(key)]
        text.append(f"*{literal}", style=style)
        text.append(f" ({key})", style="label")
        if index < len(snapshot.analysis) - 1:
            text.append("\n")
    return Panel(text, title="Analysis", border_style=border_style, expand=True)


def render_entries_panel(title: str, entries: list[str], style: str) -> Panel:
    return Panel(Text("\n".join(entries)), title=f"[{style}]{title}[/{style}]", border_style="yellow")


def render_rich_output(snapshot: RunSnapshot, log_file: Path, throughput_threshold: int) -> None:
    console.print(Panel(f"GC Diagnose: {log_file.name}", style="header", expand=True))
    console.print(create_key_value_table("JVM", build_overview_rows(snapshot)))
    console.print(create_key_value_table("Garbage Collection", build_gc_rows(snapshot)))
    if safepoint_rows := build_safepoint_rows(snapshot):
        console.print(create_key_value_table("Safepoints", safepoint_rows))
    if snapshot.safepoint_summaries:
        table = Table(title="Safepoint Operations", show_header=True, header_style="header")
        table.add_column("Operation")
        table.add_column("Count", justify="right")
        table.add_column("Total", justify="right")
        table.add_column("Max", justify="right")
        for summary in sorted(snapshot.safepoint_summaries, key=lambda s: s.total, reverse=True):
            table.add_row(
                summary.operation,
                str(summary.count),
                format_micros(summary.total // 1000),
                format_micros(summary.max // 1000),
            )
        console.print(table)

    console.print(render_findings_panel(snapshot))

    if snapshot.gc_bottlenecks:
        console.print(
            render_entries_panel(
                f"GC Bottlenecks (throughput < {throughput_threshold}%)", snapshot.gc_bottlenecks, "warning"
            )
        )
    if snapshot.safepoint_bottlenecks:
        console.print(
            render_entries_panel(
                f"Safepoint Bottlenecks (throughput < {throughput_threshold}%)",
                snapshot.safepoint_bottlenecks,
                "warning",
            )
        )
    if snapshot.unidentified_lines:
        console.print(
            render_entries_panel(
                f"Unidentified Log Lines ({len(snapshot.unidentified_lines)})",
                snapshot.unidentified_lines,
                "critical",
            )
        )


# ============================================================
# TYPER CLI INTERFACE
# ============================================================

app = typer.Typer(
    name="gc-diagnose",
    help="JVM GC log analyzer with findings for Serial, Parallel, CMS, G1, Shenandoah and Z",
    add_completion=False,
    rich_markup_mode="rich",
)


@app.command()
def analyze(
    log_file: Annotated[
        Path,
        typer.Argument(
            help="Path to GC log file to analyze",
            exists=True,
            file_okay=True,
            dir_okay=False,
            readable=True,
        ),
    ],
    options: Annotated[
        str | None,
        typer.Option(
            "--options",
            help="JVM options, used when the log has no command line flags header",
        ),
    ] = None,
    start_date: Annotated[
        datetime | None,
        typer.Option(
            "--start-date",
            help="JVM start date (e.g. 2024-01-15T08:30:00) to resolve datestamps",
            formats=["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%dT%H:%M:%S.%f"],
        ),
    ] = None,
    reorder: Annotated[
        bool,
        typer.Option(
            "--reorder",
            help="Sort events by timestamp instead of failing on out-of-order logging",
        ),
    ] = False,
    throughput_threshold: Annotated[
        int,
        typer.Option(
            "--throughput-threshold",
            help="Throughput percentage below which a pause is a bottleneck (default: 90)",
            min=0,
            max=100,
        ),
    ] = 90,
    reject_limit: Annotated[
        int,
        typer.Option(
            "--reject-limit",
            help="Maximum unidentified lines to keep (default: 1000)",
            min=0,
        ),
    ] = 1000,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable verbose output with detailed parsing information",
        ),
    ] = False,
) -> None:
    """Analyze a JVM GC log file.

    Exit codes: 0 = clean, 1 = warnings, 2 = errors.
    """
    configure_logging(verbose)

    try:
        settings = AnalysisSettings(throughput_threshold=throughput_threshold, reject_limit=reject_limit)

        with Progress(
            SpinnerColumn(), TextColumn("[progress.description]{task.description}"), console=console
        ) as progress:
            task = progress.add_task("[cyan]Analyzing GC log...", total=None)
            # Lines are read as the analysis consumes them
            with log_file.open(encoding="utf-8", errors="replace") as f:
                snapshot = analyze_log(
                    f, options, reorder=reorder, settings=settings, start_date=start_date
                )
            progress.update(task, completed=100)

        render_rich_output(snapshot, log_file, throughput_threshold)

        if snapshot.worst_level == "error":
            sys.exit(2)
        elif snapshot.worst_level == "warn":
            sys.exit(1)

    except TimeWarpError as e:
        console.print("[critical]ERROR: Logging reversed[/critical]")
        console.print(Text(e.prior_entry), style="label")
        console.print(Text(e.current_entry), style="metric")
        console.print("[info]Rerun with --reorder to sort events by timestamp.[/info]")
        sys.exit(1)
    except (ValueError, OSError) as e:
        console.print(f"[critical]ERROR: {e}[/critical]")
        if verbose:
            console.print_exception()
        sys.exit(1)


@app.command()
def version() -> None:
    """Display version."""
    console.print(f"gc-diagnose {__version__}")


if __name__ == "__main__":
    app()
