# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Rich console views of sweep plans and ledgers.

Usage:
    sortctl-report logs/duckdb_parallelism_20250101_120000/ledger.jsonl
    sortctl-report logs/.../ledger.jsonl --csv > results.csv
"""

import argparse
import csv
import logging
import shlex
import sys
from collections.abc import Iterable
from pathlib import Path

from rich.console import Console
from rich.table import Table
from rich.tree import Tree

from sortctl.core.ledger import LedgerEntry, ResultLedger
from sortctl.core.sweep import SweepPlan
from sortctl.logging_utils import setup_logging

logger = logging.getLogger(__name__)

console = Console()

_STATUS_STYLES = {"success": "green", "failed": "red", "timed_out": "yellow"}

CSV_FIELDS = [
    "sequence",
    "backend",
    "memory_limit",
    "threads",
    "status",
    "duration",
    "wall_clock",
    "exit_code",
    "message",
]


def _format_seconds(value: float | None) -> str:
    return "-" if value is None else f"{value:.2f}"


def display_plan(plan: SweepPlan, backend) -> None:
    """Display the resolved plan with the command each point would run."""
    config = plan.config
    tree = Tree(f"[bold cyan]Sweep '{config.name}'[/]")
    tree.add(f"backend: [magenta]{config.backend_type}[/] ({backend.describe_target()})")
    dataset = config.dataset
    tree.add(f"dataset: [green]{dataset.input_file}[/] ({dataset.format}) -> table {dataset.table}")
    sweep_branch = tree.add(f"[bold]Sweep ({plan.mode})[/]")
    for axis in plan.axes:
        sweep_branch.add(f"{axis.name}: [cyan]{list(axis.values)}[/]")
    console.print(tree)

    table = Table(title=f"{len(plan)} point(s)", show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim", width=4)
    table.add_column("Memory", style="yellow")
    table.add_column("Threads", style="yellow")
    table.add_column("Artifact", style="green")
    table.add_column("Command", style="dim")

    for i, run in enumerate(plan, 1):
        artifact = backend.artifact_path(run)
        table.add_row(
            str(i),
            run.memory_limit,
            run.threads,
            str(artifact) if artifact else "(count mode)",
            shlex.join(backend.build_run_command(run)),
        )

    console.print(table)


def display_entries(entries: Iterable[LedgerEntry], title: str = "Results") -> None:
    """Display ledger entries as a rich table."""
    entries = list(entries)
    if not entries:
        console.print("[yellow]No results recorded.[/]")
        return

    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim", width=4)
    table.add_column("Backend", style="magenta")
    table.add_column("Memory")
    table.add_column("Threads")
    table.add_column("Status")
    table.add_column("Duration (s)", justify="right")
    table.add_column("Wall clock (s)", justify="right", style="dim")
    table.add_column("Message", style="dim")

    for entry in entries:
        style = _STATUS_STYLES.get(entry.status, "white")
        table.add_row(
            str(entry.sequence),
            entry.config.backend,
            entry.config.memory_limit,
            entry.config.threads,
            f"[{style}]{entry.status}[/]",
            _format_seconds(entry.duration),
            _format_seconds(entry.wall_clock),
            entry.message,
        )

    console.print(table)


def write_csv(entries: Iterable[LedgerEntry], stream) -> None:
    """Write one CSV row per ledger entry."""
    writer = csv.DictWriter(stream, fieldnames=CSV_FIELDS)
    writer.writeheader()
    for entry in entries:
        writer.writerow(
            {
                "sequence": entry.sequence,
                "backend": entry.config.backend,
                "memory_limit": entry.config.memory_limit,
                "threads": entry.config.threads,
                "status": entry.status,
                "duration": "" if entry.duration is None else entry.duration,
                "wall_clock": entry.wall_clock,
                "exit_code": "" if entry.exit_code is None else entry.exit_code,
                "message": entry.message,
            }
        )


def main(argv: list[str] | None = None):
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Summarize a sweep ledger")
    parser.add_argument("ledger", type=str, help="Path to ledger.jsonl (or the sweep log directory)")
    parser.add_argument("--csv", action="store_true", help="Write CSV to stdout instead of a table")
    args = parser.parse_args(argv)

    setup_logging()

    path = Path(args.ledger)
    if path.is_dir():
        path = path / "ledger.jsonl"
    if not path.exists():
        logger.error("Ledger not found: %s", path)
        sys.exit(1)

    entries = ResultLedger(path).replay()
    if args.csv:
        write_csv(entries, sys.stdout)
    else:
        display_entries(entries, title=str(path))
    sys.exit(0)


if __name__ == "__main__":
    main()
