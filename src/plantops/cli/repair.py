"""plantops repair — orphan sweep and NULL-parent repair.

Usage:
  plantops repair              # one pass
  plantops repair --every 300  # sweep every 5 minutes until interrupted
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from plantops.cli.errors import err_no_db
from plantops.consistency import ConsistencyManager, RepairReport, SweepReport
from plantops.db.connection import DEFAULT_DB_PATH, Database
from plantops.db.repository import Repository

console = Console()


def repair_cmd(
    every: Annotated[
        float | None,
        typer.Option("--every", help="Repeat every N seconds until interrupted."),
    ] = None,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .plantops.db."),
    ] = DEFAULT_DB_PATH,
) -> None:
    """Delete orphan chunks and backfill missing file references."""
    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)

    with Database(db) as conn:
        manager = ConsistencyManager(Repository(conn))
        if every is None:
            _print_reports(manager.sweep_orphans(), manager.repair_null_references())
            return

        if every <= 0:
            console.print("[red]Error:[/] --every must be a positive number of seconds.")
            raise typer.Exit(1)
        console.print(f"Sweeping every {every:g}s — press Ctrl+C to stop.")
        try:
            manager.run_scheduled(every)
        except KeyboardInterrupt:
            console.print("\n[dim]Stopped.[/]")


def _print_reports(sweep: SweepReport, repair: RepairReport) -> None:
    console.print(
        f"[green]✓[/] Orphan sweep: {sweep.deleted} chunks deleted "
        f"({sweep.before} found, {sweep.after} remaining), "
        f"{sweep.dangling_vectors} dangling vectors removed"
    )
    console.print(
        f"[green]✓[/] Reference repair: {repair.fixed} chunks fixed, "
        f"{repair.unfixable} unfixable"
    )
    for label in repair.unresolved_labels:
        console.print(f"  [yellow]✗[/] {label}: no unique matching file")
