"""plantops remove — delete uploaded files with their chunks and vectors.

Chunks and vec rows are removed first (cascade hook), then the file rows.

Usage:
  plantops remove --id 3f2c...            # one file by ID (repeatable)
  plantops remove --name manual.pdf --yes # every file with that name
  plantops remove --all --yes             # every file and every chunk
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from plantops.cli.errors import err_file_not_found, err_no_db
from plantops.consistency import ConsistencyManager
from plantops.db.connection import DEFAULT_DB_PATH, Database
from plantops.db.models import File
from plantops.db.repository import Repository

console = Console()


def remove_cmd(
    file_id: Annotated[
        list[str] | None,
        typer.Option("--id", help="File ID to remove (repeatable)."),
    ] = None,
    name: Annotated[
        str | None,
        typer.Option("--name", "-n", help="Remove every file with this name."),
    ] = None,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .plantops.db."),
    ] = DEFAULT_DB_PATH,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
    all_files: Annotated[
        bool,
        typer.Option("--all", help="Remove every file and every chunk."),
    ] = False,
) -> None:
    """Remove files and all their chunks from the knowledge base."""
    if all_files and (file_id or name is not None):
        console.print("[red]Error:[/] --all cannot be combined with --id or --name.")
        raise typer.Exit(1)
    if not all_files and not file_id and name is None:
        console.print("[red]Error:[/] Specify --id ID, --name NAME or --all.")
        raise typer.Exit(1)
    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)

    with Database(db) as conn:
        repo = Repository(conn)
        if all_files:
            _remove_all(repo, yes)
            return
        targets = _resolve(repo, file_id or [], name)
        if not targets:
            console.print(err_file_not_found(name or ", ".join(file_id or [])))
            raise typer.Exit(0)

        chunk_count = sum(repo.count_chunks_by_file(f.id) for f in targets)
        console.print(f"\nRemove {len(targets)} file(s):")
        for f in targets:
            console.print(f"  [bold]{f.name}[/]  [dim]{f.id}[/]")
        console.print(f"  Chunks: {chunk_count}")

        if not yes:
            if not typer.confirm("Confirm removal?", default=False):
                console.print("[dim]Cancelled.[/]")
                raise typer.Exit(0)

        removed = ConsistencyManager(repo).delete_files([f.id for f in targets])
        console.print(f"\n[green]✓[/] Removed {removed} file(s), {chunk_count} chunks")


def _resolve(repo: Repository, ids: list[str], name: str | None) -> list[File]:
    targets: dict[str, File] = {}
    for fid in ids:
        file = repo.get_file(fid, with_content=False)
        if file is not None:
            targets[file.id] = file
    if name is not None:
        for file in repo.find_files(name=name):
            targets[file.id] = file
    return list(targets.values())


def _remove_all(repo: Repository, yes: bool) -> None:
    file_count = len(repo.file_ids())
    chunk_count = repo.count_chunks()
    console.print(f"\nRemove ALL documents: {file_count} file(s), {chunk_count} chunks")
    if not yes:
        if not typer.confirm("Confirm removal of everything?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)

    files, chunks = ConsistencyManager(repo).delete_all_files()
    console.print(f"\n[green]✓[/] Removed {files} file(s), {chunks} chunks")
