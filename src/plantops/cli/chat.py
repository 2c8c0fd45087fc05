"""plantops clear-chat — delete all conversation history."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from plantops.cli.errors import err_no_db
from plantops.db.connection import DEFAULT_DB_PATH, Database
from plantops.db.repository import Repository
from plantops.memory.manager import MemoryManager

console = Console()


def clear_chat_cmd(
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .plantops.db."),
    ] = DEFAULT_DB_PATH,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Delete every conversation and message. Documents are not touched."""
    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)

    if not yes:
        if not typer.confirm("Delete all conversations?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)

    with Database(db) as conn:
        conversations, messages = MemoryManager(Repository(conn)).delete_all()
    console.print(
        f"[green]✓[/] Deleted {conversations} conversations, {messages} messages"
    )
