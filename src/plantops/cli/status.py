"""plantops status command.

Shows configuration, knowledge base and conversation stats, plus
consistency warnings (orphan chunks, files without chunks).
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel

from plantops.config import PlantOpsConfig, load_config
from plantops.consistency import ConsistencyManager
from plantops.db.connection import DEFAULT_DB_PATH, Database
from plantops.db.migrations import schema_version
from plantops.db.repository import Repository
from plantops.db.vectors import list_vec_tables

console = Console()


def status_cmd(
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .plantops.db."),
    ] = DEFAULT_DB_PATH,
) -> None:
    """Show configuration, knowledge base and conversation status."""
    # Load config (silently — status works even without plantops.yaml)
    try:
        cfg = load_config()
    except Exception:
        cfg = PlantOpsConfig()

    _show_config_panel(db, cfg)

    if not db.exists():
        console.print(
            Panel(
                "[yellow]No database found.[/]\n"
                "  Run:  plantops upload <PATH> --ingest",
                title="[bold]Knowledge Base[/]",
                expand=False,
            )
        )
        return

    with Database(db) as conn:
        repo = Repository(conn)
        _show_knowledge_panel(conn, repo)
        _show_chat_panel(repo)


# ---------------------------------------------------------------------------
# Panel renderers
# ---------------------------------------------------------------------------


def _show_config_panel(db: Path, cfg: PlantOpsConfig) -> None:
    db_info = f"{db}"
    if db.exists():
        size_mb = db.stat().st_size / (1024 * 1024)
        db_info = f"{db} ({size_mb:.1f} MB)"

    resource = cfg.resource.base_url or "[dim](not configured — documents only)[/]"
    lines = [
        f"Database:   {db_info}",
        f"Resource:   {resource}",
        f"Generation: {cfg.generation.model}",
        f"Embedding:  {cfg.embedding.model} ({cfg.embedding.dimensions} dims)",
    ]
    if cfg.resource.base_url:
        lines.insert(2, f"OData:      {cfg.resource.odata_version}")
    console.print(Panel("\n".join(lines), title="[bold]Configuration[/]", expand=False))


def _show_knowledge_panel(conn: sqlite3.Connection, repo: Repository) -> None:
    files = repo.list_files()
    vec_tables = list_vec_tables(conn)

    lines = [
        f"Files: [bold]{len(files)}[/]  |  "
        f"Chunks: [bold]{repo.count_chunks():,}[/]  |  "
        f"Vec tables: [bold]{len(vec_tables)}[/]  |  "
        f"Schema: v{schema_version(conn)}"
    ]
    for name in vec_tables:
        count = conn.execute(f"SELECT COUNT(*) FROM [{name}]").fetchone()[0]  # noqa: S608
        lines.append(f"  [dim]{name}[/] ({count:,} vectors)")

    empty = [f for f in files if repo.count_chunks_by_file(f.id) == 0]
    if empty:
        lines.append(f"[yellow]Not ingested ({len(empty)}):[/]")
        for f in empty:
            lines.append(f"  {f.name}  [dim]plantops ingest --id {f.id}[/]")

    orphans = ConsistencyManager(repo).count_orphans()
    if orphans:
        lines.append(f"[yellow]⚠ {orphans} orphan chunks[/] — run:  plantops repair")

    console.print(Panel("\n".join(lines), title="[bold]Knowledge Base[/]", expand=False))


def _show_chat_panel(repo: Repository) -> None:
    conversations = repo.list_conversations()
    lines = [
        f"Conversations: [bold]{len(conversations)}[/]  |  "
        f"Messages: [bold]{repo.count_messages():,}[/]"
    ]
    for conv in conversations[:5]:
        lines.append(f"  {conv.title or '(untitled)'}  [dim]{conv.id}[/]")
    console.print(Panel("\n".join(lines), title="[bold]Chat[/]", expand=False))
