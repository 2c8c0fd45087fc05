"""plantops upload / plantops ingest — put documents into the vector index.

Usage:
  plantops upload manual.pdf             # store the file (two-phase create)
  plantops upload manual.pdf --ingest    # store, then chunk + embed
  plantops ingest --id <FILE_ID>         # (re-)ingest a stored file
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn

from plantops.cli.errors import (
    err_config,
    err_file_not_found,
    err_ingest_failed,
    err_no_api_key,
    err_no_db,
    err_path_not_found,
    err_unsupported_type,
)
from plantops.config import ConfigError, PlantOpsConfig, load_config
from plantops.db.connection import DEFAULT_DB_PATH, Database
from plantops.db.repository import Repository
from plantops.ingest.pipeline import (
    IngestionError,
    IngestionPipeline,
    guess_media_type,
    register_file,
)
from plantops.rag.llm_client import provider_of, validate_api_key

console = Console()


def upload_cmd(
    path: Annotated[Path, typer.Argument(help="Document to upload (.pdf, .txt, .md, ...).")],
    media_type: Annotated[
        str | None,
        typer.Option("--media-type", help="Override the media type guessed from the extension."),
    ] = None,
    ingest: Annotated[
        bool,
        typer.Option("--ingest", help="Chunk and embed the file right after upload."),
    ] = False,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .plantops.db (created if missing)."),
    ] = DEFAULT_DB_PATH,
) -> None:
    """Upload a document into the PlantOps database."""
    if not path.is_file():
        console.print(err_path_not_found(str(path)))
        raise typer.Exit(1)

    mt = media_type or guess_media_type(path.name)
    if mt is None:
        console.print(err_unsupported_type(str(path)))
        raise typer.Exit(1)

    cfg = _load_config_or_exit() if ingest else None

    with Database(db) as conn:
        repo = Repository(conn)
        file = register_file(repo, path.name, mt, path.read_bytes())
        console.print(f"[green]✓[/] Uploaded [bold]{path.name}[/] ({mt}, {file.size:,} bytes)")
        console.print(f"  File ID: {file.id}")

        if cfg is not None:
            _run_ingest(repo, cfg, file.id)


def ingest_cmd(
    file_id: Annotated[str, typer.Option("--id", help="ID of an uploaded file.")],
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .plantops.db."),
    ] = DEFAULT_DB_PATH,
) -> None:
    """Chunk and embed an uploaded file, replacing any earlier chunks."""
    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)

    cfg = _load_config_or_exit()

    with Database(db) as conn:
        repo = Repository(conn)
        if repo.get_file(file_id, with_content=False) is None:
            console.print(err_file_not_found(file_id))
            raise typer.Exit(1)
        _run_ingest(repo, cfg, file_id)


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _load_config_or_exit() -> PlantOpsConfig:
    try:
        return load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc


def _run_ingest(repo: Repository, cfg: PlantOpsConfig, file_id: str) -> None:
    try:
        validate_api_key(cfg.embedding.model)
    except EnvironmentError as exc:
        console.print(err_no_api_key(provider_of(cfg.embedding.model)))
        raise typer.Exit(1) from exc

    pipeline = IngestionPipeline(repo, cfg)
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        transient=True,
        console=console,
    ) as prog:
        prog.add_task("Chunking and embedding…", total=None)
        try:
            report = pipeline.ingest(file_id)
        except IngestionError as exc:
            console.print(err_ingest_failed(str(exc)))
            raise typer.Exit(1) from exc

    console.print(
        f"[green]✓[/] Ingested [bold]{report.source_label}[/]: "
        f"{report.chunks_written} chunks ({report.embedding_model})"
    )
    if report.chunks_replaced:
        console.print(f"  [dim]{report.chunks_replaced} earlier chunks replaced[/]")
