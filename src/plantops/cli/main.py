"""PlantOps CLI entry point."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import typer

from plantops.cli.ask import ask_cmd
from plantops.cli.chat import clear_chat_cmd
from plantops.cli.ingest import ingest_cmd, upload_cmd
from plantops.cli.remove import remove_cmd
from plantops.cli.repair import repair_cmd
from plantops.cli.status import status_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("plantops")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"plantops {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="plantops",
    help=(
        "PlantOps — ask questions across your business system and your documents.\n\n"
        "  plantops upload   Store a document (add --ingest to index it).\n"
        "  plantops ask      Answer from structured records or indexed documents."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log progress to stderr."),
    ] = False,
) -> None:
    """PlantOps — hybrid structured + document question answering."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if verbose:
        # LiteLLM and httpx are chatty at DEBUG
        logging.getLogger("LiteLLM").setLevel(logging.INFO)
        logging.getLogger("httpx").setLevel(logging.WARNING)


app.command("upload")(upload_cmd)
app.command("ingest")(ingest_cmd)
app.command("ask")(ask_cmd)
app.command("remove")(remove_cmd)
app.command("repair")(repair_cmd)
app.command("status")(status_cmd)
app.command("clear-chat")(clear_chat_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed PlantOps version."""
    typer.echo(f"plantops {_installed_version()}")


if __name__ == "__main__":
    app()
