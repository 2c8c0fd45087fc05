"""plantops ask — one chat turn through the hybrid router.

Usage:
  plantops ask "Who manufactured the asset on order 4711?"
  plantops ask "And when is it due?" --conversation <ID>
"""

from __future__ import annotations

import uuid
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from plantops.cli.errors import (
    err_backend_failed,
    err_config,
    err_no_api_key,
    err_no_db,
    warn_no_documents,
)
from plantops.config import ConfigError, PlantOpsConfig, load_config
from plantops.db.connection import DEFAULT_DB_PATH, Database
from plantops.db.repository import Repository
from plantops.memory.manager import MemoryManager
from plantops.query.extractor import IntentExtractor
from plantops.query.router import ChatRequest, ChatResponse, HybridRouter
from plantops.query.structured import StructuredQueryHandler
from plantops.rag.fallback import FallbackConfig, RetrievalFallback
from plantops.rag.llm_client import provider_of, validate_api_key
from plantops.rag.retriever import RetrieverConfig
from plantops.schema.odata import ODataClient
from plantops.schema.provider import (
    ODataMetadataProvider,
    SchemaCache,
    SchemaProvider,
    StaticSchemaProvider,
)

console = Console()


def ask_cmd(
    query: Annotated[str, typer.Argument(help="Question in natural language.")],
    conversation: Annotated[
        str | None,
        typer.Option("--conversation", "-c", help="Continue an existing conversation."),
    ] = None,
    user: Annotated[
        str,
        typer.Option("--user", help="User ID recorded on a new conversation."),
    ] = "",
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .plantops.db."),
    ] = DEFAULT_DB_PATH,
) -> None:
    """Ask a question; answered from the structured resource or your documents."""
    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)

    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc

    for model in (cfg.generation.model, cfg.embedding.model):
        try:
            validate_api_key(model)
        except EnvironmentError as exc:
            console.print(err_no_api_key(provider_of(model)))
            raise typer.Exit(1) from exc

    conversation_id = conversation or str(uuid.uuid4())
    request = ChatRequest(
        conversation_id=conversation_id,
        message_id=str(uuid.uuid4()),
        user_query=query,
        user_id=user,
    )

    with Database(db) as conn:
        router = build_router(Repository(conn), cfg)
        try:
            response = router.chat(request)
        except Exception as exc:
            console.print(err_backend_failed(str(exc)))
            raise typer.Exit(1) from exc

    _print_response(response)
    if response.answered_by == "documents" and not response.additional_contents:
        console.print(warn_no_documents(cfg.embedding.model))
    console.print(f"\n[dim]Conversation: {conversation_id}[/]")


def build_router(repo: Repository, cfg: PlantOpsConfig) -> HybridRouter:
    """Wire a HybridRouter from configuration."""
    memory = MemoryManager(
        repo,
        model=cfg.generation.model,
        token_budget=cfg.memory.token_budget,
        max_turns=cfg.memory.max_turns,
    )
    fallback = RetrievalFallback(
        repo,
        RetrieverConfig(embedding_model=cfg.embedding.model, top_k=cfg.retrieval.top_k),
        FallbackConfig(
            model=cfg.generation.model,
            scorer_model=cfg.generation.scorer_model,
            attribution=cfg.attribution.enabled,
        ),
    )

    resource = cfg.resource
    if not resource.base_url:
        return HybridRouter(memory, fallback)

    def client_factory(url: str) -> ODataClient:
        return ODataClient(
            url,
            version=resource.odata_version,
            timeout=resource.timeout,
            verify_tls=resource.verify_tls,
        )

    provider: SchemaProvider
    if cfg.schema.static_path:
        provider = StaticSchemaProvider(cfg.schema.static_path)
    else:
        provider = ODataMetadataProvider(client_factory)

    return HybridRouter(
        memory,
        fallback,
        extractor=IntentExtractor(model=cfg.generation.scorer_model),
        schema_cache=SchemaCache(provider, ttl_seconds=cfg.schema.cache_ttl_seconds),
        structured=StructuredQueryHandler(
            client_factory(resource.base_url), page_size=resource.page_size
        ),
        base_url=resource.base_url,
    )


def _print_response(response: ChatResponse) -> None:
    console.print(f"\n{response.content}")
    if response.answered_by == "structured":
        console.print("\n[dim]Source: structured resource[/]")
        return
    if not response.additional_contents:
        return

    table = Table(show_header=True, box=None, padding=(0, 1))
    table.add_column("Source")
    table.add_column("Page", justify="right")
    table.add_column("Score", justify="right", style="dim")
    table.add_column("Cited", justify="center")
    cited = {(c.source_label, c.page) for c in response.citations}
    for item in response.additional_contents:
        table.add_row(
            item.source_label,
            str(item.page) if item.page is not None else "-",
            f"{item.score:.2f}",
            "[green]✓[/]" if (item.source_label, item.page) in cited else "",
        )
    console.print()
    console.print(table)
