"""PlantOps rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from plantops.cli.errors import err_no_api_key, err_no_db
    console.print(err_no_api_key("openai"))
    raise typer.Exit(1)
"""

from __future__ import annotations

_PROVIDER_ENV = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "azure": "AZURE_API_KEY",
}


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_var = _PROVIDER_ENV.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_no_db(db_path: str = ".plantops.db") -> str:
    """No database at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  plantops upload <PATH> --ingest"
    )


def err_config(detail: str) -> str:
    """plantops.yaml or the global config is invalid."""
    return f"[red]Error:[/] Invalid configuration.\n  {detail}"


def err_path_not_found(path: str) -> str:
    return (
        f"[red]Error:[/] File not found: '{path}'\n"
        "  Check the path and try again."
    )


def err_unsupported_type(path: str) -> str:
    """Upload with an extension we cannot map to a media type."""
    return (
        f"[red]Error:[/] Cannot determine a supported media type for '{path}'.\n"
        "  Supported: .pdf .txt .md .csv .json .xml\n"
        "  Or pass one explicitly:  --media-type text/plain"
    )


def err_file_not_found(file_id: str) -> str:
    return (
        f"[yellow]File not found:[/] '{file_id}' is not in the database.\n"
        "  Run:  plantops status  to see all uploaded files."
    )


def err_ingest_failed(detail: str) -> str:
    return (
        f"[red]Error:[/] Ingestion failed — nothing was changed.\n"
        f"  {detail}\n"
        "  Fix the cause and run:  plantops ingest --id <FILE_ID>"
    )


def warn_no_documents(model: str) -> str:
    """The answer was generated without any document passages."""
    return (
        f"[yellow]Note:[/] No document passages found for model '{model}'.\n"
        "  Run:  plantops upload <PATH> --ingest"
    )


def err_backend_failed(detail: str) -> str:
    """The language-model backend failed while answering."""
    return (
        f"[red]Error:[/] The language-model backend did not answer.\n"
        f"  {detail}\n"
        "  Your question was saved; ask again to retry."
    )
