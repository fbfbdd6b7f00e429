"""Docket rich error messages: actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from docket.cli.errors import err_no_api_key
    console.print(err_no_api_key("openai"))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_map = {
        "openai": "OPENAI_API_KEY",
        "anthropic": "ANTHROPIC_API_KEY",
        "cohere": "COHERE_API_KEY",
        "gemini": "GEMINI_API_KEY",
        "mistral": "MISTRAL_API_KEY",
        "azure": "AZURE_API_KEY",
        "voyage": "VOYAGE_API_KEY",
    }
    env_var = env_map.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_no_db(db_path: str = ".docket.db") -> str:
    """No database at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  docket ingest --client <id>"
    )


def err_no_clients() -> str:
    """`docket ingest` called without any client to ingest."""
    return (
        "[red]Error:[/] No client specified.\n"
        "  Use --client ID (repeatable), or list clients under source.clients\n"
        "  in docket.yaml and run:  docket ingest --all"
    )


def err_source_api(client_id: str, detail: str) -> str:
    """Source API failure part-way through an ingest."""
    return (
        f"[red]Error:[/] Ingest of '{client_id}' stopped: {detail}\n"
        "  Pages already fetched are stored. Re-run the same command to resume."
    )


def err_no_embeddings(model: str) -> str:
    """No vec table exists yet for *model*."""
    return (
        f"[red]Error:[/] No embeddings stored for model '{model}'.\n"
        "  Run:  docket embed"
    )


def err_config(detail: str) -> str:
    """Config file could not be loaded."""
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {detail}\n"
        "  Fix docket.yaml (or ~/.docket/config.yaml) and retry."
    )


def err_unknown_kind(kind: str, known: list[str]) -> str:
    return (
        f"[red]Error:[/] Unknown document kind '{kind}'.\n"
        f"  Use one of: {', '.join(known)}"
    )


def err_provider(model: str, detail: str) -> str:
    """The embedding or chat provider for *model* failed."""
    return (
        f"[red]Error:[/] Provider call for model '{model}' failed.\n"
        f"  {detail}\n"
        "  Check the model name and its API key, then re-run the command."
    )


def err_vector_store(model: str, detail: str) -> str:
    """Stored vectors cannot be used with *model* as configured."""
    return (
        f"[red]Error:[/] Stored vectors do not fit model '{model}'.\n"
        f"  {detail}\n"
        "  Fix embedding.model or embedding.dimensions in docket.yaml, or use another --db."
    )
