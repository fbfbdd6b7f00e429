"""Helpers shared by the docket CLI commands: config, DB and API key checks."""

from __future__ import annotations

from dataclasses import asdict
from pathlib import Path

import typer
from rich.console import Console

from docket.cli.errors import err_config, err_no_api_key
from docket.config import ConfigError, DocketConfig, load_config
from docket.db.repository import Repository
from docket.rag.embedding_client import EmbeddingClient, EmbeddingClientConfig
from docket.rag.llm_client import validate_api_key

console = Console()


def load_config_or_exit() -> DocketConfig:
    try:
        return load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)


def resolve_db(db: Path | None, cfg: DocketConfig) -> Path:
    """--db wins over config (and DOCKET_DB)."""
    return db if db is not None else Path(cfg.database.path)


def require_api_key(model: str) -> None:
    """Exit 1 with an actionable message if *model*'s provider key is unset."""
    try:
        validate_api_key(model)
    except EnvironmentError:
        provider = model.split("/")[0] if "/" in model else "openai"
        console.print(err_no_api_key(provider))
        raise typer.Exit(1)


def build_embedding_client(repo: Repository, cfg: DocketConfig) -> EmbeddingClient:
    """Embedding client for the configured model, memoized in *repo*."""
    return EmbeddingClient(repo, EmbeddingClientConfig(**asdict(cfg.embedding)))
