"""docket embed / docket backfill-urls: fill derived fields on stored text."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from docket.cli.common import (
    build_embedding_client,
    load_config_or_exit,
    require_api_key,
    resolve_db,
)
from docket.cli.errors import err_provider, err_vector_store
from docket.db.connection import Database
from docket.db.repository import Repository
from docket.db.vectors import VecTableMismatch
from docket.ingest.backfill import BackfillConfig, EmbeddingBackfill, backfill_source_urls

console = Console()


def embed_cmd(
    kind: Annotated[
        str | None,
        typer.Option("--kind", help="Only embed text records of this kind."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to .docket.db."),
    ] = None,
) -> None:
    """Embed every text record that has no vector for the configured model."""
    cfg = load_config_or_exit()
    model = cfg.embedding.model
    require_api_key(model)

    with Database(resolve_db(db, cfg)) as conn:
        repo = Repository(conn)
        job = EmbeddingBackfill(
            repo,
            build_embedding_client(repo, cfg),
            BackfillConfig(
                batch_size=cfg.backfill.batch_size,
                max_chars=cfg.backfill.max_chars,
                kind=kind,
            ),
        )
        try:
            count = job.backfill()
        except (VecTableMismatch, sqlite3.OperationalError) as exc:
            console.print(err_vector_store(model, str(exc)))
            raise typer.Exit(1)
        except Exception as exc:
            # Batches embedded before the failure are already committed.
            console.print(err_provider(model, str(exc)))
            raise typer.Exit(1)
    console.print(f"[green]✓[/] {count:,} records embedded with {model}")


def backfill_urls_cmd(
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to .docket.db."),
    ] = None,
) -> None:
    """Fill missing source URLs on extracted text from their raw records."""
    cfg = load_config_or_exit()
    with Database(resolve_db(db, cfg)) as conn:
        count = backfill_source_urls(Repository(conn))
    console.print(f"[green]✓[/] {count:,} source URLs filled")
