"""docket search: nearest-neighbour retrieval with optional relevance grading."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from docket.cli.common import (
    build_embedding_client,
    load_config_or_exit,
    require_api_key,
    resolve_db,
)
from docket.cli.errors import err_no_embeddings, err_provider, err_vector_store
from docket.db.connection import Database
from docket.db.repository import Repository
from docket.db.vectors import VecTableMismatch, vec_table_exists
from docket.rag.grader import GraderConfig, RelevanceGrader
from docket.rag.retriever import RetrieverConfig, SearchResult, VectorRetriever

console = Console()

_PREVIEW_CHARS = 120


def search_cmd(
    query: Annotated[str, typer.Argument(help="Free-text query.")],
    scope: Annotated[
        str | None,
        typer.Option("--scope", "-s", help="Only search records with this scope (client id)."),
    ] = None,
    kind: Annotated[
        str | None,
        typer.Option("--kind", help="Only search text records of this kind."),
    ] = None,
    k: Annotated[
        int | None,
        typer.Option("-k", help="Number of results (default: retrieval.top_k)."),
    ] = None,
    grade: Annotated[
        bool,
        typer.Option("--grade", help="Drop results the grader model judges irrelevant."),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to .docket.db."),
    ] = None,
) -> None:
    """Search stored text by meaning."""
    if not query.strip():
        console.print("[red]Error:[/] Query must not be empty.")
        raise typer.Exit(1)
    if k is not None and k < 1:
        console.print(f"[red]Error:[/] -k must be at least 1, got {k}.")
        raise typer.Exit(1)

    cfg = load_config_or_exit()
    require_api_key(cfg.embedding.model)
    if grade:
        require_api_key(cfg.grader.model)

    with Database(resolve_db(db, cfg)) as conn:
        repo = Repository(conn)
        client = build_embedding_client(repo, cfg)
        if not vec_table_exists(conn, client.vec_table):
            console.print(err_no_embeddings(client.model))
            raise typer.Exit(1)

        retriever = VectorRetriever(
            repo, client, RetrieverConfig(top_k=cfg.retrieval.top_k, kind=cfg.retrieval.kind)
        )
        try:
            results = retriever.search(query, scope=scope, k=k, kind=kind)
        except (VecTableMismatch, sqlite3.OperationalError) as exc:
            console.print(err_vector_store(client.model, str(exc)))
            raise typer.Exit(1)
        except Exception as exc:
            console.print(err_provider(client.model, str(exc)))
            raise typer.Exit(1)

    if grade and results:
        grader = RelevanceGrader(
            GraderConfig(
                model=cfg.grader.model,
                max_document_chars=cfg.grader.max_document_chars,
            )
        )
        try:
            results = grader.filter_relevant(query, results)
        except Exception as exc:
            console.print(err_provider(cfg.grader.model, str(exc)))
            raise typer.Exit(1)

    if not results:
        console.print("[yellow]No matching records.[/]")
        return
    _print_results(results)


def _print_results(results: list[SearchResult]) -> None:
    table = Table(show_header=True, header_style="bold")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Distance", justify="right")
    table.add_column("Kind")
    table.add_column("Scope", style="dim")
    table.add_column("Text")

    for rank, (record, distance) in enumerate(results, start=1):
        preview = (record.heading or record.text).replace("\n", " ")
        if len(preview) > _PREVIEW_CHARS:
            preview = preview[: _PREVIEW_CHARS - 1] + "…"
        if record.source_url:
            preview += f"\n[dim]{record.source_url}[/]"
        table.add_row(str(rank), f"{distance:.4f}", record.kind, record.scope or "", preview)

    console.print(table)
