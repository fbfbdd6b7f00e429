"""docket extract / docket chunk: turn raw records into searchable text."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from docket.cli.common import load_config_or_exit, resolve_db
from docket.cli.errors import err_unknown_kind
from docket.db.connection import Database
from docket.db.models import DOCUMENT_SOURCES
from docket.db.repository import Repository
from docket.ingest.chunker import chunk_documents
from docket.ingest.extract import PdfTextExtractor, extract_pending, fetch_document

console = Console()


def extract_cmd(
    client: Annotated[
        str | None,
        typer.Option("--client", "-c", help="Only extract documents of this client."),
    ] = None,
    kind: Annotated[
        str,
        typer.Option("--kind", help="Document to extract: agenda, minutes or attachment."),
    ] = "agenda",
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to .docket.db."),
    ] = None,
) -> None:
    """Download and extract text for records that have none yet."""
    if kind not in DOCUMENT_SOURCES:
        console.print(err_unknown_kind(kind, sorted(DOCUMENT_SOURCES)))
        raise typer.Exit(1)
    cfg = load_config_or_exit()
    with Database(resolve_db(db, cfg)) as conn:
        count = extract_pending(
            Repository(conn), PdfTextExtractor(), fetch_document, client_id=client, kind=kind
        )
    console.print(f"[green]✓[/] {count:,} {kind} documents extracted")


def chunk_cmd(
    kind: Annotated[
        str,
        typer.Option("--kind", help="Kind of text record to split into chunks."),
    ] = "agenda",
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to .docket.db."),
    ] = None,
) -> None:
    """Split long extracted documents into overlapping chunks."""
    cfg = load_config_or_exit()
    with Database(resolve_db(db, cfg)) as conn:
        count = chunk_documents(
            Repository(conn),
            source_kind=kind,
            chunk_size=cfg.backfill.chunk_size,
            overlap=cfg.backfill.chunk_overlap,
        )
    console.print(f"[green]✓[/] {count:,} chunks created")
