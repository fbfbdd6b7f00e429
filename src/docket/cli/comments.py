"""docket add-comments: load plan review comments from review documents."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from docket.cli.common import load_config_or_exit, require_api_key, resolve_db
from docket.cli.errors import err_provider
from docket.db.connection import Database
from docket.db.repository import Repository
from docket.ingest.comments import CommentExtractor, CommentExtractorConfig, add_comments
from docket.ingest.extract import ExtractionError, PdfTextExtractor

console = Console()


def _read_document(path: Path, pdf: PdfTextExtractor) -> str:
    if path.suffix.lower() == ".pdf":
        return pdf.extract(path.read_bytes())
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise ExtractionError(f"'{path.name}' is neither a PDF nor UTF-8 text") from exc


def add_comments_cmd(
    files: Annotated[
        list[Path],
        typer.Argument(
            help="Review documents (PDF or plain text).",
            exists=True,
            dir_okay=False,
            readable=True,
        ),
    ],
    scope: Annotated[
        str,
        typer.Option("--scope", "-s", help="Jurisdiction that wrote the review."),
    ],
    record: Annotated[
        str | None,
        typer.Option("--record", "-r", help="Permit or plan record the review belongs to."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to .docket.db (created if missing)."),
    ] = None,
) -> None:
    """Extract the comments of each review document and store them as text records.

    Re-running on the same document only adds comments not stored yet.
    """
    cfg = load_config_or_exit()
    model = cfg.comments.model
    require_api_key(model)

    extractor = CommentExtractor(
        CommentExtractorConfig(model=model, max_document_chars=cfg.comments.max_document_chars)
    )
    pdf = PdfTextExtractor()
    total = 0
    with Database(resolve_db(db, cfg)) as conn:
        repo = Repository(conn)
        for path in files:
            try:
                text = _read_document(path, pdf)
            except ExtractionError as exc:
                console.print(f"[yellow]Skipping {path.name}:[/] {exc}")
                continue
            try:
                comments = extractor.extract(text)
            except Exception as exc:
                console.print(err_provider(model, str(exc)))
                raise typer.Exit(1)

            document_ref = f"{record}/{path.name}" if record else path.name
            count = add_comments(repo, comments, scope, document_ref)
            console.print(f"  [green]✓[/] {path.name}: {count:,} new comments")
            total += count
    console.print(f"[green]✓[/] {total:,} comments stored")
