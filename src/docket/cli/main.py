"""Docket CLI entry point."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import typer

from docket.cli.comments import add_comments_cmd
from docket.cli.embed import backfill_urls_cmd, embed_cmd
from docket.cli.extract import chunk_cmd, extract_cmd
from docket.cli.ingest import fetch_attachments_cmd, ingest_cmd
from docket.cli.search import search_cmd
from docket.cli.status import status_cmd
from docket.log import configure_logging


def _installed_version() -> str:
    try:
        return importlib.metadata.version("docket")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"docket {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="docket",
    help=(
        "Docket: ingest public-meeting records, embed them, and search by meaning.\n\n"
        "  docket ingest   Page source records into the local store.\n"
        "  docket extract  Download documents and store their text.\n"
        "  docket embed    Embed everything that has no vector yet.\n"
        "  docket search   Nearest-neighbour search, optionally LLM-graded."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log debug output."),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Only log warnings and errors."),
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """Docket: ingest, embed and search meeting records."""
    if verbose:
        configure_logging(logging.DEBUG)
    elif quiet:
        configure_logging(logging.WARNING)
    else:
        configure_logging(logging.INFO)


app.command("ingest")(ingest_cmd)
app.command("fetch-attachments")(fetch_attachments_cmd)
app.command("extract")(extract_cmd)
app.command("chunk")(chunk_cmd)
app.command("add-comments")(add_comments_cmd)
app.command("embed")(embed_cmd)
app.command("backfill-urls")(backfill_urls_cmd)
app.command("search")(search_cmd)
app.command("status")(status_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed docket version."""
    typer.echo(f"docket {_installed_version()}")


if __name__ == "__main__":
    app()
