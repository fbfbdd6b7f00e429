"""docket ingest / docket fetch-attachments: copy source API records into the raw store."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from docket.cli.common import load_config_or_exit, resolve_db
from docket.cli.errors import err_config, err_no_clients, err_source_api
from docket.config import DocketConfig
from docket.db.connection import Database
from docket.db.repository import Repository
from docket.ingest.source import (
    DEFAULT_ID_FIELDS,
    AttachmentIngestor,
    SourceApi,
    SourceApiError,
    SourceIngestor,
)

console = Console()


def _clients_or_exit(cfg: DocketConfig, client: list[str] | None, all_clients: bool) -> list[str]:
    clients = list(client or [])
    if all_clients:
        clients.extend(c for c in cfg.source.clients if c not in clients)
    if not clients:
        console.print(err_no_clients())
        raise typer.Exit(1)
    return clients


def _source_api_or_exit(cfg: DocketConfig, resource: str) -> SourceApi:
    try:
        return SourceApi(cfg.source.base_url, resource, timeout=cfg.source.timeout)
    except ValueError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)


def ingest_cmd(
    client: Annotated[
        list[str] | None,
        typer.Option("--client", "-c", help="Source client id (repeatable)."),
    ] = None,
    all_clients: Annotated[
        bool,
        typer.Option("--all", help="Ingest every client listed under source.clients."),
    ] = False,
    resource: Annotated[
        str | None,
        typer.Option("--resource", help="Collection to page (default: source.resource)."),
    ] = None,
    id_field: Annotated[
        str | None,
        typer.Option("--id-field", help="Record id field (default depends on the collection)."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to .docket.db (created if missing)."),
    ] = None,
) -> None:
    """Fetch all records for one or more clients and upsert them."""
    cfg = load_config_or_exit()
    clients = _clients_or_exit(cfg, client, all_clients)
    if resource is None:
        resource = cfg.source.resource
        id_field = id_field or cfg.source.id_field
    else:
        id_field = id_field or DEFAULT_ID_FIELDS.get(resource.lower(), cfg.source.id_field)
    source = _source_api_or_exit(cfg, resource)

    with Database(resolve_db(db, cfg)) as conn:
        ingestor = SourceIngestor(
            Repository(conn),
            source,
            page_size=cfg.source.page_size,
            id_field=id_field,
            resource=resource,
        )
        for client_id in clients:
            console.print(f"\n[bold]→ {client_id}[/]")
            try:
                count = ingestor.ingest(client_id)
            except SourceApiError as exc:
                console.print(err_source_api(client_id, str(exc)))
                raise typer.Exit(1)
            console.print(f"  [green]✓[/] {count:,} records upserted")


def fetch_attachments_cmd(
    client: Annotated[
        list[str] | None,
        typer.Option("--client", "-c", help="Source client id (repeatable)."),
    ] = None,
    all_clients: Annotated[
        bool,
        typer.Option("--all", help="Use every client listed under source.clients."),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to .docket.db."),
    ] = None,
) -> None:
    """List the attachments of every ingested matter that has none stored yet.

    Run `docket ingest --resource matters` first.
    """
    cfg = load_config_or_exit()
    clients = _clients_or_exit(cfg, client, all_clients)
    source = _source_api_or_exit(cfg, "matters")

    with Database(resolve_db(db, cfg)) as conn:
        ingestor = AttachmentIngestor(Repository(conn), source)
        for client_id in clients:
            console.print(f"\n[bold]→ {client_id}[/]")
            count = ingestor.ingest(client_id)
            console.print(f"  [green]✓[/] {count:,} attachments upserted")
