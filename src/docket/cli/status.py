"""docket status: counts of raw records, text records and vectors per model."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel

from docket.cli.common import load_config_or_exit, resolve_db
from docket.cli.errors import err_no_db
from docket.config import DocketConfig
from docket.db.connection import Database
from docket.db.repository import Repository
from docket.db.vectors import model_to_slug, vec_table_exists, vec_table_name

console = Console()


def status_cmd(
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to .docket.db."),
    ] = None,
) -> None:
    """Show pipeline progress: what is ingested, extracted and embedded."""
    cfg = load_config_or_exit()
    db_path = resolve_db(db, cfg)
    try:
        with Database(db_path, create=False) as conn:
            _show_store_panel(db_path, conn, Repository(conn), cfg)
    except FileNotFoundError:
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)


def _show_store_panel(
    db_path: Path, conn: sqlite3.Connection, repo: Repository, cfg: DocketConfig
) -> None:
    size_mb = db_path.stat().st_size / (1024 * 1024)
    lines = [
        f"Database:  {db_path} ({size_mb:.1f} MB)",
        f"Raw records:  [bold]{repo.count_raw_records():,}[/]",
    ]
    for resource, count in _count_by_resource(conn):
        lines.append(f"  {resource}: {count:,}")
    lines.append(f"Text records: [bold]{repo.count_text_records():,}[/]")
    for kind, count in _count_by_kind(conn):
        lines.append(f"  {kind}: {count:,}")

    table = vec_table_name(model_to_slug(cfg.embedding.model))
    if vec_table_exists(conn, table):
        pending = repo.count_unembedded(table)
        lines.append(f"Embedding model: {cfg.embedding.model}  ([bold]{pending:,}[/] pending)")
    else:
        lines.append(f"Embedding model: {cfg.embedding.model}  [dim](not run yet)[/]")

    vec_tables = _list_vec_tables(conn)
    lines.append(f"Vec tables: [bold]{len(vec_tables)}[/]")
    for name, count in vec_tables:
        lines.append(f"  [dim]{name}[/] ({count:,} vectors)")

    console.print(Panel("\n".join(lines), title="[bold]Docket[/]", expand=False))


def _count_by_resource(conn: sqlite3.Connection) -> list[tuple[str, int]]:
    rows = conn.execute(
        "SELECT resource, COUNT(*) FROM raw_records GROUP BY resource ORDER BY resource"
    ).fetchall()
    return [(r[0], r[1]) for r in rows]


def _count_by_kind(conn: sqlite3.Connection) -> list[tuple[str, int]]:
    rows = conn.execute(
        "SELECT kind, COUNT(*) FROM text_records GROUP BY kind ORDER BY kind"
    ).fetchall()
    return [(r[0], r[1]) for r in rows]


def _list_vec_tables(conn: sqlite3.Connection) -> list[tuple[str, int]]:
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name LIKE 'vec_text_%' "
        "AND sql LIKE 'CREATE VIRTUAL TABLE%' ORDER BY name"
    ).fetchall()
    return [
        (name, conn.execute(f"SELECT COUNT(*) FROM [{name}]").fetchone()[0])  # noqa: S608
        for (name,) in rows
    ]
