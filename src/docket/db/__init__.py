"""Docket database layer."""

from docket.db.connection import Database
from docket.db.migrations import MIGRATIONS, run_migrations
from docket.db.repository import Repository
from docket.db.schema import initialize
from docket.db.vectors import ensure_vec_table, model_to_slug, vec_table_name

__all__ = [
    "Database",
    "Repository",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "ensure_vec_table",
    "model_to_slug",
    "vec_table_name",
]
