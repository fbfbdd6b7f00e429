"""Per-model sqlite-vec virtual table management.

Each embedding model gets its own vec0 table, keyed by text_records.id.
Vectors from different models therefore never meet in one query. Slugs are
lossy (``a/b-c`` and ``a/b_c`` share one), so the vec_tables registry
records which model owns each table and a second model is refused.
"""

from __future__ import annotations

import re
import sqlite3

_DIMENSIONS_RE = re.compile(r"float\[(\d+)\]")


class VecTableMismatch(ValueError):
    """A vec table exists but belongs to another model or has other dimensions."""


def model_to_slug(model: str) -> str:
    """Convert a provider/model string to a valid table name suffix.

    Examples:
        "openai/text-embedding-3-small" -> "openai_text_embedding_3_small"
    """
    return re.sub(r"[^a-z0-9]", "_", model.lower())


def vec_table_name(model_slug: str) -> str:
    """Return the full vec table name for a model slug."""
    return f"vec_text_{model_slug}"


def vec_table_exists(conn: sqlite3.Connection, table: str) -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
    ).fetchone()
    return row is not None


def vec_table_dimensions(conn: sqlite3.Connection, table: str) -> int | None:
    """Vector length *table* was created with, or None if it does not exist."""
    row = conn.execute(
        "SELECT sql FROM sqlite_master WHERE type='table' AND name=?", (table,)
    ).fetchone()
    if row is None:
        return None
    match = _DIMENSIONS_RE.search(row[0] or "")
    return int(match.group(1)) if match else None


def vec_table_model(conn: sqlite3.Connection, table: str) -> str | None:
    """Model registered as the owner of *table*, or None if unclaimed."""
    row = conn.execute("SELECT model FROM vec_tables WHERE name = ?", (table,)).fetchone()
    return row[0] if row else None


def check_vec_table(
    conn: sqlite3.Connection, table: str, model: str | None, dimensions: int
) -> None:
    """Raise VecTableMismatch unless existing *table* fits *model* and *dimensions*.

    A table that does not exist yet passes. With *model* None only the
    dimensions are checked.
    """
    existing = vec_table_dimensions(conn, table)
    if existing is not None and existing != dimensions:
        raise VecTableMismatch(
            f"Vec table '{table}' holds {existing}-dimension vectors, not {dimensions}. "
            f"Set embedding.dimensions to {existing} or embed with a different model."
        )
    if model is None:
        return
    owner = vec_table_model(conn, table)
    if owner is not None and owner != model:
        raise VecTableMismatch(
            f"Vec table '{table}' already holds vectors for model '{owner}'; "
            f"'{model}' maps to the same table name and cannot share it."
        )


def ensure_vec_table(
    conn: sqlite3.Connection,
    model_slug: str,
    dimensions: int,
    model: str | None = None,
) -> str:
    """Create vec_text_{model_slug} if it doesn't already exist.

    Args:
        conn: Active database connection (sqlite-vec must be loaded).
        model_slug: Sanitized model identifier (use model_to_slug() to generate).
        dimensions: Embedding vector dimensions (e.g. 1536 for text-embedding-3-small).
        model: Full model string. When given, the table is claimed for it and
            a table already claimed by another model is refused.

    Returns:
        The table name (vec_text_{model_slug}).

    Raises:
        VecTableMismatch: If the table exists with other dimensions or owner.
    """
    if not re.fullmatch(r"[a-z0-9_]+", model_slug):
        raise ValueError(
            f"Invalid model_slug '{model_slug}'; use model_to_slug() to sanitize."
        )
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    table = vec_table_name(model_slug)
    if vec_table_exists(conn, table):
        check_vec_table(conn, table, model, dimensions)
    else:
        conn.execute(
            f"CREATE VIRTUAL TABLE {table} USING vec0(embedding float[{dimensions}])"
        )
    if model is not None:
        conn.execute(
            "INSERT OR IGNORE INTO vec_tables (name, model) VALUES (?, ?)", (table, model)
        )
    conn.commit()

    return table

