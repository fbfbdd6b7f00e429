"""Forward-only migration runner for the docket schema.

Vec tables (vec_text_*) are NOT migration-managed; they are created per
embedding model by ensure_vec_table(). Only their owner registry
(vec_tables) is.
"""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS raw_records (
    id                  INTEGER PRIMARY KEY,
    client_id           TEXT NOT NULL,
    source_record_id    TEXT NOT NULL,
    payload             TEXT NOT NULL,
    UNIQUE (client_id, source_record_id)
);

CREATE TABLE IF NOT EXISTS text_records (
    id              INTEGER PRIMARY KEY,
    kind            TEXT NOT NULL,
    raw_record_id   INTEGER REFERENCES raw_records(id) ON DELETE CASCADE,
    document_ref    TEXT,
    text            TEXT NOT NULL,
    scope           TEXT,
    heading         TEXT NOT NULL DEFAULT '',
    body            TEXT NOT NULL DEFAULT '',
    source_url      TEXT,
    parent_id       INTEGER REFERENCES text_records(id) ON DELETE CASCADE,
    chunk_index     INTEGER,
    created_at      DATETIME NOT NULL DEFAULT (datetime('now')),
    UNIQUE (kind, raw_record_id),
    UNIQUE (parent_id, chunk_index)
);

CREATE INDEX IF NOT EXISTS text_records_kind_scope_idx ON text_records (kind, scope);

CREATE TABLE IF NOT EXISTS embedding_cache (
    text_hash   TEXT NOT NULL,
    model       TEXT NOT NULL,
    embedding   TEXT NOT NULL,
    PRIMARY KEY (text_hash, model)
);
"""

# v2: raw records from more than one collection (events, matters, matter
# attachments). The key gains the collection name and an attachment points
# at the matter it was listed under. SQLite cannot change a UNIQUE
# constraint in place, so the table is rebuilt; foreign keys are off while
# the old table is dropped so text_records rows are not cascaded away.
_V2_SQL = """
PRAGMA foreign_keys = OFF;
BEGIN;

CREATE TABLE raw_records_v2 (
    id                  INTEGER PRIMARY KEY,
    client_id           TEXT NOT NULL,
    resource            TEXT NOT NULL DEFAULT 'events',
    source_record_id    TEXT NOT NULL,
    payload             TEXT NOT NULL,
    parent_id           INTEGER REFERENCES raw_records(id) ON DELETE CASCADE,
    UNIQUE (client_id, resource, source_record_id)
);

INSERT INTO raw_records_v2 (id, client_id, resource, source_record_id, payload)
SELECT id, client_id, 'events', source_record_id, payload FROM raw_records;

DROP TABLE raw_records;
ALTER TABLE raw_records_v2 RENAME TO raw_records;

CREATE INDEX IF NOT EXISTS raw_records_parent_idx ON raw_records (parent_id);

COMMIT;
PRAGMA foreign_keys = ON;
"""

# v3: which model owns each vec table. Model slugs are lossy, so the name
# alone cannot tell two models apart.
_V3_SQL = """
CREATE TABLE IF NOT EXISTS vec_tables (
    name        TEXT PRIMARY KEY,
    model       TEXT NOT NULL,
    created_at  DATETIME NOT NULL DEFAULT (datetime('now'))
);
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
    (2, _V2_SQL),
    (3, _V3_SQL),
]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()
