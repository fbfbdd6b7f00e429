"""Repository pattern for all docket database operations.

Single interface for: raw records, text records, per-model vec embeddings,
the embedding cache, and cosine-distance search.
Vec tables are model-managed (ensure_vec_table); repository handles read + write.
"""

from __future__ import annotations

import json
import sqlite3

from docket.db.models import EVENTS, RawRecord, TextRecord

_RAW_FIELDS = ("id", "client_id", "resource", "source_record_id", "payload", "parent_id")
_RAW_COLUMNS = ", ".join(_RAW_FIELDS)

# SQL trim() strips only spaces unless told otherwise; match str.strip() on
# the whitespace that shows up in extracted text.
_BLANK_TEXT = "trim(text, ' ' || char(9, 10, 11, 12, 13)) = ''"

_TEXT_COLUMNS = (
    "id, kind, raw_record_id, document_ref, text, scope, heading, body, "
    "source_url, parent_id, chunk_index, created_at"
)

_INSERT_TEXT = """
INSERT INTO text_records (
    kind, raw_record_id, document_ref, text, scope, heading, body,
    source_url, parent_id, chunk_index
)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""


class Repository:
    """Data access layer for all docket entities.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use. Every write commits immediately so a run
    that is stopped part-way keeps everything written before the stop.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see docket.db.schema.initialize).
        """
        self._conn = conn

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    # ------------------------------------------------------------------
    # Raw records
    # ------------------------------------------------------------------

    def upsert_raw_records(self, records: list[RawRecord]) -> int:
        """Insert-or-update *records* keyed by (client_id, resource, source_record_id).

        On conflict only ``payload`` and ``parent_id`` are overwritten; the
        key and row id stay stable. All records in the call are committed
        together.

        Returns:
            Number of records written.
        """
        if not records:
            return 0
        self._conn.executemany(
            """
            INSERT INTO raw_records (client_id, resource, source_record_id, payload, parent_id)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(client_id, resource, source_record_id) DO UPDATE SET
                payload = excluded.payload,
                parent_id = excluded.parent_id
            """,
            [
                (r.client_id, r.resource, r.source_record_id, r.payload, r.parent_id)
                for r in records
            ],
        )
        self._conn.commit()
        return len(records)

    def get_raw_record(
        self, client_id: str, source_record_id: str, resource: str = EVENTS
    ) -> RawRecord | None:
        row = self._conn.execute(
            f"""
            SELECT {_RAW_COLUMNS} FROM raw_records
            WHERE client_id = ? AND resource = ? AND source_record_id = ?
            """,
            (client_id, resource, source_record_id),
        ).fetchone()
        return _row_to_raw(row) if row else None

    def get_raw_record_by_id(self, raw_id: int) -> RawRecord | None:
        row = self._conn.execute(
            f"SELECT {_RAW_COLUMNS} FROM raw_records WHERE id = ?", (raw_id,)
        ).fetchone()
        return _row_to_raw(row) if row else None

    def list_raw_records(
        self, client_id: str | None = None, resource: str | None = None
    ) -> list[RawRecord]:
        """Return raw records ordered by id, optionally for one client and collection."""
        sql = f"SELECT {_RAW_COLUMNS} FROM raw_records WHERE 1 = 1"
        params: list = []
        if client_id is not None:
            sql += " AND client_id = ?"
            params.append(client_id)
        if resource is not None:
            sql += " AND resource = ?"
            params.append(resource)
        sql += " ORDER BY id"
        return [_row_to_raw(r) for r in self._conn.execute(sql, params).fetchall()]

    def list_raw_records_without_text(
        self, kind: str, client_id: str | None = None, resource: str | None = None
    ) -> list[RawRecord]:
        """Return raw records that have no text record of *kind* yet."""
        sql = f"""
            SELECT {", ".join(f"r.{c}" for c in _RAW_FIELDS)}
            FROM raw_records r
            LEFT JOIN text_records t ON t.raw_record_id = r.id AND t.kind = ?
            WHERE t.id IS NULL
        """
        params: list = [kind]
        if client_id is not None:
            sql += " AND r.client_id = ?"
            params.append(client_id)
        if resource is not None:
            sql += " AND r.resource = ?"
            params.append(resource)
        sql += " ORDER BY r.id"
        return [_row_to_raw(r) for r in self._conn.execute(sql, params).fetchall()]

    def list_raw_records_without_children(
        self, resource: str, child_resource: str, client_id: str | None = None
    ) -> list[RawRecord]:
        """Return *resource* records that no *child_resource* record points at yet."""
        sql = f"""
            SELECT {", ".join(f"p.{c}" for c in _RAW_FIELDS)}
            FROM raw_records p
            WHERE p.resource = ?
              AND NOT EXISTS (
                  SELECT 1 FROM raw_records c WHERE c.parent_id = p.id AND c.resource = ?
              )
        """
        params: list = [resource, child_resource]
        if client_id is not None:
            sql += " AND p.client_id = ?"
            params.append(client_id)
        sql += " ORDER BY p.id"
        return [_row_to_raw(r) for r in self._conn.execute(sql, params).fetchall()]

    def count_raw_records(self, client_id: str | None = None, resource: str | None = None) -> int:
        sql = "SELECT COUNT(*) FROM raw_records WHERE 1 = 1"
        params: list = []
        if client_id is not None:
            sql += " AND client_id = ?"
            params.append(client_id)
        if resource is not None:
            sql += " AND resource = ?"
            params.append(resource)
        return self._conn.execute(sql, params).fetchone()[0]

    # ------------------------------------------------------------------
    # Text records
    # ------------------------------------------------------------------

    def add_text_record(self, record: TextRecord) -> int:
        """Insert a text record. Returns the new id."""
        return self.add_text_records([record])[0]

    def add_text_records(self, records: list[TextRecord]) -> list[int]:
        """Insert *records* in one transaction. Returns the new ids in order."""
        ids: list[int] = []
        with self._conn:
            for record in records:
                cur = self._conn.execute(_INSERT_TEXT, _text_params(record))
                record.id = cur.lastrowid
                ids.append(cur.lastrowid)
        return ids

    def get_text_record(self, record_id: int) -> TextRecord | None:
        row = self._conn.execute(
            f"SELECT {_TEXT_COLUMNS} FROM text_records WHERE id = ?", (record_id,)
        ).fetchone()
        return _row_to_text(row) if row else None

    def count_text_records(self, kind: str | None = None) -> int:
        if kind is None:
            return self._conn.execute("SELECT COUNT(*) FROM text_records").fetchone()[0]
        return self._conn.execute(
            "SELECT COUNT(*) FROM text_records WHERE kind = ?", (kind,)
        ).fetchone()[0]

    def existing_texts(self, kind: str, document_ref: str, scope: str | None) -> set[str]:
        """Texts already stored for one (kind, scope, document_ref) source document."""
        rows = self._conn.execute(
            """
            SELECT text FROM text_records
            WHERE kind = ? AND document_ref = ? AND scope IS ?
            """,
            (kind, document_ref, scope),
        ).fetchall()
        return {r[0] for r in rows}

    def list_unchunked(self, kind: str, limit: int, after_id: int = 0) -> list[TextRecord]:
        """Return up to *limit* records of *kind* with no chunks yet, by id after *after_id*."""
        rows = self._conn.execute(
            f"""
            SELECT {_TEXT_COLUMNS} FROM text_records p
            WHERE p.kind = ? AND p.id > ?
              AND NOT EXISTS (SELECT 1 FROM text_records c WHERE c.parent_id = p.id)
            ORDER BY p.id
            LIMIT ?
            """,
            (kind, after_id, limit),
        ).fetchall()
        return [_row_to_text(r) for r in rows]

    def list_missing_source_url(self, limit: int, after_id: int = 0) -> list[TextRecord]:
        """Return text records tied to a raw record but lacking ``source_url``."""
        rows = self._conn.execute(
            f"""
            SELECT {_TEXT_COLUMNS} FROM text_records
            WHERE source_url IS NULL AND raw_record_id IS NOT NULL AND id > ?
            ORDER BY id
            LIMIT ?
            """,
            (after_id, limit),
        ).fetchall()
        return [_row_to_text(r) for r in rows]

    def set_source_url(self, record_id: int, source_url: str) -> None:
        self._conn.execute(
            "UPDATE text_records SET source_url = ? WHERE id = ?", (source_url, record_id)
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Vec embeddings
    # ------------------------------------------------------------------

    def list_unembedded(
        self,
        table: str,
        limit: int,
        after_id: int = 0,
        kind: str | None = None,
    ) -> list[TextRecord]:
        """Return records with non-blank text and no vector in *table*.

        Ordered by id ascending, starting after *after_id* (keyset cursor).
        """
        sql = f"""
            SELECT {_TEXT_COLUMNS} FROM text_records
            WHERE id > ?
              AND NOT {_BLANK_TEXT}
              AND id NOT IN (SELECT rowid FROM {table})
        """
        params: list = [after_id]
        if kind is not None:
            sql += " AND kind = ?"
            params.append(kind)
        sql += " ORDER BY id LIMIT ?"
        params.append(limit)
        return [_row_to_text(r) for r in self._conn.execute(sql, params).fetchall()]

    def count_unembedded(self, table: str, kind: str | None = None) -> int:
        sql = f"""
            SELECT COUNT(*) FROM text_records
            WHERE NOT {_BLANK_TEXT} AND id NOT IN (SELECT rowid FROM {table})
        """
        params: list = []
        if kind is not None:
            sql += " AND kind = ?"
            params.append(kind)
        return self._conn.execute(sql, params).fetchone()[0]

    def has_embedding(self, table: str, record_id: int) -> bool:
        row = self._conn.execute(
            f"SELECT rowid FROM {table} WHERE rowid = ?", (record_id,)
        ).fetchone()
        return row is not None

    def set_embedding(self, table: str, record_id: int, embedding: list[float]) -> bool:
        """Store the vector for *record_id* unless one is already set.

        Embeddings are set once; use clear_embedding() to allow re-embedding.

        Returns:
            True if the vector was written, False if one already existed.
        """
        if self.has_embedding(table, record_id):
            return False
        self._conn.execute(
            f"INSERT INTO {table}(rowid, embedding) VALUES (?, ?)",
            (record_id, json.dumps(embedding)),
        )
        self._conn.commit()
        return True

    def clear_embedding(self, table: str, record_id: int) -> None:
        self._conn.execute(f"DELETE FROM {table} WHERE rowid = ?", (record_id,))
        self._conn.commit()

    def search_vec(
        self,
        table: str,
        embedding: list[float],
        limit: int = 10,
        kind: str | None = None,
        scope: str | None = None,
    ) -> list[tuple[TextRecord, float]]:
        """Exact cosine-distance scan. Returns (record, distance) ascending.

        Only records with a vector in *table* are candidates. Ties on
        distance are broken by record id.
        """
        columns = ", ".join(f"t.{c.strip()}" for c in _TEXT_COLUMNS.split(","))
        sql = f"""
            SELECT {columns}, vec_distance_cosine(v.embedding, ?) AS distance
            FROM {table} v
            JOIN text_records t ON t.id = v.rowid
            WHERE 1 = 1
        """
        params: list = [json.dumps(embedding)]
        if kind is not None:
            sql += " AND t.kind = ?"
            params.append(kind)
        if scope is not None:
            sql += " AND t.scope = ?"
            params.append(scope)
        sql += " ORDER BY distance, t.id LIMIT ?"
        params.append(limit)

        rows = self._conn.execute(sql, params).fetchall()
        return [(_row_to_text(r), r["distance"]) for r in rows]

    # ------------------------------------------------------------------
    # Embedding cache
    # ------------------------------------------------------------------

    def get_cached_embeddings(
        self, model: str, text_hashes: list[str]
    ) -> dict[str, list[float]]:
        """Return {text_hash: embedding} for the hashes cached under *model*."""
        if not text_hashes:
            return {}
        found: dict[str, list[float]] = {}
        # Stay well below SQLite's bound-parameter limit.
        for start in range(0, len(text_hashes), 500):
            part = text_hashes[start : start + 500]
            placeholders = ",".join("?" * len(part))
            rows = self._conn.execute(
                f"""
                SELECT text_hash, embedding FROM embedding_cache
                WHERE model = ? AND text_hash IN ({placeholders})
                """,
                [model, *part],
            ).fetchall()
            for row in rows:
                found[row["text_hash"]] = json.loads(row["embedding"])
        return found

    def put_cached_embeddings(self, model: str, entries: dict[str, list[float]]) -> None:
        """Upsert {text_hash: embedding} into the cache for *model*."""
        if not entries:
            return
        self._conn.executemany(
            """
            INSERT INTO embedding_cache (text_hash, model, embedding)
            VALUES (?, ?, ?)
            ON CONFLICT(text_hash, model) DO UPDATE SET
                embedding = excluded.embedding
            """,
            [(h, model, json.dumps(e)) for h, e in entries.items()],
        )
        self._conn.commit()


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _row_to_raw(row: sqlite3.Row) -> RawRecord:
    return RawRecord(
        id=row["id"],
        client_id=row["client_id"],
        resource=row["resource"],
        source_record_id=row["source_record_id"],
        payload=row["payload"],
        parent_id=row["parent_id"],
    )


def _row_to_text(row: sqlite3.Row) -> TextRecord:
    return TextRecord(
        id=row["id"],
        kind=row["kind"],
        raw_record_id=row["raw_record_id"],
        document_ref=row["document_ref"],
        text=row["text"],
        scope=row["scope"],
        heading=row["heading"],
        body=row["body"],
        source_url=row["source_url"],
        parent_id=row["parent_id"],
        chunk_index=row["chunk_index"],
        created_at=row["created_at"],
    )


def _text_params(record: TextRecord) -> tuple:
    return (
        record.kind,
        record.raw_record_id,
        record.document_ref,
        record.text,
        record.scope,
        record.heading,
        record.body,
        record.source_url,
        record.parent_id,
        record.chunk_index,
    )
