"""Open the docket store: SQLite with sqlite-vec loaded and the schema migrated."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import sqlite_vec

from docket.db.schema import initialize


class Database:
    """One docket store file and the lifecycle of a connection to it.

    ``with Database(path) as conn:`` is the normal way in: the connection
    comes back migrated, pending writes are committed on a clean exit and
    rolled back if the block raises, and the connection is always closed.

    Args:
        db_path: Path to the SQLite file.
        create: Create the file if missing. With False a missing file
            raises FileNotFoundError instead of leaving an empty store behind.
        migrate: Bring the schema up to date on connect.
    """

    def __init__(self, db_path: Path | str, create: bool = True, migrate: bool = True) -> None:
        self.db_path = Path(db_path)
        self.create = create
        self.migrate = migrate
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Open a new connection; the caller closes it.

        Raises:
            FileNotFoundError: If ``create`` is False and the file does not exist.
        """
        if not self.create and not self.db_path.exists():
            raise FileNotFoundError(f"No docket database at '{self.db_path}'")

        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        conn.enable_load_extension(False)
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        if self.migrate:
            initialize(conn)
        return conn

    def __enter__(self) -> sqlite3.Connection:
        self._conn = self.connect()
        return self._conn

    def __exit__(self, exc_type: type[BaseException] | None, *args: object) -> None:
        if self._conn is None:
            return
        try:
            if exc_type is None:
                self._conn.commit()
            else:
                self._conn.rollback()
        finally:
            self._conn.close()
            self._conn = None
