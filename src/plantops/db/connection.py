"""SQLite connection layer: sqlite-vec loaded, foreign keys on, schema migrated."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import sqlite_vec

from plantops.db.migrations import run_migrations

DEFAULT_DB_PATH = Path(".plantops.db")


class Database:
    """Per-project SQLite file holding files, chunks, vectors and conversations.

    Usage:
        with Database(path) as conn:
            repo = Repository(conn)
    """

    def __init__(self, db_path: Path | str = DEFAULT_DB_PATH, *, migrate: bool = True) -> None:
        self.db_path = Path(db_path)
        self._migrate = migrate
        self._conn: sqlite3.Connection | None = None

    @property
    def exists(self) -> bool:
        return self.db_path.exists()

    def connect(self) -> sqlite3.Connection:
        """Open a connection, load sqlite-vec, apply pending migrations."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        conn.enable_load_extension(False)
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA busy_timeout = 5000")
        if self._migrate:
            run_migrations(conn)
        return conn

    def __enter__(self) -> sqlite3.Connection:
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
