"""
SQLite access for the record store.

Each call opens a short-lived connection, so one SQLiteDatabase can be
shared by concurrent capture, edit and retrieval tasks running their
queries in worker threads. Foreign keys are switched on per connection
(projects cascade to their documents).

Usage:
    db = initialize_database(config.get_database_path())
    rows = db.fetch_all("SELECT id, name FROM projects")
    document_id = db.write("INSERT INTO documents (...) VALUES (...)", params)
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

Params = Sequence[Any]


class SQLiteDatabase:
    """
    Thin wrapper returning rows as dicts.

    Args:
        db_path: Existing database file (see initialize_database)
        timeout: Seconds to wait on a locked database
    """

    def __init__(self, db_path: Path, timeout: float = 10.0):
        self.db_path = Path(db_path)
        self.timeout = timeout

        if not self.db_path.exists():
            raise FileNotFoundError(
                f"No Heelix database at {self.db_path}; run 'heelix init' first"
            )

    @contextmanager
    def connect(self):
        """Open a connection with Row factory and foreign keys; always closed on exit"""
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
        finally:
            conn.close()

    def fetch_all(self, sql: str, params: Params = ()) -> List[Dict[str, Any]]:
        with self.connect() as conn:
            return [dict(row) for row in conn.execute(sql, tuple(params))]

    def fetch_one(self, sql: str, params: Params = ()) -> Optional[Dict[str, Any]]:
        with self.connect() as conn:
            row = conn.execute(sql, tuple(params)).fetchone()
        return dict(row) if row is not None else None

    def write(self, sql: str, params: Params = ()) -> int:
        """
        Run one INSERT, UPDATE or DELETE and commit.

        Returns:
            The new row id for an INSERT, otherwise the number of rows changed
        """
        with self.connect() as conn:
            cursor = conn.execute(sql, tuple(params))
            conn.commit()
        if sql.lstrip().upper().startswith("INSERT"):
            return cursor.lastrowid
        return cursor.rowcount

    def count(self, table: str, where: str = "", params: Params = ()) -> int:
        sql = f"SELECT COUNT(*) AS n FROM {table}"
        if where:
            sql += f" WHERE {where}"
        row = self.fetch_one(sql, params)
        return row["n"] if row else 0

    def table_names(self) -> List[str]:
        rows = self.fetch_all("SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name")
        return [row["name"] for row in rows]

    @contextmanager
    def transaction(self):
        """Connection whose statements commit together, or roll back on any error"""
        with self.connect() as conn:
            try:
                yield conn
            except BaseException:
                conn.rollback()
                raise
            conn.commit()
