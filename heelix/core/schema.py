"""
Schema creation for the Heelix record store

Tables:
- activities: captured on-screen activity (immutable apart from the vectorized flag)
- projects: named groups of documents, including the well-known "Unassigned"
- documents: editable project documents; a document tagged with further
  projects has one copy per project, linked by source_document_id
- document_metadata: free-form key/value pairs per document
"""

import logging
import sqlite3
from pathlib import Path

from .database import SQLiteDatabase

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS activities (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        window_title TEXT,
        full_text TEXT NOT NULL DEFAULT '',
        interval_length INTEGER NOT NULL DEFAULT 20 CHECK(interval_length >= 0),
        is_vectorized INTEGER NOT NULL DEFAULT 0 CHECK(is_vectorized IN (0, 1)),
        created_at DATETIME DEFAULT (strftime('%Y-%m-%d %H:%M:%f', 'now', 'utc'))
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_activities_user ON activities(user_id, created_at DESC);",
    """
    CREATE TABLE IF NOT EXISTS projects (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        created_at DATETIME DEFAULT (strftime('%Y-%m-%d %H:%M:%f', 'now', 'utc'))
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_projects_name ON projects(name);",
    """
    CREATE TABLE IF NOT EXISTS documents (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER,
        activity_id INTEGER,
        source_document_id INTEGER,
        document_name TEXT NOT NULL,
        full_text TEXT NOT NULL DEFAULT '',
        is_vectorized INTEGER NOT NULL DEFAULT 0 CHECK(is_vectorized IN (0, 1)),
        created_at DATETIME DEFAULT (strftime('%Y-%m-%d %H:%M:%f', 'now', 'utc')),
        updated_at DATETIME DEFAULT (strftime('%Y-%m-%d %H:%M:%f', 'now', 'utc')),
        FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE,
        FOREIGN KEY (activity_id) REFERENCES activities(id) ON DELETE SET NULL,
        FOREIGN KEY (source_document_id) REFERENCES documents(id) ON DELETE SET NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_documents_project ON documents(project_id);",
    "CREATE INDEX IF NOT EXISTS idx_documents_source ON documents(source_document_id);",
    """
    CREATE TABLE IF NOT EXISTS document_metadata (
        document_id INTEGER NOT NULL,
        meta_key TEXT NOT NULL,
        meta_value TEXT,
        PRIMARY KEY (document_id, meta_key),
        FOREIGN KEY (document_id) REFERENCES documents(id) ON DELETE CASCADE
    );
    """,
    """
    CREATE TRIGGER IF NOT EXISTS documents_updated_at AFTER UPDATE OF full_text, document_name, project_id ON documents
    BEGIN
        UPDATE documents SET updated_at = strftime('%Y-%m-%d %H:%M:%f', 'now', 'utc')
        WHERE id = NEW.id;
    END;
    """,
]


def initialize_database(db_path: Path) -> SQLiteDatabase:
    """
    Create the database file and schema if needed.

    Safe to call on every startup; all statements are idempotent.

    Args:
        db_path: Location of the SQLite file

    Returns:
        SQLiteDatabase bound to the initialized file
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    try:
        cursor = conn.cursor()
        cursor.execute("PRAGMA foreign_keys = ON;")
        # WAL lets readers proceed while a capture or edit is writing
        cursor.execute("PRAGMA journal_mode = WAL;")
        for statement in SCHEMA_STATEMENTS:
            cursor.execute(statement)
        conn.commit()
    finally:
        conn.close()

    logger.info(f"Database ready at {db_path}")
    return SQLiteDatabase(db_path)
