"""
Relational record store for Heelix.

Persists captured activities, projects and project documents, including the
`vectorized` flag the vectorization pipeline reconciles. The index never
holds text, so retrieval maps every hit back through `get_text()`.

Architecture Pattern: **Repository Pattern** - callers speak in records and
kinds, never in SQL. Each method opens its own connection through
SQLiteDatabase, so one RecordStore is safe to share between tasks.
"""

import logging
from typing import Dict, List, Optional, Sequence

from ..exceptions import RecordNotFoundError
from .database import SQLiteDatabase
from .models import (
    ActivityRecord,
    BLANK_DOCUMENT_NAME,
    BLANK_DOCUMENT_TEXT,
    DocumentRecord,
    Project,
    RecordKind,
    UNASSIGNED_PROJECT_NAME,
)

logger = logging.getLogger(__name__)

DEFAULT_MIN_TEXT_LENGTH = 200

_TABLES = {
    RecordKind.ACTIVITY: "activities",
    RecordKind.DOCUMENT: "documents",
}


def _table_for(kind) -> str:
    return _TABLES[RecordKind(kind)]


class RecordStore:
    """
    SQLite-backed store for activities, projects and documents.

    Args:
        db: Database wrapper bound to an initialized schema
        config: Config whose vectorize_min_chars is read on every call
            (the built-in default of 200 applies without one)

    Example:
        store = RecordStore(initialize_database(path))
        activity_id = store.save_activity("user-1", text, 20)
        store.get_text(RecordKind.ACTIVITY, activity_id)
    """

    def __init__(self, db: SQLiteDatabase, config=None):
        self.db = db
        self.config = config

    @property
    def min_text_length(self) -> int:
        """Length a text must strictly exceed to qualify for vectorization"""
        if self.config is None:
            return DEFAULT_MIN_TEXT_LENGTH
        return self.config.vectorize_min_chars

    # === Vectorization contract ===

    def write_text(self, document_id: int, text: str) -> bool:
        """
        Replace a document's text.

        Returns:
            True when the new text is long enough and the document is not yet
            vectorized, i.e. the document now qualifies for indexing

        Raises:
            RecordNotFoundError: If the document does not exist
        """
        updated = self.db.write(
            "UPDATE documents SET full_text = ? WHERE id = ?",
            (text, document_id)
        )
        if updated == 0:
            raise RecordNotFoundError(RecordKind.DOCUMENT.value, document_id)

        logger.info(f"Updated document text for id {document_id}, length {len(text)}")

        if len(text) <= self.min_text_length:
            return False
        return not self.get_flag(RecordKind.DOCUMENT, document_id)

    def get_flag(self, kind, record_id: int) -> bool:
        """Return the record's vectorized flag (False for a missing record)"""
        row = self.db.fetch_one(
            f"SELECT is_vectorized FROM {_table_for(kind)} WHERE id = ?",
            (record_id,)
        )
        return bool(row['is_vectorized']) if row else False

    def set_flag(self, kind, record_id: int) -> bool:
        """Mark a record as vectorized; returns False if the record is gone"""
        updated = self.db.write(
            f"UPDATE {_table_for(kind)} SET is_vectorized = 1 WHERE id = ?",
            (record_id,)
        )
        if updated:
            logger.debug(f"Marked {RecordKind(kind).value}:{record_id} as vectorized")
        return updated > 0

    def get_text(self, kind, record_id: int) -> Optional[str]:
        """Return the record's current text, or None if it no longer exists"""
        row = self.db.fetch_one(
            f"SELECT full_text FROM {_table_for(kind)} WHERE id = ?",
            (record_id,)
        )
        return row['full_text'] if row else None

    def get_title(self, kind, record_id: int) -> Optional[str]:
        """Window title for activities, display name for documents"""
        if RecordKind(kind) is RecordKind.ACTIVITY:
            activity = self.get_activity(record_id)
            return activity.display_name if activity else None
        document = self.get_document(record_id)
        return document.name if document else None

    def list_unvectorized(self, kind, min_length: Optional[int] = None,
                          limit: Optional[int] = None) -> List[int]:
        """
        Ids of records whose text qualifies but whose flag is still false.

        Used by the reconciliation pass. Ordered oldest first.
        """
        if min_length is None:
            min_length = self.min_text_length
        query = (
            f"SELECT id FROM {_table_for(kind)} "
            "WHERE is_vectorized = 0 AND length(full_text) > ? ORDER BY id"
        )
        params = (min_length,)
        if limit is not None:
            query += " LIMIT ?"
            params = (min_length, limit)
        return [row['id'] for row in self.db.fetch_all(query, params)]

    def record_exists(self, kind, record_id: int) -> bool:
        row = self.db.fetch_one(
            f"SELECT 1 AS found FROM {_table_for(kind)} WHERE id = ?",
            (record_id,)
        )
        return row is not None

    def get_counts(self) -> Dict[str, Dict[str, int]]:
        """Per-kind totals and vectorized counts"""
        counts = {}
        for kind, table in _TABLES.items():
            counts[kind.value] = {
                "total": self.db.count(table),
                "vectorized": self.db.count(table, "is_vectorized = 1"),
            }
        return counts

    # === Activities ===

    def save_activity(
        self,
        user_id: str,
        full_text: str,
        interval_length: int = 20,
        window_title: Optional[str] = None,
    ) -> int:
        """Insert a captured activity and return its id"""
        activity_id = self.db.write(
            """
            INSERT INTO activities (user_id, window_title, full_text, interval_length)
            VALUES (?, ?, ?, ?)
            """,
            (user_id, window_title, full_text, interval_length)
        )
        logger.info(f"Saved activity {activity_id} for {user_id} ({len(full_text)} chars)")
        return activity_id

    def get_activity(self, activity_id: int) -> Optional[ActivityRecord]:
        row = self.db.fetch_one("SELECT * FROM activities WHERE id = ?", (activity_id,))
        return ActivityRecord.from_dict(row) if row else None

    def list_activity_history(self, offset: int = 0, limit: int = 20) -> List[ActivityRecord]:
        """Most recent activities first"""
        rows = self.db.fetch_all(
            "SELECT * FROM activities ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            (limit, offset)
        )
        return [ActivityRecord.from_dict(row) for row in rows]

    def delete_activity(self, activity_id: int) -> bool:
        deleted = self.db.write("DELETE FROM activities WHERE id = ?", (activity_id,))
        return deleted > 0

    # === Projects ===

    def ensure_unassigned_project(self) -> int:
        """Return the id of the Unassigned project, creating it on first use"""
        row = self.db.fetch_one(
            "SELECT id FROM projects WHERE name = ? ORDER BY id LIMIT 1",
            (UNASSIGNED_PROJECT_NAME,)
        )
        if row:
            return row['id']

        project_id = self.db.write(
            "INSERT INTO projects (name) VALUES (?)",
            (UNASSIGNED_PROJECT_NAME,)
        )
        logger.info(f"Created '{UNASSIGNED_PROJECT_NAME}' project with id {project_id}")
        return project_id

    def create_project(self, name: str, activity_ids: Sequence[int] = ()) -> int:
        """Create a project, copying the given activities in as documents"""
        project_id = self.db.write(
            "INSERT INTO projects (name) VALUES (?)", (name,)
        )
        if activity_ids:
            self.add_activities_to_project(project_id, activity_ids)
        return project_id

    def update_project(self, project_id: int, name: str,
                       activity_ids: Sequence[int] = ()) -> None:
        """
        Rename a project.

        When activity_ids is non-empty the project's documents are replaced
        by copies of those activities.

        Raises:
            RecordNotFoundError: If the project does not exist
        """
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE projects SET name = ? WHERE id = ?", (name, project_id)
            )
            if cursor.rowcount == 0:
                raise RecordNotFoundError("project", project_id)
            if activity_ids:
                replaced = [
                    row['id'] for row in conn.execute(
                        "SELECT id FROM documents WHERE project_id = ?", (project_id,)
                    )
                ]
                self._promote_copies(conn, replaced)
                conn.execute("DELETE FROM documents WHERE project_id = ?", (project_id,))
                self._copy_activities(conn, project_id, activity_ids)

    def delete_project(self, project_id: int) -> List[int]:
        """
        Delete a project and its documents.

        Returns:
            Ids of the documents removed with it
        """
        with self.db.transaction() as conn:
            if conn.execute("SELECT 1 FROM projects WHERE id = ?", (project_id,)).fetchone() is None:
                raise RecordNotFoundError("project", project_id)
            document_ids = [
                row['id'] for row in conn.execute(
                    "SELECT id FROM documents WHERE project_id = ? ORDER BY id", (project_id,)
                )
            ]
            self._promote_copies(conn, document_ids)
            conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
        return document_ids

    def get_project(self, project_id: int) -> Optional[Project]:
        row = self.db.fetch_one("SELECT * FROM projects WHERE id = ?", (project_id,))
        if not row:
            return None
        project = Project.from_dict(row)
        self._attach_documents(project)
        return project

    def list_projects(self) -> List[Project]:
        projects = []
        for row in self.db.fetch_all("SELECT * FROM projects ORDER BY id"):
            project = Project.from_dict(row)
            self._attach_documents(project)
            projects.append(project)
        return projects

    def add_activities_to_project(self, project_id: int, activity_ids: Sequence[int]) -> List[int]:
        """Copy activities into a project as documents; returns the new document ids"""
        with self.db.transaction() as conn:
            return self._copy_activities(conn, project_id, activity_ids)

    def _copy_activities(self, conn, project_id: int, activity_ids: Sequence[int]) -> List[int]:
        document_ids = []
        for activity_id in activity_ids:
            cursor = conn.execute(
                """
                INSERT INTO documents (project_id, activity_id, document_name, full_text)
                SELECT ?, id, COALESCE(window_title, 'Document ' || id), full_text
                FROM activities WHERE id = ?
                """,
                (project_id, activity_id)
            )
            if cursor.rowcount:
                document_ids.append(cursor.lastrowid)
            else:
                logger.warning(f"Activity {activity_id} not found; not added to project {project_id}")
        return document_ids

    def _attach_documents(self, project: Project) -> None:
        rows = self.db.fetch_all(
            "SELECT id, document_name FROM documents WHERE project_id = ? ORDER BY id",
            (project.id,)
        )
        project.document_ids = [row['id'] for row in rows]
        project.document_names = [row['document_name'] for row in rows]

    # === Documents ===

    def add_blank_document(self, project_id: Optional[int] = None) -> int:
        """Create a placeholder document, in the Unassigned project by default"""
        if project_id is None:
            project_id = self.ensure_unassigned_project()
        elif self.get_project(project_id) is None:
            raise RecordNotFoundError("project", project_id)

        return self.db.write(
            "INSERT INTO documents (project_id, document_name, full_text) VALUES (?, ?, ?)",
            (project_id, BLANK_DOCUMENT_NAME, BLANK_DOCUMENT_TEXT)
        )

    def get_document(self, document_id: int) -> Optional[DocumentRecord]:
        row = self.db.fetch_one("SELECT * FROM documents WHERE id = ?", (document_id,))
        return DocumentRecord.from_dict(row) if row else None

    def rename_document(self, document_id: int, name: str) -> None:
        updated = self.db.write(
            "UPDATE documents SET document_name = ? WHERE id = ?", (name, document_id)
        )
        if updated == 0:
            raise RecordNotFoundError(RecordKind.DOCUMENT.value, document_id)

    def move_document(self, document_id: int, project_id: Optional[int]) -> None:
        """Move a document to another project (None = Unassigned)"""
        if project_id is None:
            project_id = self.ensure_unassigned_project()
        elif self.get_project(project_id) is None:
            raise RecordNotFoundError("project", project_id)

        updated = self.db.write(
            "UPDATE documents SET project_id = ? WHERE id = ?", (project_id, document_id)
        )
        if updated == 0:
            raise RecordNotFoundError(RecordKind.DOCUMENT.value, document_id)

    def delete_document(self, document_id: int) -> bool:
        with self.db.transaction() as conn:
            self._promote_copies(conn, [document_id])
            cursor = conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
        return cursor.rowcount > 0

    # === Multi-project tagging ===
    #
    # A document tagged with a further project gets one copy per project.
    # Copies point at the first document of the family through
    # source_document_id; each copy is edited and vectorized on its own.

    def tag_document_with_project(self, document_id: int, project_id: int) -> Optional[int]:
        """
        Add a document to another project.

        The project receives a copy with the same name and current text, not
        yet vectorized.

        Returns:
            Id of the new copy, or None if the document is already in that project

        Raises:
            RecordNotFoundError: If the document or the project does not exist
        """
        with self.db.transaction() as conn:
            source = conn.execute(
                "SELECT * FROM documents WHERE id = ?", (document_id,)
            ).fetchone()
            if source is None:
                raise RecordNotFoundError(RecordKind.DOCUMENT.value, document_id)
            if conn.execute("SELECT 1 FROM projects WHERE id = ?", (project_id,)).fetchone() is None:
                raise RecordNotFoundError("project", project_id)

            root_id = source['source_document_id'] or source['id']
            already = conn.execute(
                """
                SELECT 1 FROM documents
                WHERE (id = ? OR source_document_id = ?) AND project_id = ?
                """,
                (root_id, root_id, project_id)
            ).fetchone()
            if already:
                return None

            cursor = conn.execute(
                """
                INSERT INTO documents
                    (project_id, activity_id, source_document_id, document_name, full_text)
                VALUES (?, ?, ?, ?, ?)
                """,
                (project_id, source['activity_id'], root_id,
                 source['document_name'], source['full_text'])
            )
            copy_id = cursor.lastrowid

        logger.info(f"Tagged document {document_id} with project {project_id} (copy {copy_id})")
        return copy_id

    def untag_document_from_project(self, document_id: int, project_id: int) -> List[int]:
        """
        Remove a document, through any of its copies, from a project.

        Returns:
            Ids of the deleted document rows (empty if it was not in the project)

        Raises:
            RecordNotFoundError: If the document does not exist
        """
        with self.db.transaction() as conn:
            root_id = self._family_root(conn, document_id)
            if root_id is None:
                raise RecordNotFoundError(RecordKind.DOCUMENT.value, document_id)
            removed = [
                row['id'] for row in conn.execute(
                    """
                    SELECT id FROM documents
                    WHERE (id = ? OR source_document_id = ?) AND project_id = ?
                    ORDER BY id
                    """,
                    (root_id, root_id, project_id)
                )
            ]
            self._promote_copies(conn, removed)
            conn.executemany("DELETE FROM documents WHERE id = ?", [(i,) for i in removed])
        return removed

    def get_document_projects(self, document_id: int) -> List[int]:
        """Ids of every project holding the document or a copy of it"""
        row = self.db.fetch_one(
            "SELECT COALESCE(source_document_id, id) AS root FROM documents WHERE id = ?",
            (document_id,)
        )
        if row is None:
            return []
        rows = self.db.fetch_all(
            """
            SELECT DISTINCT project_id FROM documents
            WHERE (id = ? OR source_document_id = ?) AND project_id IS NOT NULL
            ORDER BY project_id
            """,
            (row['root'], row['root'])
        )
        return [r['project_id'] for r in rows]

    def _family_root(self, conn, document_id: int) -> Optional[int]:
        row = conn.execute(
            "SELECT COALESCE(source_document_id, id) AS root FROM documents WHERE id = ?",
            (document_id,)
        ).fetchone()
        return row['root'] if row else None

    def _promote_copies(self, conn, document_ids: Sequence[int]) -> None:
        """Relink the surviving copies of documents about to be deleted"""
        doomed = set(document_ids)
        for root_id in document_ids:
            survivors = [
                row['id'] for row in conn.execute(
                    "SELECT id FROM documents WHERE source_document_id = ? ORDER BY id",
                    (root_id,)
                )
                if row['id'] not in doomed
            ]
            if not survivors:
                continue
            new_root = survivors[0]
            conn.execute(
                "UPDATE documents SET source_document_id = NULL WHERE id = ?", (new_root,)
            )
            conn.execute(
                "UPDATE documents SET source_document_id = ? WHERE source_document_id = ?",
                (new_root, root_id)
            )

    # === Document metadata ===

    def get_document_metadata(self, document_id: int, key: Optional[str] = None) -> Dict[str, str]:
        """Key/value metadata of a document (one key if given); empty for unknown documents"""
        query = "SELECT meta_key, meta_value FROM document_metadata WHERE document_id = ?"
        params = [document_id]
        if key is not None:
            query += " AND meta_key = ?"
            params.append(key)
        rows = self.db.fetch_all(query + " ORDER BY meta_key", params)
        return {row['meta_key']: row['meta_value'] for row in rows}

    def set_document_metadata(self, document_id: int, key: str, value: str) -> None:
        """
        Set one metadata value, replacing any previous value for the key.

        Raises:
            RecordNotFoundError: If the document does not exist
        """
        if not self.record_exists(RecordKind.DOCUMENT, document_id):
            raise RecordNotFoundError(RecordKind.DOCUMENT.value, document_id)
        self.db.write(
            """
            INSERT OR REPLACE INTO document_metadata (document_id, meta_key, meta_value)
            VALUES (?, ?, ?)
            """,
            (document_id, key, value)
        )
