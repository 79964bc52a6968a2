"""
Database-backed storage for story state documents.

Stores one JSON document per novel slug in SQLite. Every save is a single
transaction that replaces the whole row, so readers never observe a
partially updated state.
"""

import json
import sqlite3
from pathlib import Path
from typing import Dict, Optional, Any, List
from datetime import datetime
from contextlib import contextmanager
import logging

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path("data") / "story_states.db"


def get_db_connection(db_path: Path) -> sqlite3.Connection:
    """Get a database connection."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def db_transaction(db_path: Path):
    """Context manager for database transactions."""
    conn = get_db_connection(db_path)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_database(db_path: Path):
    """Initialize the database schema."""
    with db_transaction(db_path) as conn:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS story_states (
                slug TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                document TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_story_states_status
            ON story_states(status)
        """)


class StoryStateStorage:
    """SQLite storage for story state documents keyed by novel slug."""

    def __init__(self, db_path: Optional[Path] = None):
        """
        Initialize storage.

        Args:
            db_path: Path to the SQLite file (default: data/story_states.db)
        """
        self.db_path = Path(db_path) if db_path else DEFAULT_DB_PATH
        init_database(self.db_path)

    def save_document(self, slug: str, document: Dict[str, Any]) -> None:
        """
        Insert or replace the document for a slug.

        Raises:
            sqlite3.Error: On any database failure; the transaction is rolled back
        """
        status = document.get("metadata", {}).get("status", "NotStarted")
        payload = json.dumps(document, ensure_ascii=False, sort_keys=True)
        with db_transaction(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO story_states (slug, status, document, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(slug) DO UPDATE SET
                    status = excluded.status,
                    document = excluded.document,
                    updated_at = excluded.updated_at
                """,
                (slug, status, payload, datetime.now().isoformat()),
            )
        logger.debug(f"Saved state document for {slug} to {self.db_path}")

    def load_document(self, slug: str) -> Optional[Dict[str, Any]]:
        with db_transaction(self.db_path) as conn:
            row = conn.execute(
                "SELECT document FROM story_states WHERE slug = ?", (slug,)
            ).fetchone()
        if row is None:
            return None
        return json.loads(row["document"])

    def delete_document(self, slug: str) -> bool:
        with db_transaction(self.db_path) as conn:
            cursor = conn.execute("DELETE FROM story_states WHERE slug = ?", (slug,))
            return cursor.rowcount > 0

    def list_slugs(self, status: Optional[str] = None) -> List[str]:
        query = "SELECT slug FROM story_states"
        params: tuple = ()
        if status:
            query += " WHERE status = ?"
            params = (status,)
        query += " ORDER BY slug"
        with db_transaction(self.db_path) as conn:
            rows = conn.execute(query, params).fetchall()
        return [row["slug"] for row in rows]

    def count(self, status: Optional[str] = None) -> int:
        query = "SELECT COUNT(*) FROM story_states"
        params: tuple = ()
        if status:
            query += " WHERE status = ?"
            params = (status,)
        with db_transaction(self.db_path) as conn:
            return conn.execute(query, params).fetchone()[0]
