"""
Session state persistence in PostgreSQL.

Stores the exported session record (turn counter, tiers, budgets, weights,
TTL) as JSONB, one row per session. The engine never talks to the database;
``MemorySession`` saves after each turn and loads on startup.
"""

import json
import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)


def connect(db_url: str):
    """Open an autocommit psycopg connection with dict rows."""
    from psycopg import Connection
    from psycopg.rows import dict_row

    return Connection.connect(
        db_url,
        autocommit=True,
        prepare_threshold=0,
        row_factory=dict_row,
    )


class SessionStore:
    """Load and save exported session records. A no-op without a connection."""

    def __init__(self, pg_conn=None):
        self._pg_conn = pg_conn
        self._setup_table()

    def _setup_table(self):
        """Create memory_sessions table if using PostgreSQL."""
        if not self._pg_conn:
            return
        try:
            with self._pg_conn.cursor() as cur:
                cur.execute("""
                    CREATE TABLE IF NOT EXISTS memory_sessions (
                        session_id TEXT PRIMARY KEY,
                        state JSONB NOT NULL,
                        turn INT NOT NULL DEFAULT 0,
                        archive_size INT NOT NULL DEFAULT 0,
                        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                    )
                """)
        except Exception as e:
            logger.warning("Failed to create memory_sessions table: %s", e)

    def load(self, session_id: str) -> Optional[dict[str, Any]]:
        """Load the exported record for a session, or None."""
        if not self._pg_conn:
            return None
        try:
            with self._pg_conn.cursor() as cur:
                cur.execute(
                    "SELECT state FROM memory_sessions WHERE session_id = %s",
                    (session_id,),
                )
                row = cur.fetchone()
                if row:
                    state = row["state"] if isinstance(row, dict) else row[0]
                    # psycopg decodes JSONB; tolerate drivers that return text
                    return json.loads(state) if isinstance(state, str) else state
        except Exception as e:
            logger.warning("Failed to load memory state for session %s: %s", session_id, e)
        return None

    def save(self, session_id: str, record: dict[str, Any]):
        """Upsert the exported record for a session."""
        if not self._pg_conn:
            return
        try:
            with self._pg_conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO memory_sessions (session_id, state, turn, archive_size, updated_at)
                    VALUES (%s, %s::jsonb, %s, %s, now())
                    ON CONFLICT (session_id) DO UPDATE SET
                        state = EXCLUDED.state,
                        turn = EXCLUDED.turn,
                        archive_size = EXCLUDED.archive_size,
                        updated_at = now()
                    """,
                    (
                        session_id,
                        json.dumps(record, ensure_ascii=False),
                        record.get("turn", 0),
                        len(record.get("old", [])),
                    ),
                )
        except Exception as e:
            logger.warning("Failed to save memory state for session %s: %s", session_id, e)

    def delete(self, session_id: str):
        """Delete a session's stored state."""
        if not self._pg_conn:
            return
        try:
            with self._pg_conn.cursor() as cur:
                cur.execute("DELETE FROM memory_sessions WHERE session_id = %s", (session_id,))
        except Exception as e:
            logger.warning("Failed to delete memory state for session %s: %s", session_id, e)
