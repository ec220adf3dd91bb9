"""PostgreSQL storage for typing session records and the session event log."""

import json
import logging
import os
import threading
from contextlib import contextmanager

from psycopg2.extras import RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from core.interfaces import PersistenceClient
from core.models import Attempt, Diagnosis
from server.file_storage import DEFAULT_CONFIG_FILE, build_session_record, read_config

logger = logging.getLogger(__name__)

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS typing_sessions (
        session_id VARCHAR(255) PRIMARY KEY,
        username VARCHAR(255) NOT NULL,
        therapist_code VARCHAR(64) NOT NULL,
        is_complete BOOLEAN NOT NULL DEFAULT FALSE,
        record JSONB NOT NULL,
        saved_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_typing_sessions_therapist ON typing_sessions(therapist_code, username)",
    """
    CREATE TABLE IF NOT EXISTS session_events (
        id SERIAL PRIMARY KEY,
        logged_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        event VARCHAR(64) NOT NULL,
        username VARCHAR(255) NOT NULL,
        session_id VARCHAR(255),
        phase VARCHAR(20),
        data JSONB
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_session_events_session ON session_events(session_id, logged_at)",
)

UPSERT_SESSION = """
    INSERT INTO typing_sessions (session_id, username, therapist_code, is_complete, record, saved_at)
    VALUES (%s, %s, %s, %s, %s, CURRENT_TIMESTAMP)
    ON CONFLICT (session_id)
    DO UPDATE SET record = EXCLUDED.record, is_complete = EXCLUDED.is_complete,
                  saved_at = CURRENT_TIMESTAMP
"""

MAX_CONNECTIONS = 8


class PostgresStorage(PersistenceClient):
    """Stores session records as JSONB rows, one per session id.

    Every operation borrows its own pooled connection; saves arrive on
    executor threads while event logging runs on the event loop.
    """

    def __init__(self, config_file: str = None, db_url: str = None, max_connections: int = MAX_CONNECTIONS):
        self.config_file = config_file or DEFAULT_CONFIG_FILE
        self.db_url = db_url or os.environ.get('DATABASE_URL', 'postgresql://localhost:5432/typesight')
        self.max_connections = max_connections
        self._pool = None
        self._pool_lock = threading.Lock()

    @property
    def pool(self) -> ThreadedConnectionPool:
        """Create the pool and the tables on first use."""
        with self._pool_lock:
            if self._pool is None:
                pool = ThreadedConnectionPool(1, self.max_connections, self.db_url)
                self._create_schema(pool)
                self._pool = pool
        return self._pool

    def _create_schema(self, pool: ThreadedConnectionPool):
        conn = pool.getconn()
        try:
            with conn.cursor() as cur:
                for statement in SCHEMA:
                    cur.execute(statement)
            conn.commit()
        finally:
            pool.putconn(conn)

    @contextmanager
    def transaction(self):
        """Borrow a connection; commit on success, roll back and re-raise on error."""
        pool = self.pool
        conn = pool.getconn()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            pool.putconn(conn)

    def close(self):
        with self._pool_lock:
            if self._pool is not None:
                self._pool.closeall()
                self._pool = None

    def load_config(self) -> dict:
        return read_config(self.config_file)

    def save(self, session_id: str, username: str, therapist_code: str,
             attempts: list[Attempt], diagnosis: Diagnosis | None, is_complete: bool) -> dict:
        record = build_session_record(session_id, username, therapist_code, attempts, diagnosis, is_complete)
        try:
            with self.transaction() as conn, conn.cursor() as cur:
                cur.execute(UPSERT_SESSION, (session_id, username, therapist_code, is_complete, json.dumps(record)))
        except Exception as e:
            logger.error(f"Error saving session {session_id}: {e}")
            raise
        logger.info(f"Saved session {session_id} ({len(attempts)} attempts, complete={is_complete})")
        return {'saved': True, 'sessionId': session_id, 'summary': record['summary']}

    def load_session(self, session_id: str) -> dict | None:
        try:
            with self.transaction() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute("SELECT record FROM typing_sessions WHERE session_id = %s", (session_id,))
                row = cur.fetchone()
        except Exception as e:
            logger.error(f"Error loading session {session_id}: {e}")
            return None
        return row['record'] if row else None

    def list_sessions(self, therapist_code: str, username: str = None) -> list[dict]:
        """Stored sessions for a therapist, newest first."""
        query = "SELECT record FROM typing_sessions WHERE therapist_code = %s"
        params = [therapist_code]
        if username:
            query += " AND username = %s"
            params.append(username)
        query += " ORDER BY saved_at DESC"
        try:
            with self.transaction() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(query, params)
                return [row['record'] for row in cur.fetchall()]
        except Exception as e:
            logger.error(f"Error listing sessions for therapist {therapist_code}: {e}")
            return []

    def log_event(self, event: str, username: str, session_id: str = None,
                  phase: str = None, **data) -> None:
        """Append to the session event log. Failures are logged, never raised."""
        try:
            with self.transaction() as conn, conn.cursor() as cur:
                cur.execute(
                    "INSERT INTO session_events (event, username, session_id, phase, data) "
                    "VALUES (%s, %s, %s, %s, %s)",
                    (event, username, session_id, phase, json.dumps(data) if data else None)
                )
        except Exception as e:
            logger.error(f"Error logging event {event} for session {session_id}: {e}")
