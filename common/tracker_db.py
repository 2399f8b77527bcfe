"""
Tracker Database Module.

Stores the evaluation log and the error log of the task tracker as two
capped, newest-first buffers. Lives in its own database file
(tracker.db) separate from the message store.

Newest-first means insertion order: rows are ordered by their
autoincrement id, so entries written within the same second still
come back in the order they were logged.

Usage:
    from common.tracker_db import init_tracker_db, insert_evaluation
"""

import sqlite3
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, List, Dict

from .config import TRACKER_DB_PATH, SQLITE_PRAGMAS

logger = logging.getLogger(__name__)


# ============================================================================
# CONNECTION MANAGEMENT
# ============================================================================

def get_connection(db_path: Path = None) -> sqlite3.Connection:
    """Get a WAL-enabled connection to the tracker database."""
    conn = sqlite3.connect(str(db_path or TRACKER_DB_PATH), timeout=10)
    conn.row_factory = sqlite3.Row
    for pragma, value in SQLITE_PRAGMAS.items():
        conn.execute(f"PRAGMA {pragma} = {value}")
    return conn


@contextmanager
def tracker_session(db_path: Path = None):
    """Context manager for tracker DB operations with auto commit/rollback."""
    conn = get_connection(db_path)
    cursor = conn.cursor()
    try:
        yield conn, cursor
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


# ============================================================================
# SCHEMA INITIALIZATION
# ============================================================================

def init_tracker_db(db_path: Path = None):
    """
    Initialize the tracker database schema.

    Safe to call multiple times.
    """
    with tracker_session(db_path) as (conn, cursor):

        # ----- Evaluation outcomes -----
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS evaluation_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                task_id TEXT NOT NULL,
                requirement_id TEXT NOT NULL,
                level TEXT NOT NULL,
                message TEXT,
                proof TEXT,
                message_sent INTEGER DEFAULT 0
            )
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_eval_task ON evaluation_log(task_id)")

        # ----- Tracker failures -----
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS error_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                source TEXT,
                message TEXT
            )
        """)

    logger.info(f"Tracker database initialized at {db_path or TRACKER_DB_PATH}")


# ============================================================================
# WRITES
# ============================================================================

def _trim(cursor, table: str, cap: int):
    """Drop everything past the newest `cap` rows."""
    cursor.execute(f"""
        DELETE FROM {table}
        WHERE id NOT IN (SELECT id FROM {table} ORDER BY id DESC LIMIT ?)
    """, (cap,))


def insert_evaluation(timestamp: str, task_id: str, requirement_id: str, level: str,
                      message: str, proof: str, message_sent: bool,
                      cap: int, db_path: Path = None) -> int:
    """Log one evaluation and trim the log to `cap` entries. Returns the row id."""
    with tracker_session(db_path) as (conn, cursor):
        cursor.execute("""
            INSERT INTO evaluation_log
            (timestamp, task_id, requirement_id, level, message, proof, message_sent)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (timestamp, str(task_id), str(requirement_id), level, message, proof,
              1 if message_sent else 0))
        row_id = cursor.lastrowid
        _trim(cursor, "evaluation_log", cap)
        return row_id


def insert_error(timestamp: str, source: str, message: str, cap: int, db_path: Path = None) -> int:
    """Log one tracker error and trim the log to `cap` entries. Returns the row id."""
    with tracker_session(db_path) as (conn, cursor):
        cursor.execute(
            "INSERT INTO error_log (timestamp, source, message) VALUES (?, ?, ?)",
            (timestamp, source, message)
        )
        row_id = cursor.lastrowid
        _trim(cursor, "error_log", cap)
        return row_id


# ============================================================================
# READS
# ============================================================================

def get_evaluations(task_id: Optional[str] = None, limit: int = 50, db_path: Path = None) -> List[Dict]:
    """Newest-first evaluations, optionally for one task."""
    conn = get_connection(db_path)
    try:
        if task_id:
            rows = conn.execute("""
                SELECT * FROM evaluation_log WHERE task_id = ?
                ORDER BY id DESC LIMIT ?
            """, (str(task_id), limit)).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM evaluation_log ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
        return [dict(row) for row in rows]
    finally:
        conn.close()


def get_errors(limit: int = 20, db_path: Path = None) -> List[Dict]:
    """Newest-first tracker errors."""
    conn = get_connection(db_path)
    try:
        rows = conn.execute("SELECT * FROM error_log ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(row) for row in rows]
    finally:
        conn.close()


def count_rows(table: str, db_path: Path = None) -> int:
    conn = get_connection(db_path)
    try:
        return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
    finally:
        conn.close()
