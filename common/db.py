"""
Message Store Module.

Handles storage and querying of the tracked Discord message data:
- Raw messages captured from the monitored channel
- Filtered metric snapshots produced by every aggregation run

All connections use WAL mode so the bot and the CLI can read while the
tracker writes. See common/config.py for path configuration.

The store is a read/write service from the tracker's point of view:
write/read and the snapshot calls return a StoreResult and never raise,
failures are logged and reported as success=False.

Usage:
    from common.db import MessageStore
    store = MessageStore()
    store.init_database()
    result = store.read({"channel_id": "123"})
"""

import sqlite3
import json
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, Iterable, List

from .config import MESSAGES_DB_PATH, SQLITE_PRAGMAS, FILTERED_SNAPSHOT_CAP
from .models import Message, UserMetrics, StoreResult, parse_timestamp, format_timestamp, utcnow

logger = logging.getLogger(__name__)


# ============================================================================
# CONNECTION MANAGEMENT
# ============================================================================

def get_connection(db_path: Path = None) -> sqlite3.Connection:
    """
    Get a WAL-enabled database connection with row factory.

    Args:
        db_path: Override path. Defaults to MESSAGES_DB_PATH from config.

    Returns:
        sqlite3.Connection with Row factory enabled.
    """
    path = str(db_path or MESSAGES_DB_PATH)
    conn = sqlite3.connect(path, timeout=10)
    conn.row_factory = sqlite3.Row

    # Apply WAL and other performance/safety pragmas
    for pragma, value in SQLITE_PRAGMAS.items():
        conn.execute(f"PRAGMA {pragma} = {value}")

    return conn


@contextmanager
def db_session(db_path: Path = None):
    """
    Context manager for database operations with automatic commit/rollback.

    Usage:
        with db_session() as (conn, cursor):
            cursor.execute("INSERT INTO ...")
        # auto-commits on success, rolls back on exception, always closes
    """
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

def init_database(db_path: Path = None):
    """
    Initialize the message store schema.

    Safe to call multiple times - uses CREATE IF NOT EXISTS for all
    tables and indexes.
    """
    with db_session(db_path) as (conn, cursor):

        # ----- Messages from the monitored channel -----
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS live_messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                message_id TEXT UNIQUE NOT NULL,
                channel_id TEXT,
                channel_name TEXT,
                author_id TEXT NOT NULL,
                author_username TEXT,
                content TEXT,
                timestamp TEXT,
                timestamp_unix REAL,
                timestamp_edited TEXT,
                attachments_json TEXT,
                embeds_json TEXT,
                reactions_json TEXT
            )
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_live_channel ON live_messages(channel_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_live_author ON live_messages(author_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_live_timestamp ON live_messages(timestamp_unix)")

        # ----- Aggregated per-user metrics, one row per aggregation run -----
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS filtered_snapshots (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                created_at TEXT NOT NULL,
                user_count INTEGER DEFAULT 0,
                metrics_json TEXT NOT NULL
            )
        """)

    logger.info(f"Message store initialized at {db_path or MESSAGES_DB_PATH}")


def _message_row(msg: Message) -> tuple:
    """Transform a Message into a row tuple matching the live_messages schema."""
    return (
        msg.id,
        msg.channel_id,
        msg.channel_name,
        msg.author_id,
        msg.author_username,
        msg.content,
        format_timestamp(msg.timestamp),
        msg.timestamp.timestamp(),
        format_timestamp(msg.edited_timestamp),
        json.dumps(msg.attachments),
        json.dumps(msg.embeds),
        json.dumps([r.to_dict() for r in msg.reactions]),
    )


def _row_to_message(row: sqlite3.Row) -> Message:
    return Message.from_dict({
        'id': row['message_id'],
        'channel_id': row['channel_id'],
        'channel_name': row['channel_name'],
        'author_id': row['author_id'],
        'author_username': row['author_username'],
        'content': row['content'] or '',
        'timestamp': row['timestamp'],
        'edited_timestamp': row['timestamp_edited'],
        'attachments': json.loads(row['attachments_json'] or '[]'),
        'embeds': json.loads(row['embeds_json'] or '[]'),
        'reactions': json.loads(row['reactions_json'] or '[]'),
    })


_INSERT_MSG_SQL = """
    INSERT OR IGNORE INTO live_messages
    (message_id, channel_id, channel_name, author_id, author_username,
     content, timestamp, timestamp_unix, timestamp_edited,
     attachments_json, embeds_json, reactions_json)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""


# ============================================================================
# MESSAGE STORE
# ============================================================================

class MessageStore:
    """Read/write service over the message database."""

    def __init__(self, db_path: Path = None, snapshot_cap: int = FILTERED_SNAPSHOT_CAP):
        self.db_path = Path(db_path or MESSAGES_DB_PATH)
        self.snapshot_cap = max(1, snapshot_cap)

    def init_database(self):
        init_database(self.db_path)

    def write(self, records: Iterable[Message]) -> StoreResult:
        """
        Insert messages, ignoring ids that are already stored.

        Returns:
            StoreResult with created_ids listing only the newly inserted ids.
        """
        created = []
        try:
            with db_session(self.db_path) as (conn, cursor):
                for msg in records:
                    cursor.execute(_INSERT_MSG_SQL, _message_row(msg))
                    if cursor.rowcount > 0:
                        created.append(msg.id)
        except Exception as e:
            logger.error(f"Error writing messages: {e}")
            return StoreResult(success=False, error=str(e))

        if created:
            logger.debug(f"Stored {len(created)} new messages")
        return StoreResult(success=True, created_ids=created)

    def read(self, query: Optional[dict] = None, limit: int = None) -> StoreResult:
        """
        Read messages in chronological order.

        Args:
            query: Optional filters - channel_id, author_id, since (ISO
                timestamp, inclusive). An empty query returns everything.
            limit: Maximum number of records to return.
        """
        query = query or {}
        clauses = []
        params = []
        if query.get('channel_id'):
            clauses.append("channel_id = ?")
            params.append(str(query['channel_id']))
        if query.get('author_id'):
            clauses.append("author_id = ?")
            params.append(str(query['author_id']))
        if query.get('since'):
            since = parse_timestamp(query['since'])
            if since is None:
                return StoreResult(success=False, error=f"Invalid 'since' timestamp: {query['since']!r}")
            clauses.append("timestamp_unix >= ?")
            params.append(since.timestamp())

        sql = "SELECT * FROM live_messages"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY timestamp_unix ASC, id ASC"
        if limit:
            sql += " LIMIT ?"
            params.append(int(limit))

        try:
            conn = get_connection(self.db_path)
            try:
                rows = conn.execute(sql, params).fetchall()
            finally:
                conn.close()
            return StoreResult(success=True, data=[_row_to_message(row) for row in rows])
        except Exception as e:
            logger.error(f"Error reading messages: {e}")
            return StoreResult(success=False, error=str(e))

    def known_ids(self, channel_id: str = None) -> set:
        """Ids of messages already stored, optionally for one channel."""
        conn = get_connection(self.db_path)
        try:
            if channel_id:
                rows = conn.execute(
                    "SELECT message_id FROM live_messages WHERE channel_id = ?", (str(channel_id),)
                ).fetchall()
            else:
                rows = conn.execute("SELECT message_id FROM live_messages").fetchall()
            return {row['message_id'] for row in rows}
        finally:
            conn.close()

    # ------------------------------------------------------------------------
    # Filtered data snapshots
    # ------------------------------------------------------------------------

    def write_filtered(self, metrics: List[UserMetrics]) -> StoreResult:
        """Persist one aggregation run, keeping only the newest `snapshot_cap` snapshots."""
        try:
            with db_session(self.db_path) as (conn, cursor):
                cursor.execute("""
                    INSERT INTO filtered_snapshots (created_at, user_count, metrics_json)
                    VALUES (?, ?, ?)
                """, (utcnow().isoformat(), len(metrics), json.dumps([m.to_dict() for m in metrics])))
                snapshot_id = str(cursor.lastrowid)
                cursor.execute("""
                    DELETE FROM filtered_snapshots
                    WHERE id NOT IN (SELECT id FROM filtered_snapshots ORDER BY id DESC LIMIT ?)
                """, (self.snapshot_cap,))
        except Exception as e:
            logger.error(f"Error writing filtered snapshot: {e}")
            return StoreResult(success=False, error=str(e))
        return StoreResult(success=True, created_ids=[snapshot_id])

    def latest_filtered(self) -> StoreResult:
        """The most recent snapshot's metrics, as plain dicts."""
        try:
            conn = get_connection(self.db_path)
            try:
                row = conn.execute(
                    "SELECT metrics_json FROM filtered_snapshots ORDER BY id DESC LIMIT 1"
                ).fetchone()
            finally:
                conn.close()
        except Exception as e:
            logger.error(f"Error reading filtered snapshot: {e}")
            return StoreResult(success=False, error=str(e))
        return StoreResult(success=True, data=json.loads(row['metrics_json']) if row else [])
