"""DuckDB-backed message ledger.

The ledger is the single source of truth for direct messages. It is
append-only apart from the ``is_read`` flag, which only ever flips from
false to true. Unread counts are never cached: they are computed from the
ledger every time they are needed.

Database Schema:
    messages table:
        - id: Sequence-assigned primary key
        - sender_id: User who sent the message
        - receiver_id: User the message is addressed to
        - message: Message body
        - created_at: Persistence time (UTC, naive TIMESTAMP)
        - is_read: Whether the receiver has read the message

Thread Safety:
    Calls from async code run on the default executor. Every call opens its
    own cursor on the shared database, so two executor threads never use
    the same DuckDB connection object.
    Writes (append, mark_read) hold a per-ledger lock: DuckDB aborts one of
    two transactions updating the same rows, and a lost race on mark_read
    must count 0 rather than fail.

Usage:
    ledger = MessageLedger.get_instance()
    message = ledger.append(sender_id=1, receiver_id=2, body="hello")
    counts = ledger.unread_counts_for(2)        # {1: 1}
"""
import asyncio
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, TypeVar

import duckdb

from .errors import PersistenceError
from .schemas import Message

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CREATE_SEQUENCE = "CREATE SEQUENCE IF NOT EXISTS messages_seq START 1"

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS messages (
    id          BIGINT DEFAULT nextval('messages_seq') PRIMARY KEY,
    sender_id   BIGINT NOT NULL,
    receiver_id BIGINT NOT NULL,
    message     VARCHAR NOT NULL,
    created_at  TIMESTAMP NOT NULL,
    is_read     BOOLEAN NOT NULL DEFAULT false
)
"""

_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_messages_receiver ON messages(receiver_id)",
    "CREATE INDEX IF NOT EXISTS idx_messages_pair ON messages(sender_id, receiver_id)",
)

_COLUMNS = "id, sender_id, receiver_id, message, created_at, is_read"


class MessageLedger:
    """Singleton service for the ``messages`` table in DuckDB.

    Attributes:
        _instance: Singleton instance of the service.
        _db_path: Path to the DuckDB database file.
    """

    _instance: Optional["MessageLedger"] = None
    _db_path: str = "messages.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        """Open the database and create the schema if needed.

        Args:
            db_path: Path to DuckDB file. Defaults to "messages.duckdb".
        """
        if db_path:
            self._db_path = db_path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        # DuckDB rejects concurrent updates of the same rows; writes take turns
        self._write_lock = threading.Lock()
        self._initialize_db()
        logger.info("[Ledger] Initialized with db=%s", self._db_path)

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "MessageLedger":
        """Get or create the singleton instance.

        Args:
            db_path: Optional database path (only used on first call).
        """
        if cls._instance is None:
            cls._instance = cls(db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Close the connection and drop the singleton (used by tests)."""
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            try:
                self._connection = duckdb.connect(self._db_path)
            except duckdb.Error as e:
                raise PersistenceError(f"Cannot open message store: {e}") from e
        return self._connection

    def _initialize_db(self) -> None:
        """Create sequence, table and indexes. Safe to call repeatedly."""
        conn = self._get_connection()
        conn.execute(_CREATE_SEQUENCE)
        conn.execute(_CREATE_TABLE)
        for statement in _INDEXES:
            conn.execute(statement)

    def _cursor(self) -> duckdb.DuckDBPyConnection:
        return self._get_connection().cursor()

    # -----------------------------------------------------------------------
    # Ledger operations
    # -----------------------------------------------------------------------

    def append(self, sender_id: int, receiver_id: int, body: str) -> Message:
        """Persist a new unread message.

        Args:
            sender_id: User who sent the message.
            receiver_id: User the message is addressed to.
            body: Message body, stored as given.

        Returns:
            The persisted Message with its id and created_at.

        Raises:
            PersistenceError: If the store is unavailable or the insert fails.
        """
        created_at = datetime.now(timezone.utc).replace(tzinfo=None)
        try:
            with self._write_lock, self._cursor() as cur:
                row = cur.execute(
                    f"""
                    INSERT INTO messages (sender_id, receiver_id, message, created_at, is_read)
                    VALUES (?, ?, ?, ?, false)
                    RETURNING {_COLUMNS}
                    """,
                    [sender_id, receiver_id, body, created_at],
                ).fetchone()
        except duckdb.Error as e:
            logger.error("[Ledger] Insert failed for %s -> %s: %s", sender_id, receiver_id, e)
            raise PersistenceError("Message save failed") from e
        return self._row_to_message(row)

    def mark_read(self, sender_id: int, receiver_id: int) -> int:
        """Flip every unread message from ``sender_id`` to ``receiver_id``.

        Only rows that are still unread are touched, so a second call for
        the same pair affects nothing.

        Returns:
            Number of rows flipped to read (0 is valid).
        """
        try:
            with self._write_lock, self._cursor() as cur:
                rows = cur.execute(
                    """
                    UPDATE messages SET is_read = true
                    WHERE sender_id = ? AND receiver_id = ? AND is_read = false
                    RETURNING id
                    """,
                    [sender_id, receiver_id],
                ).fetchall()
        except duckdb.Error as e:
            logger.error("[Ledger] Mark-read failed for %s -> %s: %s", sender_id, receiver_id, e)
            raise PersistenceError("Marking messages as read failed") from e
        return len(rows)

    def unread_counts_for(self, user_id: int) -> Dict[int, int]:
        """Unread messages addressed to ``user_id``, grouped by sender.

        Peers without unread messages are absent from the mapping.
        """
        try:
            with self._cursor() as cur:
                rows = cur.execute(
                    """
                    SELECT sender_id, COUNT(*)
                    FROM messages
                    WHERE receiver_id = ? AND is_read = false
                    GROUP BY sender_id
                    """,
                    [user_id],
                ).fetchall()
        except duckdb.Error as e:
            raise PersistenceError("Fetching unread counts failed") from e
        return {int(sender_id): int(count) for sender_id, count in rows}

    def unread_count_from(self, user_id: int, other_user_id: int) -> int:
        """Unread messages sent by ``other_user_id`` to ``user_id``."""
        try:
            with self._cursor() as cur:
                row = cur.execute(
                    """
                    SELECT COUNT(*)
                    FROM messages
                    WHERE sender_id = ? AND receiver_id = ? AND is_read = false
                    """,
                    [other_user_id, user_id],
                ).fetchone()
        except duckdb.Error as e:
            raise PersistenceError("Fetching unread messages failed") from e
        return int(row[0])

    def history(self, user_id: int, other_user_id: int) -> List[Message]:
        """Every message between two users, oldest first.

        Not paginated; id breaks ties between equal timestamps.
        """
        try:
            with self._cursor() as cur:
                rows = cur.execute(
                    f"""
                    SELECT {_COLUMNS}
                    FROM messages
                    WHERE (sender_id = ? AND receiver_id = ?)
                       OR (sender_id = ? AND receiver_id = ?)
                    ORDER BY created_at ASC, id ASC
                    """,
                    [user_id, other_user_id, other_user_id, user_id],
                ).fetchall()
        except duckdb.Error as e:
            raise PersistenceError("Fetching messages failed") from e
        return [self._row_to_message(row) for row in rows]

    def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    @staticmethod
    def _row_to_message(row) -> Message:
        message_id, sender_id, receiver_id, body, created_at, is_read = row
        if isinstance(created_at, datetime) and created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return Message(
            id=message_id,
            sender_id=sender_id,
            receiver_id=receiver_id,
            message=body,
            created_at=created_at,
            is_read=is_read,
        )


async def run_ledger_call(fn: Callable[..., T], *args: Any, timeout: float) -> T:
    """Run a blocking ledger call on the default executor with a deadline.

    Args:
        fn: Bound ledger method.
        *args: Positional arguments for ``fn``.
        timeout: Seconds to wait before giving up.

    Raises:
        PersistenceError: On timeout, or whatever ``fn`` raises.
    """
    loop = asyncio.get_event_loop()
    try:
        return await asyncio.wait_for(
            loop.run_in_executor(None, fn, *args),
            timeout=timeout,
        )
    except asyncio.TimeoutError as e:
        name = getattr(fn, "__name__", repr(fn))
        logger.error("[Ledger] %s timed out after %.1fs", name, timeout)
        raise PersistenceError(f"Message store timed out ({name})") from e
