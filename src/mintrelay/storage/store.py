"""Durable idempotency store.

One SQLite table holds a row per message id. Every mutation is a single
upsert (or a short explicit transaction), so concurrent writers never discard
each other's updates the way a whole-document rewrite would. The store is the
only component allowed to touch the table.

Row lifecycle::

    (absent) --claim--> claimed --mark_processed--> processed
                           |                           ^
                           +--record_abandoned--> abandoned --claim--> claimed
                           +--release--> (absent or back to abandoned)
"""

import asyncio
import json
import os
import sqlite3
import tempfile
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Set, TypeVar

from ..errors import StorageError
from ..logging import LogContext, get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class MessageStatus(Enum):
    """Row status in the idempotency store."""

    CLAIMED = "claimed"
    PROCESSED = "processed"
    ABANDONED = "abandoned"


@dataclass
class StoreConfig:
    """Idempotency store configuration."""

    database_path: str = "relayer-db.sqlite3"
    connection_timeout: float = 30.0
    synchronous: str = "FULL"
    journal_mode: str = "WAL"


_SCHEMA = """
CREATE TABLE IF NOT EXISTS relay_messages (
    message_id TEXT PRIMARY KEY,
    status TEXT NOT NULL,
    transaction_hash TEXT,
    attempts INTEGER NOT NULL DEFAULT 0,
    last_error TEXT,
    owner TEXT,
    claimed_at REAL,
    updated_at REAL NOT NULL
)
"""

_INDEX = "CREATE INDEX IF NOT EXISTS idx_relay_messages_status ON relay_messages(status)"


def _normalize(message_id: str) -> str:
    message_id = message_id.lower()
    if not message_id.startswith("0x"):
        message_id = "0x" + message_id
    return message_id


class IdempotencyStore:
    """Per-key durable record of claimed, processed and abandoned messages."""

    def __init__(self, config: Optional[StoreConfig] = None):
        self.config = config or StoreConfig()
        self.owner = uuid.uuid4().hex
        self._connection: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

        if self.config.database_path != ":memory:":
            Path(self.config.database_path).parent.mkdir(parents=True, exist_ok=True)

    @classmethod
    def open(cls, path: str) -> "IdempotencyStore":
        store = cls(StoreConfig(database_path=str(path)))
        store.connect()
        return store

    def connect(self) -> None:
        """Open the database and create the schema."""
        with self._lock:
            if self._connection is not None:
                return

            try:
                self._connection = sqlite3.connect(
                    self.config.database_path,
                    timeout=self.config.connection_timeout,
                    isolation_level=None,
                    check_same_thread=False,
                )
                self._connection.execute(
                    f"PRAGMA journal_mode = {self.config.journal_mode}"
                )
                self._connection.execute(
                    f"PRAGMA synchronous = {self.config.synchronous}"
                )
                self._connection.execute(_SCHEMA)
                self._connection.execute(_INDEX)
            except sqlite3.Error as e:
                self._connection = None
                raise StorageError(
                    f"Failed to open idempotency store: {e}", operation="connect", cause=e
                )

            logger.debug(f"Opened idempotency store at {self.config.database_path}")

    def close(self) -> None:
        """Close the database."""
        with self._lock:
            if self._connection is None:
                return
            try:
                self._connection.close()
            except sqlite3.Error as e:
                logger.error(f"Error closing idempotency store: {e}")
            finally:
                self._connection = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _execute(self, operation: str, query: str, params=()) -> sqlite3.Cursor:
        if self._connection is None:
            raise StorageError("Idempotency store is not open", operation=operation)
        try:
            return self._connection.execute(query, params)
        except sqlite3.Error as e:
            raise StorageError(
                f"Idempotency store {operation} failed: {e}", operation=operation, cause=e
            )

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[None]:
        with self._lock:
            self._execute(operation, "BEGIN IMMEDIATE")
            try:
                yield
            except BaseException:
                self._execute(operation, "ROLLBACK")
                raise
            self._execute(operation, "COMMIT")

    # get/set/flush

    def get(self, message_id: str) -> bool:
        """Whether ``message_id`` is recorded as processed."""
        return self.status(message_id) is MessageStatus.PROCESSED

    def set(self, message_id: str, transaction_hash: Optional[str] = None) -> None:
        """Record ``message_id`` as processed."""
        self.mark_processed(message_id, transaction_hash)

    def flush(self) -> None:
        """Checkpoint the write-ahead log into the main database file."""
        with self._lock:
            self._execute("flush", "PRAGMA wal_checkpoint(PASSIVE)")

    def status(self, message_id: str) -> Optional[MessageStatus]:
        with self._lock:
            row = self._execute(
                "status",
                "SELECT status FROM relay_messages WHERE message_id = ?",
                (_normalize(message_id),),
            ).fetchone()
        return MessageStatus(row[0]) if row else None

    # claim lifecycle

    def claim(self, message_id: str) -> bool:
        """Atomically reserve ``message_id`` for submission.

        Succeeds when the id is unknown or abandoned. Fails when it is processed
        or already claimed by an in-flight task.
        """
        now = time.time()
        with self._lock:
            cursor = self._execute(
                "claim",
                """
                INSERT INTO relay_messages
                    (message_id, status, owner, claimed_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(message_id) DO UPDATE SET
                    status = excluded.status,
                    owner = excluded.owner,
                    claimed_at = excluded.claimed_at,
                    updated_at = excluded.updated_at
                WHERE relay_messages.status = ?
                """,
                (
                    _normalize(message_id),
                    MessageStatus.CLAIMED.value,
                    self.owner,
                    now,
                    now,
                    MessageStatus.ABANDONED.value,
                ),
            )
            return cursor.rowcount == 1

    def release(self, message_id: str) -> None:
        """Give up a claim without recording an outcome."""
        message_id = _normalize(message_id)
        with self._transaction("release"):
            self._execute(
                "release",
                "DELETE FROM relay_messages WHERE message_id = ? AND status = ? AND attempts = 0",
                (message_id, MessageStatus.CLAIMED.value),
            )
            self._execute(
                "release",
                "UPDATE relay_messages SET status = ?, updated_at = ? "
                "WHERE message_id = ? AND status = ?",
                (
                    MessageStatus.ABANDONED.value,
                    time.time(),
                    message_id,
                    MessageStatus.CLAIMED.value,
                ),
            )

    def mark_processed(self, message_id: str, transaction_hash: Optional[str] = None) -> None:
        """Durably record ``message_id`` as processed."""
        with self._lock:
            self._execute(
                "mark_processed",
                """
                INSERT INTO relay_messages
                    (message_id, status, transaction_hash, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(message_id) DO UPDATE SET
                    status = excluded.status,
                    transaction_hash = COALESCE(excluded.transaction_hash, relay_messages.transaction_hash),
                    updated_at = excluded.updated_at
                """,
                (
                    _normalize(message_id),
                    MessageStatus.PROCESSED.value,
                    transaction_hash,
                    time.time(),
                ),
            )
        logger.debug(
            "Marked message processed",
            context=LogContext(message_id=message_id, transaction_hash=transaction_hash),
        )

    def record_abandoned(self, message_id: str, attempts: int, last_error: Optional[str]) -> None:
        """Dead-letter a message whose retries were exhausted.

        A processed row is never downgraded.
        """
        with self._lock:
            self._execute(
                "record_abandoned",
                """
                INSERT INTO relay_messages
                    (message_id, status, attempts, last_error, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(message_id) DO UPDATE SET
                    status = excluded.status,
                    attempts = relay_messages.attempts + excluded.attempts,
                    last_error = excluded.last_error,
                    updated_at = excluded.updated_at
                WHERE relay_messages.status != ?
                """,
                (
                    _normalize(message_id),
                    MessageStatus.ABANDONED.value,
                    attempts,
                    last_error,
                    time.time(),
                    MessageStatus.PROCESSED.value,
                ),
            )

    def recover_stale_claims(self) -> int:
        """Release claims left behind by a previous process."""
        with self._transaction("recover_stale_claims"):
            deleted = self._execute(
                "recover_stale_claims",
                "DELETE FROM relay_messages WHERE status = ? AND attempts = 0 "
                "AND (owner IS NULL OR owner != ?)",
                (MessageStatus.CLAIMED.value, self.owner),
            ).rowcount
            reverted = self._execute(
                "recover_stale_claims",
                "UPDATE relay_messages SET status = ? "
                "WHERE status = ? AND (owner IS NULL OR owner != ?)",
                (MessageStatus.ABANDONED.value, MessageStatus.CLAIMED.value, self.owner),
            ).rowcount

        count = deleted + reverted
        if count:
            logger.warning(f"Released {count} stale claim(s) from a previous run")
        return count

    # queries

    def processed_ids(self) -> Set[str]:
        with self._lock:
            rows = self._execute(
                "processed_ids",
                "SELECT message_id FROM relay_messages WHERE status = ?",
                (MessageStatus.PROCESSED.value,),
            ).fetchall()
        return {row[0] for row in rows}

    def abandoned(self) -> List[Dict[str, Any]]:
        """Dead-lettered messages, oldest first."""
        with self._lock:
            rows = self._execute(
                "abandoned",
                "SELECT message_id, attempts, last_error, updated_at FROM relay_messages "
                "WHERE status = ? ORDER BY updated_at",
                (MessageStatus.ABANDONED.value,),
            ).fetchall()
        return [
            {
                "message_id": row[0],
                "attempts": row[1],
                "last_error": row[2],
                "updated_at": row[3],
            }
            for row in rows
        ]

    def stats(self) -> Dict[str, int]:
        with self._lock:
            rows = self._execute(
                "stats",
                "SELECT status, COUNT(*) FROM relay_messages GROUP BY status",
            ).fetchall()
        counts = {status.value: 0 for status in MessageStatus}
        counts.update({row[0]: row[1] for row in rows})
        return counts

    # document compatibility

    def export_document(self) -> Dict[str, Dict[str, bool]]:
        """``{"processed": {<messageId>: true, ...}}``"""
        return {"processed": {mid: True for mid in sorted(self.processed_ids())}}

    def import_document(self, document: Dict[str, Any]) -> int:
        """Mark every truthy id of a processed document; returns how many."""
        processed = document.get("processed") if isinstance(document, dict) else None
        if not isinstance(processed, dict):
            raise StorageError("Document has no 'processed' mapping", operation="import")

        ids = [mid for mid, flag in processed.items() if flag]
        with self._transaction("import"):
            for message_id in ids:
                self.mark_processed(message_id)
        return len(ids)

    def write_json(self, path: str) -> None:
        """Write the processed document atomically."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(target.parent), prefix=f".{target.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(self.export_document(), fh, indent=2)
            os.replace(tmp_path, target)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def load_json(self, path: str) -> int:
        """Import a processed document file.

        A missing or unreadable file imports nothing.
        """
        source = Path(path)
        if not source.exists():
            return 0

        try:
            document = json.loads(source.read_text(encoding="utf-8"))
            return self.import_document(document)
        except (OSError, ValueError, StorageError) as e:
            logger.warning(f"Could not read {source}, ignoring it: {e}")
            return 0


async def run_blocking(func: Callable[..., T], *args: Any) -> T:
    """Run a blocking store call on the default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, func, *args)
