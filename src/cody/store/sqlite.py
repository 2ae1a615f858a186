"""SQLite-backed durable store."""

import asyncio
import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Callable

from ..errors import StoreUnavailable
from .base import DurableStore

logger = logging.getLogger(__name__)


class SQLiteStore(DurableStore):
    """Key/value store on a local SQLite database.

    Each row carries an absolute ``expires_at`` timestamp. Reads filter out
    expired rows, and a background task deletes them periodically so they
    disappear even if nobody reads them again. Blocking sqlite calls run in
    a worker thread.
    """

    def __init__(
        self,
        db_path: Path,
        clock: Callable[[], float] = time.time,
        sweep_interval: float = 60.0,
    ) -> None:
        """Initialize the store with a database path.

        Args:
            db_path: Path to the SQLite database file.
            clock: Returns the current time in seconds (injectable for tests).
            sweep_interval: Seconds between expired-row sweeps.
        """
        self.db_path = db_path
        self.clock = clock
        self.sweep_interval = sweep_interval
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()
        self._sweep_task: asyncio.Task | None = None

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._create_schema(self._conn)
        return self._conn

    @staticmethod
    def _create_schema(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS kv (
                key         TEXT PRIMARY KEY,
                value       BLOB NOT NULL,
                expires_at  REAL
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_kv_expires ON kv(expires_at)")
        conn.commit()

    def init_db(self) -> None:
        """Create the key/value table if it doesn't exist."""
        with self._lock:
            self._create_schema(self._get_connection())

    def _expiry(self, ttl: float | None) -> float | None:
        return None if ttl is None else self.clock() + ttl

    def _run(self, fn: Callable, *args):
        """Run a blocking database operation under the connection lock."""
        with self._lock:
            try:
                return fn(self._get_connection(), *args)
            except sqlite3.Error as e:
                raise StoreUnavailable(str(e)) from e

    def _get(self, conn: sqlite3.Connection, key: str) -> bytes | None:
        row = conn.execute(
            "SELECT value FROM kv WHERE key = ? AND (expires_at IS NULL OR expires_at > ?)",
            (key, self.clock()),
        ).fetchone()
        return None if row is None else bytes(row["value"])

    def _set(
        self, conn: sqlite3.Connection, key: str, value: bytes, ttl: float | None
    ) -> None:
        conn.execute(
            """
            INSERT INTO kv (key, value, expires_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                expires_at = excluded.expires_at
            """,
            (key, value, self._expiry(ttl)),
        )
        conn.commit()

    def _expire(self, conn: sqlite3.Connection, key: str, ttl: float) -> bool:
        cursor = conn.execute(
            "UPDATE kv SET expires_at = ? "
            "WHERE key = ? AND (expires_at IS NULL OR expires_at > ?)",
            (self._expiry(ttl), key, self.clock()),
        )
        conn.commit()
        return cursor.rowcount > 0

    def _delete(self, conn: sqlite3.Connection, key: str) -> bool:
        cursor = conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        conn.commit()
        return cursor.rowcount > 0

    def _sweep(self, conn: sqlite3.Connection) -> int:
        cursor = conn.execute(
            "DELETE FROM kv WHERE expires_at IS NOT NULL AND expires_at <= ?",
            (self.clock(),),
        )
        conn.commit()
        return cursor.rowcount

    async def get(self, key: str) -> bytes | None:
        return await asyncio.to_thread(self._run, self._get, key)

    async def set(self, key: str, value: bytes, ttl: float | None = None) -> None:
        await asyncio.to_thread(self._run, self._set, key, value, ttl)

    async def exists(self, key: str) -> bool:
        return await self.get(key) is not None

    async def expire(self, key: str, ttl: float) -> bool:
        return await asyncio.to_thread(self._run, self._expire, key, ttl)

    async def delete(self, key: str) -> bool:
        return await asyncio.to_thread(self._run, self._delete, key)

    async def sweep_expired(self) -> int:
        return await asyncio.to_thread(self._run, self._sweep)

    async def _sweep_loop(self) -> None:
        """Background task for periodic expiry sweeps."""
        while True:
            try:
                await asyncio.sleep(self.sweep_interval)
                removed = await self.sweep_expired()
                if removed:
                    logger.debug("Swept %d expired key(s)", removed)
            except asyncio.CancelledError:
                break
            except StoreUnavailable as e:
                logger.warning("Expiry sweep failed: %s", e)

    def start_sweep_task(self) -> None:
        """Start the background sweep task."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    def stop_sweep_task(self) -> None:
        """Stop the background sweep task."""
        if self._sweep_task and not self._sweep_task.done():
            self._sweep_task.cancel()

    async def close(self) -> None:
        """Stop sweeping and close the database connection."""
        self.stop_sweep_task()
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
