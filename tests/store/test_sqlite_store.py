"""Tests for SQLiteStore."""

import asyncio
import sqlite3
from pathlib import Path

import pytest

from cody.errors import StoreUnavailable
from cody.store import SQLiteStore


class TestSQLiteStoreInit:
    """Tests for SQLiteStore initialization."""

    def test_creates_db_directory(self, tmp_path: Path):
        """Store creates parent directories if they don't exist."""
        nested_path = tmp_path / "nested" / "dir" / "cody.db"
        store = SQLiteStore(nested_path)
        store.init_db()
        assert nested_path.exists()
        asyncio.run(store.close())

    def test_creates_kv_table(self, store: SQLiteStore):
        """init_db creates the kv table."""
        conn = store._get_connection()
        cursor = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='kv'"
        )
        assert cursor.fetchone() is not None

    def test_init_db_idempotent(self, store: SQLiteStore):
        """init_db can be called multiple times."""
        store.init_db()
        store.init_db()


class TestSQLiteStoreReadWrite:
    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, store: SQLiteStore):
        assert await store.get("missing") is None

    @pytest.mark.asyncio
    async def test_set_then_get(self, store: SQLiteStore):
        await store.set("k", b"value")
        assert await store.get("k") == b"value"
        assert await store.exists("k") is True

    @pytest.mark.asyncio
    async def test_set_overwrites(self, store: SQLiteStore):
        await store.set("k", b"one")
        await store.set("k", b"two")
        assert await store.get("k") == b"two"

    @pytest.mark.asyncio
    async def test_delete(self, store: SQLiteStore):
        await store.set("k", b"v")
        assert await store.delete("k") is True
        assert await store.delete("k") is False
        assert await store.exists("k") is False


class TestSQLiteStoreExpiry:
    @pytest.mark.asyncio
    async def test_value_hidden_after_ttl(self, store: SQLiteStore, clock):
        await store.set("k", b"v", ttl=10)
        clock.advance(9)
        assert await store.get("k") == b"v"
        clock.advance(2)
        assert await store.get("k") is None
        assert await store.exists("k") is False

    @pytest.mark.asyncio
    async def test_no_ttl_never_expires(self, store: SQLiteStore, clock):
        await store.set("k", b"v")
        clock.advance(10**9)
        assert await store.get("k") == b"v"

    @pytest.mark.asyncio
    async def test_set_rearms_expiry(self, store: SQLiteStore, clock):
        await store.set("k", b"v", ttl=10)
        clock.advance(8)
        await store.set("k", b"v2", ttl=10)
        clock.advance(8)
        assert await store.get("k") == b"v2"

    @pytest.mark.asyncio
    async def test_expire_live_key(self, store: SQLiteStore, clock):
        await store.set("k", b"v", ttl=10)
        assert await store.expire("k", 100) is True
        clock.advance(50)
        assert await store.get("k") == b"v"

    @pytest.mark.asyncio
    async def test_expire_dead_key_returns_false(self, store: SQLiteStore, clock):
        await store.set("k", b"v", ttl=1)
        clock.advance(2)
        assert await store.expire("k", 100) is False
        assert await store.get("k") is None

    @pytest.mark.asyncio
    async def test_sweep_removes_expired_rows(self, store: SQLiteStore, clock):
        await store.set("short", b"v", ttl=1)
        await store.set("long", b"v", ttl=100)
        await store.set("forever", b"v")
        clock.advance(5)

        removed = await store.sweep_expired()

        assert removed == 1
        rows = store._get_connection().execute("SELECT key FROM kv").fetchall()
        assert sorted(r["key"] for r in rows) == ["forever", "long"]

    @pytest.mark.asyncio
    async def test_sweep_task_runs_without_reads(self, tmp_path: Path, clock):
        store = SQLiteStore(tmp_path / "sweep.db", clock=clock, sweep_interval=0.01)
        await store.set("k", b"v", ttl=1)
        clock.advance(5)

        store.start_sweep_task()
        await asyncio.sleep(0.1)
        store.stop_sweep_task()

        rows = store._get_connection().execute("SELECT key FROM kv").fetchall()
        assert rows == []
        await store.close()


class TestSQLiteStoreErrors:
    @pytest.mark.asyncio
    async def test_sqlite_error_becomes_store_unavailable(
        self, store: SQLiteStore, monkeypatch
    ):
        def broken(*args, **kwargs):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(store, "_get", broken)

        with pytest.raises(StoreUnavailable, match="locked"):
            await store.get("k")

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, tmp_path: Path):
        store = SQLiteStore(tmp_path / "c.db")
        await store.set("k", b"v")
        await store.close()
        await store.close()
