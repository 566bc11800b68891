"""
Tests for the SQLite connection pool.

To run: pytest tests/test_connection_pool.py -v
"""

import threading

import pytest

from kardly.db.connection import ConnectionPool, PoolTimeout, get_db_path


class TestGetDbPath:
    def test_override_wins(self, monkeypatch):
        monkeypatch.setenv("KARDLY_DB", "/tmp/env.sqlite")
        assert get_db_path("/tmp/explicit.sqlite") == "/tmp/explicit.sqlite"

    def test_env(self, monkeypatch):
        monkeypatch.setenv("KARDLY_DB", "/tmp/env.sqlite")
        assert get_db_path() == "/tmp/env.sqlite"

    def test_home_default(self, monkeypatch, tmp_path):
        monkeypatch.delenv("KARDLY_DB", raising=False)
        monkeypatch.setenv("KARDLY_HOME", str(tmp_path))
        assert get_db_path() == str(tmp_path / "kardly.sqlite")


class TestConnectionPool:
    def test_opens_lazily_and_reuses(self, test_db):
        db_path, _ = test_db
        pool = ConnectionPool(db_path, size=2)
        assert pool.open_count == 0

        conn = pool.acquire()
        assert pool.open_count == 1
        pool.release(conn)
        assert pool.acquire() is conn
        pool.release(conn)
        pool.close()

    def test_foreign_keys_enabled(self, test_db):
        db_path, _ = test_db
        pool = ConnectionPool(db_path, size=1)
        with pool.connection() as conn:
            assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1
        pool.close()

    def test_timeout_when_exhausted(self, test_db):
        db_path, _ = test_db
        pool = ConnectionPool(db_path, size=1, timeout=0.05)
        conn = pool.acquire()
        with pytest.raises(PoolTimeout):
            pool.acquire()
        pool.release(conn)
        pool.close()

    def test_waiter_gets_released_connection(self, test_db):
        db_path, _ = test_db
        pool = ConnectionPool(db_path, size=1, timeout=5)
        conn = pool.acquire()
        got = []

        t = threading.Thread(target=lambda: got.append(pool.acquire()))
        t.start()
        pool.release(conn)
        t.join()

        assert got == [conn]
        pool.release(conn)
        pool.close()

    def test_connection_in_transaction_is_discarded(self, test_db):
        db_path, _ = test_db
        pool = ConnectionPool(db_path, size=1)
        conn = pool.acquire()
        conn.execute("BEGIN IMMEDIATE")

        pool.release(conn)

        assert pool.open_count == 0
        assert pool.idle_count == 0
        fresh = pool.acquire()
        assert fresh is not conn
        assert not fresh.in_transaction
        pool.release(fresh)
        pool.close()

    def test_context_manager_commits(self, test_db):
        db_path, conn = test_db
        pool = ConnectionPool(db_path, size=1)
        with pool.connection() as pconn:
            pconn.execute(
                "INSERT INTO kpop_groups (id, name, created_at) VALUES ('g', 'Aurora', 'now')"
            )
        assert conn.execute("SELECT COUNT(*) FROM kpop_groups").fetchone()[0] == 1
        assert pool.idle_count == 1
        pool.close()

    def test_context_manager_rolls_back(self, test_db):
        db_path, conn = test_db
        pool = ConnectionPool(db_path, size=1)
        with pytest.raises(ValueError):
            with pool.connection() as pconn:
                pconn.execute(
                    "INSERT INTO kpop_groups (id, name, created_at) VALUES ('g', 'Aurora', 'now')"
                )
                raise ValueError("abort")
        assert conn.execute("SELECT COUNT(*) FROM kpop_groups").fetchone()[0] == 0
        assert pool.idle_count == 1
        pool.close()

    def test_closed_pool(self, test_db):
        db_path, _ = test_db
        pool = ConnectionPool(db_path, size=2)
        conn = pool.acquire()
        pool.close()

        with pytest.raises(RuntimeError):
            pool.acquire()

        pool.release(conn)
        assert pool.open_count == 0
