"""
Tests for schema creation and migrations.

To run: pytest tests/test_schema.py -v
"""

import sqlite3

from kardly.db.schema import (
    SCHEMA_SQL,
    SCHEMA_VERSION,
    drop_all_tables,
    get_current_version,
    init_db,
)


def _columns(conn, table):
    return [row[1] for row in conn.execute(f"PRAGMA table_info({table})")]


class TestInitDb:
    def test_fresh_database(self, tmp_path):
        conn = sqlite3.connect(tmp_path / "fresh.sqlite")
        assert get_current_version(conn) == 0

        assert init_db(conn) is True
        assert get_current_version(conn) == SCHEMA_VERSION
        assert "is_favorite" in _columns(conn, "user_collections")
        conn.close()

    def test_idempotent(self, test_db):
        _, conn = test_db
        assert init_db(conn) is False

    def test_force_keeps_data(self, test_db):
        _, conn = test_db
        conn.execute("INSERT INTO kpop_groups (id, name, created_at) VALUES ('g', 'Aurora', 'now')")
        conn.commit()
        assert init_db(conn, force=True) is True
        assert conn.execute("SELECT COUNT(*) FROM kpop_groups").fetchone()[0] == 1

    def test_drop_all_tables(self, test_db):
        _, conn = test_db
        drop_all_tables(conn)
        assert get_current_version(conn) == 0


class TestMigrations:
    def test_v1_to_v2_adds_favorite(self, tmp_path):
        conn = sqlite3.connect(tmp_path / "v1.sqlite")
        v1_sql = "\n".join(
            line for line in SCHEMA_SQL.splitlines() if "is_favorite" not in line
        )
        conn.executescript(v1_sql)
        conn.execute("INSERT INTO schema_version (version, applied_at) VALUES (1, 'then')")
        conn.execute("INSERT INTO photocards (id, image_url, created_at, updated_at) VALUES ('p', 'u', 'n', 'n')")
        conn.execute(
            "INSERT INTO user_collections (user_id, photocard_id, is_owned, created_at, updated_at) "
            "VALUES ('u1', 'p', 1, 'n', 'n')"
        )
        conn.commit()
        assert "is_favorite" not in _columns(conn, "user_collections")

        assert init_db(conn) is True

        assert get_current_version(conn) == 2
        assert "is_favorite" in _columns(conn, "user_collections")
        row = conn.execute("SELECT is_owned, is_favorite FROM user_collections").fetchone()
        assert row == (1, 0)
        conn.close()
