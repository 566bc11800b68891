"""Database schema and migrations."""

import sqlite3

SCHEMA_VERSION = 2

SCHEMA_SQL = """
-- Catalog groups
CREATE TABLE IF NOT EXISTS kpop_groups (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    image_url TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_groups_name ON kpop_groups(lower(name));

-- Group members
CREATE TABLE IF NOT EXISTS group_members (
    id TEXT PRIMARY KEY,
    group_id TEXT NOT NULL REFERENCES kpop_groups(id),
    name TEXT NOT NULL,
    stage_name TEXT,
    image_url TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_members_group_name ON group_members(group_id, lower(name));
CREATE INDEX IF NOT EXISTS idx_members_group ON group_members(group_id);

-- Albums
CREATE TABLE IF NOT EXISTS albums (
    id TEXT PRIMARY KEY,
    group_id TEXT NOT NULL REFERENCES kpop_groups(id),
    title TEXT NOT NULL,
    cover_image_url TEXT,
    created_at TEXT NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_albums_group_title ON albums(group_id, lower(title));
CREATE INDEX IF NOT EXISTS idx_albums_group ON albums(group_id);

-- Photocards (one row per uploaded asset)
CREATE TABLE IF NOT EXISTS photocards (
    id TEXT PRIMARY KEY,
    user_id TEXT,               -- NULL in anonymous deployments
    group_id TEXT REFERENCES kpop_groups(id),
    member_id TEXT REFERENCES group_members(id),
    album_id TEXT REFERENCES albums(id),
    image_url TEXT NOT NULL UNIQUE,
    asset_handle TEXT,          -- remote store handle for later deletion
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_photocards_user ON photocards(user_id);
CREATE INDEX IF NOT EXISTS idx_photocards_group ON photocards(group_id);
CREATE INDEX IF NOT EXISTS idx_photocards_member ON photocards(member_id);
CREATE INDEX IF NOT EXISTS idx_photocards_album ON photocards(album_id);

-- Per-user collection status overlay
CREATE TABLE IF NOT EXISTS user_collections (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    photocard_id TEXT NOT NULL REFERENCES photocards(id) ON DELETE CASCADE,
    is_owned INTEGER NOT NULL DEFAULT 0,
    is_wishlisted INTEGER NOT NULL DEFAULT 0,
    is_favorite INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(user_id, photocard_id)
);
CREATE INDEX IF NOT EXISTS idx_user_collections_user ON user_collections(user_id);

-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);
"""


def get_current_version(conn: sqlite3.Connection) -> int:
    """Get the current schema version, or 0 if not initialized."""
    try:
        cursor = conn.execute(
            "SELECT MAX(version) FROM schema_version"
        )
        row = cursor.fetchone()
        return row[0] if row[0] is not None else 0
    except sqlite3.OperationalError:
        # Table doesn't exist
        return 0


def init_db(conn: sqlite3.Connection, force: bool = False) -> bool:
    """
    Initialize or migrate the database schema.

    Args:
        conn: Database connection
        force: If True, recreate tables even if they exist

    Returns:
        True if schema was created/updated, False if already up to date
    """
    from kardly.utils import now_iso

    current = get_current_version(conn)

    if current >= SCHEMA_VERSION and not force:
        return False

    if current == 0 or force:
        conn.executescript(SCHEMA_SQL)
    else:
        if current < 2:
            _migrate_v1_to_v2(conn)

    conn.execute(
        "INSERT OR REPLACE INTO schema_version (version, applied_at) VALUES (?, ?)",
        (SCHEMA_VERSION, now_iso())
    )
    conn.commit()

    return True


def _migrate_v1_to_v2(conn: sqlite3.Connection):
    """Add is_favorite flag to user_collections."""
    cursor = conn.execute("PRAGMA table_info(user_collections)")
    columns = [row[1] for row in cursor.fetchall()]

    if "is_favorite" not in columns:
        conn.execute(
            "ALTER TABLE user_collections ADD COLUMN is_favorite INTEGER NOT NULL DEFAULT 0"
        )


def drop_all_tables(conn: sqlite3.Connection):
    """Drop all tables (for testing/reset)."""
    conn.executescript("""
        DROP TABLE IF EXISTS user_collections;
        DROP TABLE IF EXISTS photocards;
        DROP TABLE IF EXISTS albums;
        DROP TABLE IF EXISTS group_members;
        DROP TABLE IF EXISTS kpop_groups;
        DROP TABLE IF EXISTS schema_version;
    """)
    conn.commit()
