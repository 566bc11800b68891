"""Shared fixtures: temporary database, seeded catalog, recording asset store."""

import tempfile
import threading
from pathlib import Path

import pytest

from kardly.db import AlbumRepository, ConnectionPool, GroupRepository, MemberRepository
from kardly.db.connection import close_connection, get_connection
from kardly.db.schema import init_db
from kardly.errors import AssetStoreError
from kardly.services.asset_store import AssetHandle, AssetStore


class RecordingStore(AssetStore):
    """In-memory asset store that records every call.

    With url/handle left as None each upload gets a fresh one.
    """

    def __init__(self, url=None, handle=None, fail_upload=False, fail_delete=False):
        self.url = url
        self.handle = handle
        self.fail_upload = fail_upload
        self.fail_delete = fail_delete
        self.uploads = []
        self.deletes = []
        self.live = set()
        self._lock = threading.Lock()

    def upload(self, stream, content_type, filename):
        with self._lock:
            self.uploads.append({
                "data": stream.read(),
                "content_type": content_type,
                "filename": filename,
                "staged_path": getattr(stream, "name", None),
            })
            n = len(self.uploads)
        if self.fail_upload:
            raise AssetStoreError("store unavailable")
        asset = AssetHandle(
            url=self.url or f"https://assets.test/{n}.png",
            handle=self.handle or f"h{n}",
        )
        with self._lock:
            self.live.add(asset.handle)
        return asset

    def delete(self, handle):
        with self._lock:
            self.deletes.append(handle)
        if self.fail_delete:
            raise AssetStoreError("store unreachable")
        with self._lock:
            self.live.discard(handle)


@pytest.fixture
def test_db():
    """Create a fresh temporary database with current schema."""
    close_connection()
    with tempfile.NamedTemporaryFile(suffix=".sqlite", delete=False) as f:
        db_path = f.name

    conn = get_connection(db_path)
    init_db(conn)

    yield db_path, conn

    close_connection()
    for suffix in ("", "-wal", "-shm"):
        Path(db_path + suffix).unlink(missing_ok=True)


@pytest.fixture
def catalog(test_db):
    """
    Two groups with one member and one album each, plus an empty group.

    G1: member M_G1, album A1
    G2: member M1, album A2
    G3: nothing
    """
    db_path, conn = test_db
    groups = GroupRepository(conn)
    members = MemberRepository(conn)
    albums = AlbumRepository(conn)

    g1, _ = groups.find_or_create("Aurora")
    g2, _ = groups.find_or_create("Blue Comet")
    g3, _ = groups.find_or_create("Cinder")
    m_g1, _ = members.find_or_create(g1.id, "Kim Haneul", "Haneul")
    m1, _ = members.find_or_create(g2.id, "Park Jiwoo", "Jiwoo")
    a1, _ = albums.find_or_create(g1.id, "First Light")
    a2, _ = albums.find_or_create(g2.id, "Orbit")
    conn.commit()

    return {
        "G1": g1.id,
        "G2": g2.id,
        "G3": g3.id,
        "M_G1": m_g1.id,
        "M1": m1.id,
        "A1": a1.id,
        "A2": a2.id,
    }


@pytest.fixture
def pool(test_db):
    db_path, _ = test_db
    p = ConnectionPool(db_path, size=4, timeout=5)
    yield p
    p.close()


@pytest.fixture
def store():
    return RecordingStore()
