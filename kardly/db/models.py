"""Database models and repositories."""

import sqlite3
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from kardly.errors import InvalidReferenceError, NotFoundError, PermissionDenied, ReturnCode
from kardly.utils import new_id, now_iso


@dataclass
class Group:
    """A catalog group."""
    id: str
    name: str
    image_url: Optional[str] = None
    is_active: bool = True
    created_at: Optional[str] = None


@dataclass
class Member:
    """A member belonging to exactly one group."""
    id: str
    group_id: str
    name: str
    stage_name: Optional[str] = None
    image_url: Optional[str] = None
    is_active: bool = True
    created_at: Optional[str] = None


@dataclass
class Album:
    """An album released by a group."""
    id: str
    group_id: str
    title: str
    cover_image_url: Optional[str] = None
    created_at: Optional[str] = None


@dataclass
class Photocard:
    """One collectible card backed by an uploaded image."""
    id: Optional[str]
    image_url: str
    user_id: Optional[str] = None
    group_id: Optional[str] = None
    member_id: Optional[str] = None
    album_id: Optional[str] = None
    asset_handle: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class CollectionStatus:
    """A user's flags for one photocard."""
    photocard_id: str
    is_owned: bool = False
    is_wishlisted: bool = False
    is_favorite: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "photocard_id": self.photocard_id,
            "is_owned": self.is_owned,
            "is_wishlisted": self.is_wishlisted,
            "is_favorite": self.is_favorite,
        }


class GroupRepository:
    """CRUD operations for kpop_groups table."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def get(self, group_id: str) -> Optional[Group]:
        """Get a group by ID."""
        row = self.conn.execute(
            "SELECT * FROM kpop_groups WHERE id = ?", (group_id,)
        ).fetchone()
        return self._row_to_group(row) if row else None

    def get_by_name(self, name: str) -> Optional[Group]:
        """Get a group by name (case-insensitive)."""
        row = self.conn.execute(
            "SELECT * FROM kpop_groups WHERE lower(name) = lower(?)", (name,)
        ).fetchone()
        return self._row_to_group(row) if row else None

    def list(self, search: Optional[str] = None) -> List[Group]:
        """List groups ordered by name, optionally filtered by substring."""
        query = "SELECT * FROM kpop_groups"
        params: List[Any] = []
        if search:
            query += " WHERE name LIKE ? COLLATE NOCASE"
            params.append(f"%{search}%")
        query += " ORDER BY name COLLATE NOCASE"
        return [self._row_to_group(row) for row in self.conn.execute(query, params)]

    def find_or_create(self, name: str, image_url: Optional[str] = None) -> Tuple[Group, bool]:
        """
        Return the group with this name, creating it if absent.

        Returns (group, created). A concurrent create of the same name
        surfaces as a unique-index violation, after which the winner's row
        is read back.
        """
        existing = self.get_by_name(name)
        if existing:
            return existing, False

        group = Group(id=new_id(), name=name, image_url=image_url, created_at=now_iso())
        try:
            self.conn.execute(
                "INSERT INTO kpop_groups (id, name, image_url, is_active, created_at) VALUES (?, ?, ?, 1, ?)",
                (group.id, group.name, group.image_url, group.created_at),
            )
        except sqlite3.IntegrityError:
            existing = self.get_by_name(name)
            if existing is None:
                raise
            return existing, False
        return group, True

    def _row_to_group(self, row: sqlite3.Row) -> Group:
        return Group(
            id=row["id"],
            name=row["name"],
            image_url=row["image_url"],
            is_active=bool(row["is_active"]),
            created_at=row["created_at"],
        )


class MemberRepository:
    """CRUD operations for group_members table."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def get(self, member_id: str) -> Optional[Member]:
        """Get a member by ID."""
        row = self.conn.execute(
            "SELECT * FROM group_members WHERE id = ?", (member_id,)
        ).fetchone()
        return self._row_to_member(row) if row else None

    def find_in_group(self, group_id: str, name: str, stage_name: Optional[str] = None) -> Optional[Member]:
        """Find a member of a group whose name or stage name matches."""
        row = self.conn.execute(
            """
            SELECT * FROM group_members
            WHERE group_id = ?
              AND (lower(name) = lower(?) OR lower(stage_name) = lower(?))
            LIMIT 1
            """,
            (group_id, name, stage_name or name),
        ).fetchone()
        return self._row_to_member(row) if row else None

    def list(self, group_id: Optional[str] = None, search: Optional[str] = None) -> List[Dict[str, Any]]:
        """List members with their group name, ordered by member name."""
        query = """
            SELECT m.*, g.name AS group_name
            FROM group_members m
            LEFT JOIN kpop_groups g ON m.group_id = g.id
            WHERE 1=1
        """
        params: List[Any] = []
        if group_id:
            query += " AND m.group_id = ?"
            params.append(group_id)
        if search:
            query += " AND (m.name LIKE ? COLLATE NOCASE OR m.stage_name LIKE ? COLLATE NOCASE)"
            params.extend([f"%{search}%", f"%{search}%"])
        query += " ORDER BY m.name COLLATE NOCASE"

        results = []
        for row in self.conn.execute(query, params):
            d = dict(row)
            d["is_active"] = bool(d["is_active"])
            results.append(d)
        return results

    def find_or_create(
        self,
        group_id: str,
        name: str,
        stage_name: Optional[str] = None,
        image_url: Optional[str] = None,
    ) -> Tuple[Member, bool]:
        """Return the matching member of the group, creating it if absent."""
        if GroupRepository(self.conn).get(group_id) is None:
            raise InvalidReferenceError("group", group_id)

        existing = self.find_in_group(group_id, name, stage_name)
        if existing:
            return existing, False

        member = Member(
            id=new_id(),
            group_id=group_id,
            name=name,
            stage_name=stage_name,
            image_url=image_url,
            created_at=now_iso(),
        )
        try:
            self.conn.execute(
                """
                INSERT INTO group_members (id, group_id, name, stage_name, image_url, is_active, created_at)
                VALUES (?, ?, ?, ?, ?, 1, ?)
                """,
                (member.id, member.group_id, member.name, member.stage_name, member.image_url, member.created_at),
            )
        except sqlite3.IntegrityError:
            existing = self.find_in_group(group_id, name, stage_name)
            if existing is None:
                raise
            return existing, False
        return member, True

    def _row_to_member(self, row: sqlite3.Row) -> Member:
        return Member(
            id=row["id"],
            group_id=row["group_id"],
            name=row["name"],
            stage_name=row["stage_name"],
            image_url=row["image_url"],
            is_active=bool(row["is_active"]),
            created_at=row["created_at"],
        )


class AlbumRepository:
    """CRUD operations for albums table."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def get(self, album_id: str) -> Optional[Album]:
        """Get an album by ID."""
        row = self.conn.execute(
            "SELECT * FROM albums WHERE id = ?", (album_id,)
        ).fetchone()
        return self._row_to_album(row) if row else None

    def get_by_title(self, group_id: str, title: str) -> Optional[Album]:
        row = self.conn.execute(
            "SELECT * FROM albums WHERE group_id = ? AND lower(title) = lower(?)",
            (group_id, title),
        ).fetchone()
        return self._row_to_album(row) if row else None

    def list(self, group_id: Optional[str] = None, search: Optional[str] = None) -> List[Dict[str, Any]]:
        """List albums with their group name, newest first."""
        query = """
            SELECT a.*, g.name AS group_name
            FROM albums a
            LEFT JOIN kpop_groups g ON a.group_id = g.id
            WHERE 1=1
        """
        params: List[Any] = []
        if group_id:
            query += " AND a.group_id = ?"
            params.append(group_id)
        if search:
            query += " AND a.title LIKE ? COLLATE NOCASE"
            params.append(f"%{search}%")
        query += " ORDER BY a.created_at DESC"
        return [dict(row) for row in self.conn.execute(query, params)]

    def find_or_create(
        self,
        group_id: str,
        title: str,
        cover_image_url: Optional[str] = None,
    ) -> Tuple[Album, bool]:
        """Return the group's album with this title, creating it if absent."""
        if GroupRepository(self.conn).get(group_id) is None:
            raise InvalidReferenceError("group", group_id)

        existing = self.get_by_title(group_id, title)
        if existing:
            return existing, False

        album = Album(
            id=new_id(),
            group_id=group_id,
            title=title,
            cover_image_url=cover_image_url,
            created_at=now_iso(),
        )
        try:
            self.conn.execute(
                "INSERT INTO albums (id, group_id, title, cover_image_url, created_at) VALUES (?, ?, ?, ?, ?)",
                (album.id, album.group_id, album.title, album.cover_image_url, album.created_at),
            )
        except sqlite3.IntegrityError:
            existing = self.get_by_title(group_id, title)
            if existing is None:
                raise
            return existing, False
        return album, True

    def _row_to_album(self, row: sqlite3.Row) -> Album:
        return Album(
            id=row["id"],
            group_id=row["group_id"],
            title=row["title"],
            cover_image_url=row["cover_image_url"],
            created_at=row["created_at"],
        )


class PhotocardRepository:
    """CRUD operations for photocards table."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def add(self, card: Photocard) -> Photocard:
        """Insert a photocard and return it with id and timestamps set.

        Does not commit; the caller owns the transaction.
        """
        ts = now_iso()
        card.id = card.id or new_id()
        card.created_at = card.created_at or ts
        card.updated_at = card.updated_at or ts
        self.conn.execute(
            """
            INSERT INTO photocards
            (id, user_id, group_id, member_id, album_id, image_url, asset_handle, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                card.id,
                card.user_id,
                card.group_id,
                card.member_id,
                card.album_id,
                card.image_url,
                card.asset_handle,
                card.created_at,
                card.updated_at,
            ),
        )
        return card

    def get(self, photocard_id: str) -> Optional[Photocard]:
        """Get a photocard by ID."""
        row = self.conn.execute(
            "SELECT * FROM photocards WHERE id = ?", (photocard_id,)
        ).fetchone()
        if row is None:
            return None
        return Photocard(
            id=row["id"],
            image_url=row["image_url"],
            user_id=row["user_id"],
            group_id=row["group_id"],
            member_id=row["member_id"],
            album_id=row["album_id"],
            asset_handle=row["asset_handle"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def delete(self, photocard_id: str) -> bool:
        """Delete a photocard row. Returns True if deleted.

        The remote asset is left in place; see asset_handle.
        """
        cursor = self.conn.execute(
            "DELETE FROM photocards WHERE id = ?", (photocard_id,)
        )
        return cursor.rowcount > 0

    def count(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM photocards").fetchone()[0]

    def list(
        self,
        user_id: Optional[str] = None,
        group_id: Optional[str] = None,
        member_id: Optional[str] = None,
        album_id: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Dict[str, Any]], int]:
        """
        List photocards with joined catalog names.

        Returns (rows for the requested page, total matching rows).
        """
        where = " WHERE 1=1"
        params: List[Any] = []

        if user_id:
            where += " AND p.user_id = ?"
            params.append(user_id)
        if group_id:
            where += " AND p.group_id = ?"
            params.append(group_id)
        if member_id:
            where += " AND p.member_id = ?"
            params.append(member_id)
        if album_id:
            where += " AND p.album_id = ?"
            params.append(album_id)
        if search:
            where += """ AND (
                g.name LIKE ? COLLATE NOCASE OR
                m.name LIKE ? COLLATE NOCASE OR
                m.stage_name LIKE ? COLLATE NOCASE OR
                a.title LIKE ? COLLATE NOCASE
            )"""
            params.extend([f"%{search}%"] * 4)

        joins = """
            FROM photocards p
            LEFT JOIN kpop_groups g ON p.group_id = g.id
            LEFT JOIN group_members m ON p.member_id = m.id
            LEFT JOIN albums a ON p.album_id = a.id
        """

        total = self.conn.execute(f"SELECT COUNT(*) {joins}{where}", params).fetchone()[0]

        query = f"""
            SELECT
                p.id, p.user_id, p.image_url,
                p.group_id, g.name AS group_name,
                p.member_id, m.name AS member_name, m.stage_name AS member_stage_name,
                p.album_id, a.title AS album_title,
                p.created_at, p.updated_at
            {joins}{where}
            ORDER BY p.created_at DESC, p.id
            LIMIT ? OFFSET ?
        """
        rows = [dict(row) for row in self.conn.execute(query, (*params, limit, offset))]
        return rows, total


class CollectionRepository:
    """Per-user owned/wishlist/favorite overlay on photocards."""

    FLAGS = {
        "owned": "is_owned",
        "wishlisted": "is_wishlisted",
        "favorite": "is_favorite",
    }

    STATUS_FILTERS = {
        "owned": "uc.is_owned = 1",
        "wishlist": "uc.is_wishlisted = 1",
        "unallocated": "uc.is_owned = 0 AND uc.is_wishlisted = 0",
        "favorites": "uc.is_favorite = 1",
    }

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def _check_ownership(self, user_id: str, photocard_id: str) -> None:
        card = PhotocardRepository(self.conn).get(photocard_id)
        if card is None:
            raise NotFoundError("Photocard not found", ReturnCode.PHOTOCARD_NOT_FOUND)
        if card.user_id != user_id:
            raise PermissionDenied("You do not own this photocard")

    def _get_flag(self, user_id: str, photocard_id: str, column: str) -> Optional[bool]:
        row = self.conn.execute(
            f"SELECT {column} FROM user_collections WHERE user_id = ? AND photocard_id = ?",
            (user_id, photocard_id),
        ).fetchone()
        return None if row is None else bool(row[0])

    def toggle(self, user_id: str, photocard_id: str, flag: str) -> bool:
        """
        Flip one flag for (user, photocard) and return its new value.

        The first toggle creates the overlay row with the flag set. If a
        concurrent first toggle created the row in between, it is re-read
        and flipped instead.
        """
        column = self.FLAGS[flag]
        self._check_ownership(user_id, photocard_id)

        ts = now_iso()
        current = self._get_flag(user_id, photocard_id, column)

        if current is None:
            try:
                self.conn.execute(
                    f"""
                    INSERT INTO user_collections (user_id, photocard_id, {column}, created_at, updated_at)
                    VALUES (?, ?, 1, ?, ?)
                    """,
                    (user_id, photocard_id, ts, ts),
                )
                return True
            except sqlite3.IntegrityError:
                current = self._get_flag(user_id, photocard_id, column)
                if current is None:
                    raise

        value = not current
        self.conn.execute(
            f"UPDATE user_collections SET {column} = ?, updated_at = ? WHERE user_id = ? AND photocard_id = ?",
            (1 if value else 0, ts, user_id, photocard_id),
        )
        return value

    def statuses(self, user_id: str, photocard_ids: Sequence[str]) -> List[CollectionStatus]:
        """Flags for each requested photocard, in request order; unknown → all False."""
        if not photocard_ids:
            return []

        placeholders = ",".join("?" * len(photocard_ids))
        found = {}
        for row in self.conn.execute(
            f"""
            SELECT photocard_id, is_owned, is_wishlisted, is_favorite
            FROM user_collections
            WHERE user_id = ? AND photocard_id IN ({placeholders})
            """,
            (user_id, *photocard_ids),
        ):
            found[row["photocard_id"]] = CollectionStatus(
                photocard_id=row["photocard_id"],
                is_owned=bool(row["is_owned"]),
                is_wishlisted=bool(row["is_wishlisted"]),
                is_favorite=bool(row["is_favorite"]),
            )

        return [found.get(pid, CollectionStatus(photocard_id=pid)) for pid in photocard_ids]

    def list_by_status(self, user_id: str, status: str, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        """Photocards of the user whose overlay matches the status filter."""
        condition = self.STATUS_FILTERS[status]
        query = f"""
            SELECT
                p.id, p.user_id, p.image_url,
                p.group_id, g.name AS group_name,
                p.member_id, m.name AS member_name, m.stage_name AS member_stage_name,
                p.album_id, a.title AS album_title,
                p.created_at, p.updated_at,
                uc.is_owned, uc.is_wishlisted, uc.is_favorite
            FROM photocards p
            INNER JOIN user_collections uc ON p.id = uc.photocard_id
            LEFT JOIN kpop_groups g ON p.group_id = g.id
            LEFT JOIN group_members m ON p.member_id = m.id
            LEFT JOIN albums a ON p.album_id = a.id
            WHERE p.user_id = ? AND uc.user_id = ? AND {condition}
            ORDER BY p.created_at DESC, p.id
            LIMIT ? OFFSET ?
        """
        results = []
        for row in self.conn.execute(query, (user_id, user_id, limit, offset)):
            d = dict(row)
            for key in ("is_owned", "is_wishlisted", "is_favorite"):
                d[key] = bool(d[key])
            results.append(d)
        return results
