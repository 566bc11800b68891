"""Validation of optional catalog references on a photocard."""

import logging
import sqlite3
from dataclasses import dataclass
from typing import Optional

from kardly.errors import GroupMismatchError, InvalidReferenceError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class References:
    """The optional group/member/album a photocard points at."""
    group_id: Optional[str] = None
    member_id: Optional[str] = None
    album_id: Optional[str] = None

    @classmethod
    def of(cls, group_id=None, member_id=None, album_id=None) -> "References":
        """Build from raw values, treating empty strings as absent."""
        return cls(group_id or None, member_id or None, album_id or None)


class ReferenceValidator:
    """
    Check that each provided reference exists and that member/album
    belong to the provided group.

    Read-only: runs whatever queries it needs on the connection it is
    given, so calling it inside an open transaction validates against the
    same data the subsequent insert will see.
    """

    def validate(self, conn: sqlite3.Connection, refs: References) -> References:
        """
        Return the validated references.

        Raises:
            InvalidReferenceError: a provided reference does not exist
            GroupMismatchError: member or album belongs to another group
        """
        if refs.group_id:
            row = conn.execute(
                "SELECT id FROM kpop_groups WHERE id = ?", (refs.group_id,)
            ).fetchone()
            if row is None:
                raise InvalidReferenceError("group", refs.group_id)

        if refs.member_id:
            self._check_grouped(conn, "member", "group_members", refs.member_id, refs.group_id)

        if refs.album_id:
            self._check_grouped(conn, "album", "albums", refs.album_id, refs.group_id)

        return refs

    def _check_grouped(
        self,
        conn: sqlite3.Connection,
        kind: str,
        table: str,
        ref_id: str,
        group_id: Optional[str],
    ) -> None:
        row = conn.execute(
            f"SELECT id, group_id FROM {table} WHERE id = ?", (ref_id,)
        ).fetchone()
        if row is None:
            raise InvalidReferenceError(kind, ref_id)
        if group_id and row["group_id"] != group_id:
            log.debug("%s %s is in group %s, not %s", kind, ref_id, row["group_id"], group_id)
            raise GroupMismatchError(kind, ref_id, group_id)
