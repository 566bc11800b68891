"""Database layer for Kardly."""

from kardly.db.connection import ConnectionPool, close_connection, get_connection, get_db_path
from kardly.db.models import (
    AlbumRepository,
    CollectionRepository,
    GroupRepository,
    MemberRepository,
    PhotocardRepository,
)
from kardly.db.schema import SCHEMA_VERSION, init_db

__all__ = [
    "get_db_path",
    "get_connection",
    "close_connection",
    "ConnectionPool",
    "init_db",
    "SCHEMA_VERSION",
    "GroupRepository",
    "MemberRepository",
    "AlbumRepository",
    "PhotocardRepository",
    "CollectionRepository",
]
