"""Shared utilities for Kardly."""

import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


def get_kardly_home() -> Path:
    """Return the Kardly home directory (KARDLY_HOME env or ~/.kardly)."""
    if "KARDLY_HOME" in os.environ:
        return Path(os.environ["KARDLY_HOME"])
    return Path.home() / ".kardly"


def now_iso() -> str:
    """Return current time as ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def new_id() -> str:
    """Generate a new record identifier."""
    return str(uuid.uuid4())


def is_uuid(value: Optional[str]) -> bool:
    """True if value parses as a UUID in canonical hyphenated form."""
    if not value:
        return False
    try:
        return str(uuid.UUID(value)) == value.lower()
    except (ValueError, AttributeError, TypeError):
        return False


def env_float(name: str, default: float) -> float:
    """Read a float setting from the environment, falling back on bad values."""
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default
