"""Time and identifier helpers shared across the package."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from .exceptions import InvalidInputError

NIL_ID = str(uuid.UUID(int=0))


def utcnow() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Normalize *value* to aware UTC.

    SQLite hands back naive datetimes; those are taken to be UTC already.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def new_id() -> str:
    return str(uuid.uuid4())


def require_id(name: str, value: Any) -> str:
    """Return *value* as a non-empty string ID or raise ``InvalidInputError``."""
    if isinstance(value, uuid.UUID):
        value = str(value)
    if not isinstance(value, str) or not value.strip() or value == NIL_ID:
        raise InvalidInputError(f"{name} is required")
    return value
