"""Share models — (resource, group) grants with expiry and a version counter.

Provides ``ShareBase`` (non-table) and the ``ListShare`` and
``ActivityShare`` tables, plus the visibility predicate used by every
read path: a share is visible iff it is not soft-deleted and has not
expired.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any, Protocol

from sqlalchemy import DateTime, ForeignKeyConstraint, Index, and_, or_, text
from sqlmodel import Field

from .base import SoftDeleteBase


class ShareBase(SoftDeleteBase):
    """Base fields for a share record. Subclass with ``table=True`` for a concrete table.

    Concrete tables must carry a partial unique index on
    ``(resource_id, group_id) WHERE deleted_at IS NULL`` so the store
    itself refuses a second active share for a pair.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    resource_id: str = Field(index=True)
    group_id: str = Field(index=True)
    granted_by: str = Field(default="")
    version: int = Field(default=1)
    expires_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )


def _active_pair_index(name: str) -> Index:
    return Index(
        name,
        "resource_id",
        "group_id",
        unique=True,
        sqlite_where=text("deleted_at IS NULL"),
        postgresql_where=text("deleted_at IS NULL"),
    )


class ListShare(ShareBase, table=True):
    """Default list share table — ``list_shares``."""

    __tablename__ = "list_shares"
    __table_args__ = (
        _active_pair_index("uq_list_shares_active_pair"),
        ForeignKeyConstraint(["resource_id"], ["lists.id"]),
        ForeignKeyConstraint(["group_id"], ["groups.id"]),
    )


class ActivityShare(ShareBase, table=True):
    """Default activity share table — ``activity_shares``."""

    __tablename__ = "activity_shares"
    __table_args__ = (
        _active_pair_index("uq_activity_shares_active_pair"),
        ForeignKeyConstraint(["resource_id"], ["activities.id"]),
        ForeignKeyConstraint(["group_id"], ["groups.id"]),
    )


# ---------------------------------------------------------------------------
# Visibility
# ---------------------------------------------------------------------------


class _Expirable(Protocol):
    deleted_at: datetime | None
    expires_at: datetime | None


def visible_clause(model: Any, now: datetime) -> Any:
    """SQL condition selecting the shares of *model* that are visible at *now*."""
    return and_(
        model.deleted_at.is_(None),
        or_(model.expires_at.is_(None), model.expires_at > now),
    )


def is_visible(share: _Expirable, now: datetime | None = None) -> bool:
    """Python counterpart of :func:`visible_clause` for a loaded share."""
    if share.deleted_at is not None:
        return False
    if share.expires_at is None:
        return True
    now = now or datetime.now(UTC)
    exp = share.expires_at
    if exp.tzinfo is None:
        exp = exp.replace(tzinfo=UTC)
    return exp > now
