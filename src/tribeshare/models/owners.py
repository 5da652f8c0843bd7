"""Owner models — (resource, principal) ownership rows.

One row exists per (resource, principal) pair for all time. Removing an
owner soft-deletes the row; adding it back reactivates the same row
through an upsert on the unique pair.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, ForeignKeyConstraint, UniqueConstraint
from sqlmodel import Field

from .base import SoftDeleteBase
from .enums import OwnerSource, PrincipalKind


class OwnerBase(SoftDeleteBase):
    """Base fields for an owner record. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    resource_id: str = Field(index=True)
    principal_id: str = Field(index=True)
    principal_kind: str = Field(default=PrincipalKind.USER.value)
    source: str = Field(default=OwnerSource.DIRECT.value)
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )


class ListOwner(OwnerBase, table=True):
    """Default list owner table — ``list_owners``."""

    __tablename__ = "list_owners"
    __table_args__ = (
        UniqueConstraint("resource_id", "principal_id", name="uq_list_owners_pair"),
        ForeignKeyConstraint(["resource_id"], ["lists.id"]),
    )


class ActivityOwner(OwnerBase, table=True):
    """Default activity owner table — ``activity_owners``."""

    __tablename__ = "activity_owners"
    __table_args__ = (
        UniqueConstraint("resource_id", "principal_id", name="uq_activity_owners_pair"),
        ForeignKeyConstraint(["resource_id"], ["activities.id"]),
    )
