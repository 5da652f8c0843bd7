"""Soft-delete base fields and the shared ``active`` predicate."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from .enums import RecordState


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SoftDeleteBase(SQLModel):
    """Timestamps common to every soft-deletable row."""

    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    deleted_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )

    @property
    def state(self) -> RecordState:
        return RecordState.ACTIVE if self.deleted_at is None else RecordState.DELETED


def active_clause(model: Any) -> Any:
    """SQL condition selecting rows of *model* that are not soft-deleted."""
    return model.deleted_at.is_(None)
