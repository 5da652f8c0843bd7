"""Shareable resources — lists and activities.

Provides ``ResourceBase`` (non-table) and the ``SharedList`` and ``Activity``
tables. Subclass ``ResourceBase`` with ``table=True`` and a custom
``__tablename__`` to add another kind of shareable resource.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime
from sqlmodel import Field

from .base import SoftDeleteBase
from .enums import Visibility


class ResourceBase(SoftDeleteBase):
    """Base fields for a shareable resource. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    name: str = Field(default="")
    description: str = Field(default="")
    visibility: str = Field(default=Visibility.PRIVATE.value)
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )


class SharedList(ResourceBase, table=True):
    """Default list table — ``lists``."""

    __tablename__ = "lists"


class Activity(ResourceBase, table=True):
    """Default activity table — ``activities``."""

    __tablename__ = "activities"
