"""User and Group models — the principals that own and receive shares.

This subsystem only reads them (existence checks and display names);
their lifecycle belongs to the application layer.
"""

from __future__ import annotations

import uuid

from sqlmodel import Field

from .base import SoftDeleteBase


class PrincipalBase(SoftDeleteBase):
    """Base fields for a principal. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    name: str = Field(default="")


class User(PrincipalBase, table=True):
    """Default user table — ``users``."""

    __tablename__ = "users"


class Group(PrincipalBase, table=True):
    """Default group ("tribe") table — ``groups``."""

    __tablename__ = "groups"
