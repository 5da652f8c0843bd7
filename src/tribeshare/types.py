"""Result types: ShareInfo, OwnerInfo, GroupInfo, ResourceInfo."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from tribeshare.models.shares import is_visible

if TYPE_CHECKING:
    from datetime import datetime


@dataclass
class ShareInfo:
    """Share metadata with the resource and group names joined in."""

    id: str
    resource_id: str
    group_id: str
    granted_by: str
    version: int
    resource_name: str = ""
    group_name: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
    expires_at: datetime | None = None
    deleted_at: datetime | None = None

    @property
    def visible(self) -> bool:
        return is_visible(self)


@dataclass
class OwnerInfo:
    """Owner metadata."""

    resource_id: str
    principal_id: str
    principal_kind: str
    source: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class GroupInfo:
    """Group metadata."""

    id: str
    name: str
    created_at: datetime | None = None


@dataclass
class ResourceInfo:
    """Resource metadata with its active owners and visible shares."""

    id: str
    name: str
    description: str = ""
    visibility: str = "private"
    created_at: datetime | None = None
    updated_at: datetime | None = None
    owners: list[OwnerInfo] = field(default_factory=list)
    shares: list[ShareInfo] = field(default_factory=list)
