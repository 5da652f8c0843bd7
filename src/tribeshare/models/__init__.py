"""SQLModel database models for tribeshare."""

from tribeshare.models.base import SoftDeleteBase, active_clause
from tribeshare.models.enums import OwnerSource, PrincipalKind, RecordState, Visibility
from tribeshare.models.owners import ActivityOwner, ListOwner, OwnerBase
from tribeshare.models.principals import Group, PrincipalBase, User
from tribeshare.models.resources import Activity, ResourceBase, SharedList
from tribeshare.models.shares import (
    ActivityShare,
    ListShare,
    ShareBase,
    is_visible,
    visible_clause,
)

__all__ = [
    "Activity",
    "ActivityOwner",
    "ActivityShare",
    "Group",
    "ListOwner",
    "ListShare",
    "OwnerBase",
    "OwnerSource",
    "PrincipalBase",
    "PrincipalKind",
    "RecordState",
    "ResourceBase",
    "ShareBase",
    "SharedList",
    "SoftDeleteBase",
    "User",
    "Visibility",
    "active_clause",
    "is_visible",
    "visible_clause",
]
