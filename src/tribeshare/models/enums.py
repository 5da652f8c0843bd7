"""Enumerations stored as plain strings in the sharing tables."""

from __future__ import annotations

from enum import Enum


class Visibility(str, Enum):
    """Who can see a resource."""

    PRIVATE = "private"
    SHARED = "shared"
    PUBLIC = "public"


class PrincipalKind(str, Enum):
    """What kind of principal owns a resource."""

    USER = "user"
    GROUP = "group"


class OwnerSource(str, Enum):
    """Why an owner row exists.

    ``DIRECT`` rows come from resource creation or an explicit ``add_owner``.
    ``SHARE`` rows come from promoting a group when a resource is shared with
    it, and are removed again when the group's last active share goes away.
    """

    DIRECT = "direct"
    SHARE = "share"


class RecordState(str, Enum):
    """Soft-delete state of a row, derived from ``deleted_at``."""

    ACTIVE = "active"
    DELETED = "deleted"
