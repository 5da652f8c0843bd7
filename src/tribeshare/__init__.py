"""tribeshare — concurrency-safe sharing and ownership for lists and activities."""

__version__ = "0.1.0"

from tribeshare._tribeshare import TribeShare
from tribeshare.config import SharingConfig
from tribeshare.db.transaction import IsolationLevel, TransactionExecutor, TransactionOptions
from tribeshare.exceptions import (
    ConcurrentModificationError,
    DuplicateError,
    InvalidInputError,
    NotFoundError,
    SharingError,
    StorageError,
    TransientError,
)
from tribeshare.models.enums import OwnerSource, PrincipalKind, RecordState, Visibility
from tribeshare.sharing import SharingService
from tribeshare.store import ShareStore
from tribeshare.sweeper import ExpirySweeper
from tribeshare.types import GroupInfo, OwnerInfo, ResourceInfo, ShareInfo

__all__ = [
    "ConcurrentModificationError",
    "DuplicateError",
    "ExpirySweeper",
    "GroupInfo",
    "InvalidInputError",
    "IsolationLevel",
    "NotFoundError",
    "OwnerInfo",
    "OwnerSource",
    "PrincipalKind",
    "RecordState",
    "ResourceInfo",
    "ShareInfo",
    "ShareStore",
    "SharingConfig",
    "SharingError",
    "SharingService",
    "StorageError",
    "TransactionExecutor",
    "TransactionOptions",
    "TransientError",
    "TribeShare",
    "Visibility",
]
