"""Store access layer — transaction executor and dialect helpers."""

from tribeshare.db.dialect import get_dialect, is_transient_error
from tribeshare.db.transaction import (
    IsolationLevel,
    TransactionExecutor,
    TransactionOptions,
)

__all__ = [
    "IsolationLevel",
    "TransactionExecutor",
    "TransactionOptions",
    "get_dialect",
    "is_transient_error",
]
