"""Custom exception hierarchy for the sharing layer."""


class SharingError(Exception):
    """Base exception for all sharing and ownership errors."""


class InvalidInputError(SharingError, ValueError):
    """Raised for missing or malformed IDs, past expiry dates, or bad enum values."""


class NotFoundError(SharingError):
    """Raised when a referenced resource, group, user, or owner does not exist."""


class DuplicateError(SharingError):
    """Raised on a constraint violation that upsert logic did not resolve."""


class TransientError(SharingError):
    """Raised when serialization or deadlock failures outlast the retry budget."""


class ConcurrentModificationError(TransientError):
    """Raised when a guarded write matched no row because another transaction got there first.

    The transaction executor treats this as retryable and re-runs the whole
    unit of work from a fresh transaction.
    """


class StorageError(SharingError):
    """Raised on any other store failure (connection, SQL, driver)."""
