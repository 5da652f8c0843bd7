"""SharingConfig — explicit per-operation transaction options."""

from __future__ import annotations

from dataclasses import dataclass, field

from tribeshare.db.transaction import IsolationLevel, TransactionOptions

DEFAULT_SWEEP_INTERVAL = 300.0
"""Seconds between background expiry sweeps."""


def _write_options() -> TransactionOptions:
    return TransactionOptions(isolation_level=IsolationLevel.SERIALIZABLE)


def _read_options() -> TransactionOptions:
    return TransactionOptions(isolation_level=IsolationLevel.READ_COMMITTED, max_retries=2)


def _sweep_options() -> TransactionOptions:
    return TransactionOptions(
        isolation_level=IsolationLevel.SERIALIZABLE,
        statement_timeout=60.0,
    )


@dataclass(frozen=True)
class SharingConfig:
    """Transaction options for each class of sharing operation.

    Defaults: writes (share, unshare, owner changes, resource delete) run
    serializable; reads (list operations) run read committed so writers
    never block them; the expiry sweep runs serializable with a longer
    statement timeout. Individual calls can still pass ``options=``.
    """

    write: TransactionOptions = field(default_factory=_write_options)
    read: TransactionOptions = field(default_factory=_read_options)
    sweep: TransactionOptions = field(default_factory=_sweep_options)
    sweep_interval: float = DEFAULT_SWEEP_INTERVAL
