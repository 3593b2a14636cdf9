"""
Puff Sync

Local-first puff tracking with server reconciliation.

Provides:
- A file-backed puff ledger with idempotent synced marking
- An authenticated WebSocket session channel with reconnect
- A reconciler that pushes unsynced puffs and marks confirmed ones
- An in-memory reference server for development

Usage:

    >>> from puff_sync import PuffSyncClient, load_config
    >>> async with PuffSyncClient.create(load_config()) as client:
    ...     await client.record_puff()
    ...     result = await client.sync_now()
    ...     print(result.outcome, client.status().unsynced)
"""

from .channel import AccountSnapshot, ChannelStatus, SessionChannel
from .client import ClientStatus, PuffSyncClient
from .config import SyncConfig, load_config
from .credentials import CredentialStore, FileCredentialStore, MemoryCredentialStore
from .exceptions import (
    AuthenticationError,
    ChannelClosedError,
    ChannelConnectionError,
    ChannelError,
    ChannelNotConnectedError,
    ConfigError,
    LedgerIOError,
    PuffSyncError,
    ReconciliationError,
)
from .ledger import PuffEvent, PuffLedger, PuffStats, TrackingMode, UserSettings
from .reconciler import (
    DeltaStrategy,
    ReconciliationResult,
    Reconciler,
    ReconcilerState,
    RunOutcome,
    compute_delta,
)

__all__ = [
    # Client
    "PuffSyncClient",
    "ClientStatus",
    "SyncConfig",
    "load_config",
    # Ledger
    "PuffLedger",
    "PuffEvent",
    "PuffStats",
    "TrackingMode",
    "UserSettings",
    # Channel
    "SessionChannel",
    "ChannelStatus",
    "AccountSnapshot",
    "CredentialStore",
    "FileCredentialStore",
    "MemoryCredentialStore",
    # Reconciliation
    "Reconciler",
    "ReconcilerState",
    "ReconciliationResult",
    "RunOutcome",
    "DeltaStrategy",
    "compute_delta",
    # Exceptions
    "PuffSyncError",
    "ConfigError",
    "LedgerIOError",
    "ChannelError",
    "ChannelConnectionError",
    "ChannelNotConnectedError",
    "ChannelClosedError",
    "AuthenticationError",
    "ReconciliationError",
]

__version__ = "0.1.0"
