"""
Synchronization with remote sources.

Public surface: the merge resolver, snapshot store, conflict ledger,
adapter interface and registry, and the engine/service that drive runs.
"""

from __future__ import annotations

from .adapter import (
    PushResult,
    RemoteItem,
    SyncAdapter,
    clear_adapters,
    get_adapter,
    list_adapters,
    register_adapter,
)
from .engine import Resolution, SyncCoordinator, SyncEngine, SyncReport, SyncService
from .fingerprint import field_fingerprints, fingerprint
from .ledger import ConflictLedger
from .merge import Conflict, ConflictKind, ConflictOutcome, MergeOutcome, TookLocal, TookRemote, Unchanged, merge
from .secrets import CompositeSecretsProvider, EnvSecretsProvider, MemorySecretsProvider, SecretsProvider
from .snapshot import Snapshot, SnapshotStore

__all__ = [
    "CompositeSecretsProvider",
    "Conflict",
    "ConflictKind",
    "ConflictLedger",
    "ConflictOutcome",
    "EnvSecretsProvider",
    "MemorySecretsProvider",
    "MergeOutcome",
    "PushResult",
    "RemoteItem",
    "Resolution",
    "SecretsProvider",
    "Snapshot",
    "SnapshotStore",
    "SyncAdapter",
    "SyncCoordinator",
    "SyncEngine",
    "SyncReport",
    "SyncService",
    "TookLocal",
    "TookRemote",
    "Unchanged",
    "clear_adapters",
    "field_fingerprints",
    "fingerprint",
    "get_adapter",
    "list_adapters",
    "merge",
    "register_adapter",
]
