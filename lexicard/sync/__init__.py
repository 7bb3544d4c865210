"""Reconciliation between replicas and ongoing replication."""

from lexicard.sync.reconciliation import (
    AuthStatus,
    FirstSyncChoice,
    MergeResult,
    OutcomeKind,
    ReconciliationEngine,
    ReconciliationOutcome,
    merge_lists,
    merge_settings,
)
from lexicard.sync.replication import (
    LOCAL_PERSIST_ORIGINS,
    REMOTE_REPLICATE_ORIGINS,
    ReplicationStatus,
    ReplicationSubscription,
)

__all__ = [
    "LOCAL_PERSIST_ORIGINS",
    "REMOTE_REPLICATE_ORIGINS",
    "AuthStatus",
    "FirstSyncChoice",
    "MergeResult",
    "OutcomeKind",
    "ReconciliationEngine",
    "ReconciliationOutcome",
    "ReplicationStatus",
    "ReplicationSubscription",
    "merge_lists",
    "merge_settings",
]
