"""Replica stores: the device-local key/value store and the per-user remote store."""

from lexicard.storage.base import ReplicaStore
from lexicard.storage.local_store import LocalReplicaStore
from lexicard.storage.remote_store import RemoteReplicaStore

__all__ = ["LocalReplicaStore", "RemoteReplicaStore", "ReplicaStore"]
