"""
Replication subscriptions for lexicard.

Consumes AppState change events and writes them to one replica store:
- Lists: deletions first (failed deletes are kept and retried), then the
  full collection in one batched save
- Settings: one save per event
- Daily stats: the counters touched by the event

Each subscription runs one asyncio task and handles one event at a time, so
writes to a store are never reordered.

Usage:
    persister = ReplicationSubscription(state, local_store, LOCAL_PERSIST_ORIGINS)
    persister.start()
    # ... mutations ...
    await persister.stop()
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from loguru import logger

from lexicard.core.errors import ReplicaError
from lexicard.state.app_state import AppState
from lexicard.state.events import ChangeEvent, ChangeKind, ChangeOrigin
from lexicard.storage.base import ReplicaStore

# The local replica stores everything the session or a merge produces.
LOCAL_PERSIST_ORIGINS = frozenset({ChangeOrigin.LOCAL, ChangeOrigin.MERGE})
# The remote replica only receives user mutations; merges are pushed explicitly.
REMOTE_REPLICATE_ORIGINS = frozenset({ChangeOrigin.LOCAL})


@dataclass
class ReplicationStatus:
    """Current replication status."""

    is_running: bool = False
    events_processed: int = 0
    writes: int = 0
    failures: int = 0
    pending_deletes: int = 0
    last_success_at: datetime | None = None
    last_error: str | None = None


class ReplicationSubscription:
    """Forwards AppState changes of selected origins to a replica store."""

    def __init__(
        self,
        state: AppState,
        store: ReplicaStore,
        origins: Iterable[ChangeOrigin],
        name: str = "replication",
    ):
        self.state = state
        self.store = store
        self.origins = frozenset(origins)
        self.name = name
        self._status = ReplicationStatus()
        self._queue: asyncio.Queue[ChangeEvent] | None = None
        self._task: asyncio.Task[None] | None = None
        self._pending_deletes: set[str] = set()

    @property
    def status(self) -> ReplicationStatus:
        return self._status

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Subscribe to AppState and start the consumer task."""
        if self.is_running:
            logger.warning("Replication {} already running", self.name)
            return
        self._queue = self.state.subscribe()
        self._task = asyncio.create_task(self._consume(self._queue), name=f"lexicard-{self.name}")
        self._status.is_running = True
        logger.debug("Replication {} started", self.name)

    async def stop(self) -> None:
        """
        Tear down the subscription.

        Unregisters from AppState before cancelling the consumer, so no write
        is dispatched once this returns.
        """
        if self._queue is not None:
            self.state.unsubscribe(self._queue)
            self._queue = None
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        self._status.is_running = False
        logger.debug("Replication {} stopped", self.name)

    async def drain(self) -> None:
        """Wait until every queued event has been handled."""
        if self._queue is not None and self.is_running:
            await self._queue.join()

    async def _consume(self, queue: asyncio.Queue[ChangeEvent]) -> None:
        while True:
            event = await queue.get()
            try:
                if event.origin in self.origins:
                    await self._replicate(event)
                    self._status.events_processed += 1
            finally:
                queue.task_done()

    async def _replicate(self, event: ChangeEvent) -> None:
        if event.touches(ChangeKind.LISTS):
            await self._replicate_lists(event)
        if event.touches(ChangeKind.SETTINGS):
            await self._write("settings", self.store.save_settings(event.settings))
        if event.touches(ChangeKind.STATS) and event.daily_stats:
            await self._write("daily stats", self.store.save_daily_stats(event.daily_stats))

    async def _replicate_lists(self, event: ChangeEvent) -> None:
        current_ids = {vocab_list.id for vocab_list in event.lists}
        self._pending_deletes.update(event.deleted_list_ids)
        # A list re-imported under the same id is no longer a pending delete
        self._pending_deletes -= current_ids

        for list_id in sorted(self._pending_deletes):
            if await self._write(f"delete of list {list_id}", self.store.delete_list(list_id)):
                self._pending_deletes.discard(list_id)
        self._status.pending_deletes = len(self._pending_deletes)

        if event.lists:
            await self._write(f"{len(event.lists)} lists", self.store.save_lists(event.lists))

    async def _write(self, label: str, operation) -> bool:
        """Await one store write; failures are logged and left for the next event."""
        try:
            await operation
        except ReplicaError as exc:
            self._record_failure(exc)
            logger.warning("Replication {}: {} failed: {}", self.name, label, exc)
            return False
        except Exception as exc:
            self._record_failure(exc)
            logger.exception("Replication {}: unexpected error writing {}", self.name, label)
            return False
        self._status.writes += 1
        self._status.last_success_at = datetime.now()
        return True

    def _record_failure(self, exc: Exception) -> None:
        self._status.failures += 1
        self._status.last_error = str(exc)
