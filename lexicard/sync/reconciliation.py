"""
Reconciliation between the local and remote replicas.

Runs once per authentication transition:

Sign-in:
1. Wait for the local replica's startup load (AppState readiness)
2. Load local and remote collections concurrently
3. First sync (local non-empty, remote empty): stop and ask the caller
4. Otherwise merge by id:
   - both   -> larger lastModified (createdAt fallback), ties keep local
   - remote -> included
   - local  -> included only when created within the recency window
5. Apply the merged lists and settings to AppState in one assignment
6. Push the merged collection to remote in the background
7. Install remote replication for later local mutations

Sign-out: tear down replication, let any merge push finish, then reload
AppState from the local replica.

Transitions are serialized; signing in again as the active user is a no-op.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum

from loguru import logger

from lexicard.core.errors import AuthStateError, ReplicaError, ResourceNotFoundError
from lexicard.core.models import UserSettings, VocabList, now_ms
from lexicard.state.app_state import AppState
from lexicard.state.events import ChangeOrigin
from lexicard.storage.base import FIRST_DAY, LAST_DAY, ReplicaStore
from lexicard.sync.replication import REMOTE_REPLICATE_ORIGINS, ReplicationSubscription

DEFAULT_RECENT_THRESHOLD_MS = 30_000

RemoteStoreFactory = Callable[[str], ReplicaStore]


class AuthStatus(str, Enum):
    SIGNED_OUT = "signed_out"
    TRANSITIONING = "transitioning"
    SIGNED_IN = "signed_in"


class OutcomeKind(str, Enum):
    MERGED = "merged"
    CONFLICT_AMBIGUITY = "conflict_ambiguity"
    SIGNED_OUT = "signed_out"
    UNCHANGED = "unchanged"


class FirstSyncChoice(str, Enum):
    """Answer to the first-sync prompt."""

    ADOPT_LOCAL = "adopt_local"
    START_FRESH = "start_fresh"


@dataclass(frozen=True)
class MergeResult:
    """Merged collection plus where each list id came from."""

    lists: tuple[VocabList, ...]
    kept_local: tuple[str, ...] = ()
    taken_remote: tuple[str, ...] = ()
    remote_only: tuple[str, ...] = ()
    recent_local: tuple[str, ...] = ()
    dropped: tuple[str, ...] = ()


@dataclass(frozen=True)
class ReconciliationOutcome:
    """Result of one authentication transition."""

    kind: OutcomeKind
    user_id: str | None = None
    merge: MergeResult | None = None
    local_list_count: int = 0

    @property
    def needs_choice(self) -> bool:
        return self.kind == OutcomeKind.CONFLICT_AMBIGUITY


@dataclass
class _PendingFirstSync:
    user_id: str
    store: ReplicaStore
    remote_settings: UserSettings | None = None


# =============================================================================
# Merge Policy
# =============================================================================


def merge_lists(
    local: Sequence[VocabList],
    remote: Sequence[VocabList],
    now: int,
    threshold_ms: int = DEFAULT_RECENT_THRESHOLD_MS,
) -> MergeResult:
    """
    Merge two list collections by id.

    Remote order comes first, followed by surviving local-only lists in
    local order. Duplicate ids within one side keep their first occurrence.
    """
    local_by_id: dict[str, VocabList] = {}
    for vocab_list in local:
        local_by_id.setdefault(vocab_list.id, vocab_list)

    merged: list[VocabList] = []
    seen: set[str] = set()
    kept_local: list[str] = []
    taken_remote: list[str] = []
    remote_only: list[str] = []

    for remote_list in remote:
        if remote_list.id in seen:
            continue
        seen.add(remote_list.id)
        local_list = local_by_id.get(remote_list.id)
        if local_list is None:
            merged.append(remote_list)
            remote_only.append(remote_list.id)
        elif local_list.merge_timestamp >= remote_list.merge_timestamp:
            merged.append(local_list)
            kept_local.append(local_list.id)
        else:
            merged.append(remote_list)
            taken_remote.append(remote_list.id)

    recent_local: list[str] = []
    dropped: list[str] = []
    for list_id, local_list in local_by_id.items():
        if list_id in seen:
            continue
        if now - local_list.created_at < threshold_ms:
            merged.append(local_list)
            recent_local.append(list_id)
        else:
            # Not on remote and not new: deleted on another device
            dropped.append(list_id)

    return MergeResult(
        lists=tuple(merged),
        kept_local=tuple(kept_local),
        taken_remote=tuple(taken_remote),
        remote_only=tuple(remote_only),
        recent_local=tuple(recent_local),
        dropped=tuple(dropped),
    )


def merge_settings(local: UserSettings, remote: UserSettings | None) -> UserSettings:
    """Remote settings win on every field except the local-only secret."""
    if remote is None:
        return local
    return remote.model_copy(update={"api_key": local.api_key})


# =============================================================================
# Engine
# =============================================================================


class ReconciliationEngine:
    """
    Owns the authentication state machine and the remote replication.

    Usage:
        engine = ReconciliationEngine(state, local_store, remote_factory)
        outcome = await engine.sign_in("user-1")
        if outcome.needs_choice:
            await engine.resolve_first_sync(FirstSyncChoice.ADOPT_LOCAL)
    """

    def __init__(
        self,
        state: AppState,
        local_store: ReplicaStore,
        remote_factory: RemoteStoreFactory | None = None,
        local_persister: ReplicationSubscription | None = None,
        recent_threshold_ms: int = DEFAULT_RECENT_THRESHOLD_MS,
        clock: Callable[[], int] = now_ms,
    ):
        """
        Initialize the engine.

        Args:
            state: Shared application state
            local_store: Device replica
            remote_factory: Builds the remote replica for a user id (None disables sign-in)
            local_persister: Local replication, drained before reading the local replica
            recent_threshold_ms: Age under which a local-only list survives a merge
            clock: Epoch-millisecond clock
        """
        self.state = state
        self.local_store = local_store
        self.remote_factory = remote_factory
        self.local_persister = local_persister
        self.recent_threshold_ms = recent_threshold_ms
        self.clock = clock

        self._lock = asyncio.Lock()
        self._status = AuthStatus.SIGNED_OUT
        self._user_id: str | None = None
        self._remote: ReplicaStore | None = None
        self._replication: ReplicationSubscription | None = None
        self._pending: _PendingFirstSync | None = None
        self._pushes: set[asyncio.Task[None]] = set()
        self._last_push_error: Exception | None = None

    @property
    def status(self) -> AuthStatus:
        return self._status

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def replication(self) -> ReplicationSubscription | None:
        """Active remote replication, if signed in."""
        return self._replication

    @property
    def first_sync_pending(self) -> bool:
        return self._pending is not None

    # =========================================================================
    # Sign-in
    # =========================================================================

    async def sign_in(self, user_id: str) -> ReconciliationOutcome:
        """
        Reconcile for a newly signed-in user.

        Raises:
            AuthStateError: Empty identity, no remote configured, or remote refused access
            ReplicaError: Remote load failed for any reason other than "not found";
                the previous state is left untouched
        """
        if not user_id:
            raise AuthStateError("Sign-in requires a non-empty user id")

        async with self._lock:
            if user_id == self._user_id and self._status != AuthStatus.SIGNED_OUT:
                logger.debug("Sign-in for active user {} ignored", user_id)
                return ReconciliationOutcome(OutcomeKind.UNCHANGED, user_id=user_id)
            if self.remote_factory is None:
                raise AuthStateError("No remote replica configured; cannot sign in")

            previous_status, previous_user = self._status, self._user_id
            previous_remote = self._remote
            await self._teardown()
            self._status = AuthStatus.TRANSITIONING
            logger.info("Reconciling replicas for {}", user_id)

            remote = self.remote_factory(user_id)
            try:
                await self.state.wait_hydrated()
                if self.local_persister is not None:
                    await self.local_persister.drain()
                local_lists, remote_lists, remote_settings = await self._load_concurrently(
                    self.local_store.load_lists(),
                    self._load_remote_lists(remote),
                    self._load_remote_settings(remote),
                )
            except Exception:
                await self._close_quietly(remote)
                self._status, self._user_id = previous_status, previous_user
                if previous_remote is not None and previous_status == AuthStatus.SIGNED_IN:
                    self._install_replication(previous_remote, previous_user)
                logger.warning("Reconciliation for {} aborted; previous state kept", user_id)
                raise

            if previous_remote is not None and previous_remote is not remote:
                await self._close_quietly(previous_remote)
            if self._pending is not None and self._pending.store is not previous_remote:
                await self._close_quietly(self._pending.store)
            self._pending = None
            self._remote = remote
            self._user_id = user_id

            snapshot = self.state.lists
            if (local_lists or snapshot) and not remote_lists:
                self._pending = _PendingFirstSync(user_id, remote, remote_settings)
                local_count = max(len(snapshot), len(local_lists))
                logger.info(
                    "First sync for {}: {} local lists, remote empty; awaiting choice",
                    user_id,
                    local_count,
                )
                return ReconciliationOutcome(
                    OutcomeKind.CONFLICT_AMBIGUITY,
                    user_id=user_id,
                    local_list_count=local_count,
                )

            result = merge_lists(snapshot, remote_lists, self.clock(), self.recent_threshold_ms)
            settings = merge_settings(self.state.settings, remote_settings)
            self.state.hydrate(
                result.lists,
                settings=settings if remote_settings is not None else None,
                origin=ChangeOrigin.MERGE,
            )
            logger.info(
                "Merged for {}: {} lists (local={}, remote={}, remote-only={}, recent={}, dropped={})",
                user_id,
                len(result.lists),
                len(result.kept_local),
                len(result.taken_remote),
                len(result.remote_only),
                len(result.recent_local),
                len(result.dropped),
            )

            self._spawn_push(remote, result.lists, self.state.settings)
            self._install_replication(remote, user_id)
            self._status = AuthStatus.SIGNED_IN
            return ReconciliationOutcome(OutcomeKind.MERGED, user_id=user_id, merge=result)

    async def resolve_first_sync(self, choice: FirstSyncChoice) -> ReconciliationOutcome:
        """
        Complete a first sync.

        ADOPT_LOCAL writes the local lists and settings to remote; failures
        propagate and the choice can be retried. START_FRESH replaces the
        local collection with the empty remote one.
        """
        async with self._lock:
            pending = self._pending
            if pending is None:
                raise AuthStateError("No first sync is awaiting a decision")
            choice = FirstSyncChoice(choice)
            lists = self.state.lists

            if choice == FirstSyncChoice.ADOPT_LOCAL:
                await pending.store.save_lists(lists)
                await pending.store.save_settings(self.state.settings)
                result = MergeResult(lists=lists, kept_local=tuple(v.id for v in lists))
                logger.info("First sync for {}: adopted {} local lists", pending.user_id, len(lists))
            else:
                settings = merge_settings(self.state.settings, pending.remote_settings)
                self.state.hydrate(
                    (),
                    settings=settings if pending.remote_settings is not None else None,
                    origin=ChangeOrigin.MERGE,
                )
                result = MergeResult(lists=(), dropped=tuple(v.id for v in lists))
                logger.info(
                    "First sync for {}: started fresh, discarded {} local lists",
                    pending.user_id,
                    len(lists),
                )

            self._pending = None
            self._install_replication(pending.store, pending.user_id)
            self._status = AuthStatus.SIGNED_IN
            return ReconciliationOutcome(
                OutcomeKind.MERGED, user_id=pending.user_id, merge=result
            )

    # =========================================================================
    # Sign-out
    # =========================================================================

    async def sign_out(self) -> ReconciliationOutcome:
        """Tear down remote replication and reload state from the local replica."""
        async with self._lock:
            if self._status == AuthStatus.SIGNED_OUT and self._user_id is None:
                return ReconciliationOutcome(OutcomeKind.UNCHANGED)

            user_id = self._user_id
            await self._teardown()
            await self._release_remote()
            self._status = AuthStatus.SIGNED_OUT
            self._user_id = None

            if self.local_persister is not None:
                await self.local_persister.drain()
            lists = await self.local_store.load_lists()
            settings = await self.local_store.load_settings()
            daily_stats = await self.local_store.load_daily_stats(FIRST_DAY, LAST_DAY)
            self.state.hydrate(
                lists,
                settings=settings or self.state.default_settings,
                daily_stats=daily_stats,
                origin=ChangeOrigin.LOAD,
            )
            logger.info("Signed out {}; reloaded {} lists from local replica", user_id, len(lists))
            return ReconciliationOutcome(OutcomeKind.SIGNED_OUT, user_id=user_id)

    async def shutdown(self) -> None:
        """Stop replication and close the remote replica."""
        async with self._lock:
            await self._teardown()
            await self._release_remote()

    async def wait_for_pushes(self) -> None:
        """Wait for background merge pushes to finish."""
        if self._pushes:
            await asyncio.gather(*list(self._pushes), return_exceptions=True)

    @property
    def last_push_error(self) -> Exception | None:
        """Failure of the most recent merge push, None when it succeeded or is pending."""
        return self._last_push_error

    # =========================================================================
    # Internals
    # =========================================================================

    @staticmethod
    async def _load_concurrently(*loads):
        """Run loads together; on the first failure cancel the rest and re-raise."""
        tasks = [asyncio.ensure_future(load) for load in loads]
        try:
            return await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _load_remote_lists(self, remote: ReplicaStore) -> list[VocabList]:
        try:
            return await remote.load_lists()
        except ResourceNotFoundError:
            return []

    async def _load_remote_settings(self, remote: ReplicaStore) -> UserSettings | None:
        try:
            return await remote.load_settings()
        except ResourceNotFoundError:
            return None

    def _install_replication(self, remote: ReplicaStore, user_id: str | None) -> None:
        self._replication = ReplicationSubscription(
            self.state,
            remote,
            REMOTE_REPLICATE_ORIGINS,
            name=f"remote:{user_id}",
        )
        self._replication.start()

    def _spawn_push(
        self, remote: ReplicaStore, lists: tuple[VocabList, ...], settings: UserSettings
    ) -> None:
        self._last_push_error = None
        task = asyncio.create_task(self._push(remote, lists, settings))
        self._pushes.add(task)
        task.add_done_callback(self._pushes.discard)

    async def _push(
        self, remote: ReplicaStore, lists: tuple[VocabList, ...], settings: UserSettings
    ) -> None:
        try:
            if lists:
                await remote.save_lists(lists)
            await remote.save_settings(settings)
            logger.debug("Pushed merged collection ({} lists) to remote", len(lists))
        except ReplicaError as exc:
            self._last_push_error = exc
            logger.warning("Push of merged collection failed (retried on next change): {}", exc)
        except Exception as exc:
            self._last_push_error = exc
            logger.exception("Unexpected error pushing merged collection")

    async def _teardown(self) -> None:
        """Stop remote replication and let background pushes finish."""
        if self._replication is not None:
            await self._replication.stop()
            self._replication = None
        # Each push request is bounded by the store timeout
        await self.wait_for_pushes()
        self._pushes.clear()

    async def _release_remote(self) -> None:
        if self._pending is not None and self._pending.store is not self._remote:
            await self._close_quietly(self._pending.store)
        self._pending = None
        if self._remote is not None:
            await self._close_quietly(self._remote)
            self._remote = None

    async def _close_quietly(self, store: ReplicaStore) -> None:
        with contextlib.suppress(ReplicaError):
            await store.close()
