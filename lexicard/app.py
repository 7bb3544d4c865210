"""
Composition root.

Wires configuration, the replicas, AppState, the scheduler, reconciliation
and the study controller into one object with an explicit lifecycle:

    app = LexicardApp(get_settings())
    await app.start()
    outcome = await app.reconciliation.sign_in("user-1")
    ...
    await app.close()
"""

from __future__ import annotations

from loguru import logger

from config import Settings, get_settings
from lexicard.core.models import UserSettings
from lexicard.srs.scheduler import SpacedRepetitionScheduler, SRSConfig
from lexicard.state.app_state import AppState
from lexicard.state.events import ChangeOrigin
from lexicard.storage.base import FIRST_DAY, LAST_DAY, ReplicaStore
from lexicard.storage.local_store import LocalReplicaStore
from lexicard.storage.remote_store import RemoteReplicaStore
from lexicard.study.session import SessionController
from lexicard.sync.reconciliation import ReconciliationEngine, RemoteStoreFactory
from lexicard.sync.replication import LOCAL_PERSIST_ORIGINS, ReplicationSubscription


class LexicardApp:
    """Owns every long-lived component of one process."""

    def __init__(
        self,
        settings: Settings | None = None,
        local_store: ReplicaStore | None = None,
        remote_factory: RemoteStoreFactory | None = None,
    ):
        """
        Initialize the application.

        Args:
            settings: Application configuration (defaults to get_settings())
            local_store: Device replica (defaults to the SQLAlchemy store)
            remote_factory: Builds a remote replica per user id (defaults to the
                HTTP store when a remote URL is configured)
        """
        self.settings = settings or get_settings()
        self.local_store = local_store or LocalReplicaStore(
            self.settings.resolved_database_url,
            echo=self.settings.log_level == "DEBUG",
        )
        if remote_factory is None and self.settings.remote_enabled:
            remote_factory = self._http_remote
        self.state = AppState(
            UserSettings(
                source_lang=self.settings.default_source_lang,
                target_lang=self.settings.default_target_lang,
            )
        )
        self.scheduler = SpacedRepetitionScheduler(SRSConfig.from_settings(self.settings))
        self.persister = ReplicationSubscription(
            self.state, self.local_store, LOCAL_PERSIST_ORIGINS, name="local"
        )
        self.reconciliation = ReconciliationEngine(
            self.state,
            self.local_store,
            remote_factory=remote_factory,
            local_persister=self.persister,
            recent_threshold_ms=int(self.settings.recent_list_threshold_seconds * 1000),
        )
        self.session = SessionController(self.state, self.scheduler)
        self._started = False

    def _http_remote(self, user_id: str) -> ReplicaStore:
        return RemoteReplicaStore.from_settings(self.settings, user_id)

    async def start(self) -> None:
        """Load the local replica into AppState, then start local persistence."""
        if self._started:
            return
        lists = await self.local_store.load_lists()
        settings = await self.local_store.load_settings()
        daily_stats = await self.local_store.load_daily_stats(FIRST_DAY, LAST_DAY)
        self.state.hydrate(
            lists,
            settings=settings or self.state.default_settings,
            daily_stats=daily_stats,
            origin=ChangeOrigin.LOAD,
        )
        self.persister.start()
        self.state.mark_hydrated()
        self._started = True
        logger.info("Loaded {} lists from local replica", len(lists))

    async def close(self) -> None:
        """Flush local writes, stop replication and release stores."""
        if self._started:
            await self.persister.drain()
        await self.reconciliation.shutdown()
        await self.persister.stop()
        await self.local_store.close()
        self._started = False

    async def __aenter__(self) -> LexicardApp:
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
