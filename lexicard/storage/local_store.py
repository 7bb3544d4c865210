"""
Local replica for lexicard.

Provides device-local persistence for:
- The vocabulary list collection
- User settings (including the local-only API key)
- Daily review counters

Records live in a single key/value table, one row per namespace, each
value a JSON envelope ``{"state": {...}, "version": 0}``.

Database location: ~/.lexicard/local.db
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from loguru import logger
from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    insert,
    select,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError

from lexicard.core.errors import ReplicaError
from lexicard.core.models import DailyStats, UserSettings, VocabList, load_records, now_ms

VOCAB_KEY = "flashcards-vocab"
SETTINGS_KEY = "flashcards-settings"
DAILY_STATS_KEY = "flashcards-daily-stats"
ENVELOPE_VERSION = 0

metadata = MetaData()

kv_store = Table(
    "kv_store",
    metadata,
    Column("key", String(128), primary_key=True),
    Column("value", Text, nullable=False),
    Column("updated_at", Integer, nullable=False),
)


class LocalReplicaStore:
    """
    SQLAlchemy-backed key/value replica on this device.

    Absent or corrupt namespaces load as empty rather than failing.
    """

    def __init__(self, database_url: str, echo: bool = False):
        """
        Initialize the local store.

        Args:
            database_url: SQLAlchemy URL (e.g. sqlite:///~/.lexicard/local.db)
            echo: Log emitted SQL
        """
        self.database_url = database_url
        self.echo = echo
        self._engine: Engine | None = None

    @property
    def engine(self) -> Engine:
        """Get or create the engine (schema created on first use)."""
        if self._engine is None:
            self.open()
        return self._engine

    def open(self) -> None:
        """Create the engine and schema."""
        if self._engine is not None:
            return
        url = make_url(self.database_url)
        if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
            Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)
        try:
            self._engine = create_engine(url, echo=self.echo)
            metadata.create_all(self._engine)
        except SQLAlchemyError as e:
            self._engine = None
            raise ReplicaError(f"Could not open local replica: {e}") from e
        logger.info("Local replica opened at {}", url.render_as_string(hide_password=True))

    async def close(self) -> None:
        """Dispose of the engine."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    # =========================================================================
    # Envelope Access
    # =========================================================================

    def _read_state(self, key: str) -> dict[str, Any]:
        """Read the ``state`` payload of a namespace, empty when absent or corrupt."""
        try:
            with self.engine.connect() as conn:
                raw = conn.execute(select(kv_store.c.value).where(kv_store.c.key == key)).scalar()
        except SQLAlchemyError as e:
            raise ReplicaError(f"Local read of {key} failed: {e}") from e

        if raw is None:
            return {}
        try:
            envelope = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Corrupt envelope under {}; treating as empty", key)
            return {}
        state = envelope.get("state") if isinstance(envelope, dict) else None
        if not isinstance(state, dict):
            logger.warning("Envelope under {} has no state object; treating as empty", key)
            return {}
        return state

    def _write_state(self, key: str, state: dict[str, Any]) -> None:
        """Replace the envelope of a namespace in one transaction."""
        value = json.dumps({"state": state, "version": ENVELOPE_VERSION})
        try:
            with self.engine.begin() as conn:
                conn.execute(delete(kv_store).where(kv_store.c.key == key))
                conn.execute(insert(kv_store).values(key=key, value=value, updated_at=now_ms()))
        except SQLAlchemyError as e:
            raise ReplicaError(f"Local write of {key} failed: {e}") from e

    def _raw_lists(self) -> list[Any]:
        documents = self._read_state(VOCAB_KEY).get("lists")
        return documents if isinstance(documents, list) else []

    # =========================================================================
    # Lists
    # =========================================================================

    async def load_lists(self) -> list[VocabList]:
        return load_records(VocabList, self._raw_lists(), source="local replica")

    async def save_lists(self, lists: Sequence[VocabList]) -> None:
        """Upsert by id, keeping stored order and appending unseen ids."""
        if not lists:
            return
        incoming = {vocab_list.id: vocab_list.to_document() for vocab_list in lists}
        documents: list[Any] = []
        for document in self._raw_lists():
            doc_id = document.get("id") if isinstance(document, dict) else None
            documents.append(incoming.pop(doc_id, document))
        documents.extend(incoming.values())
        self._write_state(VOCAB_KEY, {"lists": documents})
        logger.debug("Saved {} lists locally", len(lists))

    async def save_list(self, vocab_list: VocabList) -> None:
        await self.save_lists([vocab_list])

    async def delete_list(self, list_id: str) -> None:
        documents = self._raw_lists()
        remaining = [
            document
            for document in documents
            if not (isinstance(document, dict) and document.get("id") == list_id)
        ]
        if len(remaining) != len(documents):
            self._write_state(VOCAB_KEY, {"lists": remaining})
            logger.debug("Deleted list {} locally", list_id)

    # =========================================================================
    # Settings
    # =========================================================================

    async def load_settings(self) -> UserSettings | None:
        document = self._read_state(SETTINGS_KEY).get("settings")
        if document is None:
            return None
        records = load_records(UserSettings, [document], source="local replica")
        return records[0] if records else None

    async def save_settings(self, settings: UserSettings) -> None:
        # Local replica keeps the secret
        self._write_state(SETTINGS_KEY, {"settings": settings.to_document()})

    # =========================================================================
    # Daily Stats
    # =========================================================================

    def _raw_daily_stats(self) -> dict[str, Any]:
        days = self._read_state(DAILY_STATS_KEY).get("dailyStats")
        return days if isinstance(days, dict) else {}

    async def load_daily_stats(self, start: str, end: str) -> list[DailyStats]:
        days = self._raw_daily_stats()
        in_range = [days[key] for key in sorted(days) if start <= key <= end]
        return load_records(DailyStats, in_range, source="local replica")

    async def save_daily_stats(self, stats: Sequence[DailyStats]) -> None:
        if not stats:
            return
        days = self._raw_daily_stats()
        for day in stats:
            days[day.date] = day.to_document()
        self._write_state(DAILY_STATS_KEY, {"dailyStats": days})

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def clear_all(self) -> None:
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    delete(kv_store).where(
                        kv_store.c.key.in_([VOCAB_KEY, SETTINGS_KEY, DAILY_STATS_KEY])
                    )
                )
        except SQLAlchemyError as e:
            raise ReplicaError(f"Local clear failed: {e}") from e
        logger.info("Local replica cleared")
