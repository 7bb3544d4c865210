"""
In-memory application state.

AppState is the single owner of the list collection, the user settings and
the daily review counters. Every mutation is applied synchronously, then
published as one ChangeEvent to every subscriber queue. Readers only ever
see immutable snapshots.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping
from typing import Any

from loguru import logger

from lexicard.core.errors import RecordNotFoundError
from lexicard.core.models import (
    DailyStats,
    Flashcard,
    RetentionState,
    StudyDirection,
    UserSettings,
    VocabList,
    day_key,
    generate_id,
    now_ms,
)
from lexicard.state.events import ChangeEvent, ChangeKind, ChangeOrigin

_LIST_FIELDS = {"name", "tags"}
_FLASHCARD_FIELDS = {
    "source",
    "target",
    "gender",
    "part_of_speech",
    "example",
    "notes",
    "tags",
    "srs_normal",
    "srs_reverse",
}


class AppState:
    """Owned, injected state handle shared by reconciliation and study."""

    def __init__(self, default_settings: UserSettings | None = None):
        self._default_settings = default_settings or UserSettings()
        self._lists: tuple[VocabList, ...] = ()
        self._settings = self._default_settings
        self._daily_stats: dict[str, DailyStats] = {}
        self._subscribers: list[asyncio.Queue[ChangeEvent]] = []
        self._hydrated = asyncio.Event()

    # =========================================================================
    # Snapshots
    # =========================================================================

    @property
    def lists(self) -> tuple[VocabList, ...]:
        return self._lists

    @property
    def settings(self) -> UserSettings:
        return self._settings

    @property
    def daily_stats(self) -> Mapping[str, DailyStats]:
        return dict(self._daily_stats)

    @property
    def default_settings(self) -> UserSettings:
        return self._default_settings

    # =========================================================================
    # Readiness
    # =========================================================================

    @property
    def is_hydrated(self) -> bool:
        return self._hydrated.is_set()

    def mark_hydrated(self) -> None:
        """Signal that the local replica finished its startup load."""
        self._hydrated.set()

    async def wait_hydrated(self) -> None:
        await self._hydrated.wait()

    # =========================================================================
    # Subscription
    # =========================================================================

    def subscribe(self) -> asyncio.Queue[ChangeEvent]:
        """Register a new subscriber; every later mutation lands on its queue."""
        queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[ChangeEvent]) -> None:
        """Stop delivering events to ``queue``. Unknown queues are ignored."""
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def _publish(
        self,
        kinds: Iterable[ChangeKind],
        origin: ChangeOrigin,
        previous_lists: tuple[VocabList, ...] | None = None,
        daily_stats: Iterable[DailyStats] = (),
    ) -> None:
        event = ChangeEvent(
            kinds=frozenset(kinds),
            origin=origin,
            lists=self._lists,
            previous_lists=self._lists if previous_lists is None else previous_lists,
            settings=self._settings,
            daily_stats=tuple(daily_stats),
        )
        for queue in list(self._subscribers):
            queue.put_nowait(event)

    # =========================================================================
    # Bulk Replacement
    # =========================================================================

    def hydrate(
        self,
        lists: Iterable[VocabList],
        settings: UserSettings | None = None,
        daily_stats: Iterable[DailyStats] | None = None,
        origin: ChangeOrigin = ChangeOrigin.LOAD,
    ) -> None:
        """Replace the whole state in a single assignment."""
        previous = self._lists
        self._lists = tuple(lists)
        kinds = {ChangeKind.LISTS}
        if settings is not None:
            self._settings = settings
            kinds.add(ChangeKind.SETTINGS)
        stats: tuple[DailyStats, ...] = ()
        if daily_stats is not None:
            stats = tuple(daily_stats)
            self._daily_stats = {day.date: day for day in stats}
            kinds.add(ChangeKind.STATS)
        logger.debug("State hydrated ({}): {} lists", origin.value, len(self._lists))
        self._publish(kinds, origin, previous_lists=previous, daily_stats=stats)

    def replace_lists(
        self, lists: Iterable[VocabList], origin: ChangeOrigin = ChangeOrigin.MERGE
    ) -> None:
        previous = self._lists
        self._lists = tuple(lists)
        self._publish({ChangeKind.LISTS}, origin, previous_lists=previous)

    def replace_settings(
        self, settings: UserSettings, origin: ChangeOrigin = ChangeOrigin.MERGE
    ) -> None:
        self._settings = settings
        self._publish({ChangeKind.SETTINGS}, origin)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_list(self, list_id: str) -> VocabList | None:
        for vocab_list in self._lists:
            if vocab_list.id == list_id:
                return vocab_list
        return None

    def require_list(self, list_id: str) -> VocabList:
        vocab_list = self.get_list(list_id)
        if vocab_list is None:
            raise RecordNotFoundError(f"List {list_id} not found")
        return vocab_list

    def all_flashcards(self) -> list[tuple[VocabList, Flashcard]]:
        """Every flashcard paired with its owning list."""
        return [(vocab_list, card) for vocab_list in self._lists for card in vocab_list.flashcards]

    def find_flashcard(self, flashcard_id: str) -> tuple[VocabList, Flashcard] | None:
        for vocab_list, card in self.all_flashcards():
            if card.id == flashcard_id:
                return vocab_list, card
        return None

    def list_tags(self) -> list[str]:
        return sorted({tag for vocab_list in self._lists for tag in vocab_list.tags})

    def flashcard_tags(self) -> list[str]:
        return sorted({tag for _, card in self.all_flashcards() for tag in card.tags})

    def all_tags(self) -> list[str]:
        return sorted(set(self.list_tags()) | set(self.flashcard_tags()))

    # =========================================================================
    # List Mutations
    # =========================================================================

    def _commit_lists(self, lists: Iterable[VocabList]) -> None:
        previous = self._lists
        self._lists = tuple(lists)
        self._publish({ChangeKind.LISTS}, ChangeOrigin.LOCAL, previous_lists=previous)

    def _replace_list(self, updated: VocabList) -> None:
        self._commit_lists(
            updated if vocab_list.id == updated.id else vocab_list for vocab_list in self._lists
        )

    def create_list(
        self,
        name: str,
        tags: Iterable[str] = (),
        flashcards: Iterable[Flashcard] = (),
    ) -> VocabList:
        timestamp = now_ms()
        vocab_list = VocabList(
            id=generate_id(),
            name=name,
            tags=frozenset(tags),
            created_at=timestamp,
            last_modified=timestamp,
            flashcards=tuple(flashcards),
        )
        self._commit_lists((*self._lists, vocab_list))
        logger.info("Created list {} ({})", vocab_list.name, vocab_list.id)
        return vocab_list

    def update_list(self, list_id: str, **changes: Any) -> VocabList:
        """
        Rename or retag a list.

        Raises:
            ValueError: Unknown field or a value that does not validate
            RecordNotFoundError: If ``list_id`` is unknown
        """
        unknown = set(changes) - _LIST_FIELDS
        if unknown:
            raise ValueError(f"Cannot update list fields: {sorted(unknown)}")
        if "tags" in changes:
            changes["tags"] = frozenset(changes["tags"])
        updated = self.require_list(list_id).with_changes(**changes, last_modified=now_ms())
        self._replace_list(updated)
        return updated

    def delete_list(self, list_id: str) -> None:
        """Delete a list; unknown ids are a no-op."""
        if self.get_list(list_id) is None:
            return
        self._commit_lists(vocab_list for vocab_list in self._lists if vocab_list.id != list_id)
        logger.info("Deleted list {}", list_id)

    def import_lists(self, lists: Iterable[VocabList]) -> None:
        """Upsert lists by id; existing ids are replaced in place, never duplicated."""
        incoming = {vocab_list.id: vocab_list for vocab_list in lists}
        merged = [incoming.pop(vocab_list.id, vocab_list) for vocab_list in self._lists]
        merged.extend(incoming.values())
        self._commit_lists(merged)

    def clear_all(self) -> None:
        self._commit_lists(())

    # =========================================================================
    # Flashcard Mutations
    # =========================================================================

    def add_flashcards(
        self, list_id: str, cards: Iterable[Flashcard | Mapping[str, Any]]
    ) -> list[Flashcard]:
        """
        Append flashcards to a list.

        Mappings are built into Flashcards with a fresh id when none is given.
        """
        vocab_list = self.require_list(list_id)
        added = []
        for card in cards:
            if not isinstance(card, Flashcard):
                card = Flashcard.model_validate({"id": generate_id(), **card})
            added.append(card)
        updated = vocab_list.model_copy(
            update={"flashcards": (*vocab_list.flashcards, *added), "last_modified": now_ms()}
        )
        self._replace_list(updated)
        return added

    def add_flashcard(self, list_id: str, source: str, target: str, **fields: Any) -> Flashcard:
        return self.add_flashcards(list_id, [{"source": source, "target": target, **fields}])[0]

    def update_flashcard(self, list_id: str, flashcard_id: str, **changes: Any) -> Flashcard:
        unknown = set(changes) - _FLASHCARD_FIELDS
        if unknown:
            raise ValueError(f"Cannot update flashcard fields: {sorted(unknown)}")
        if "tags" in changes:
            changes["tags"] = frozenset(changes["tags"])
        vocab_list = self.require_list(list_id)
        card = vocab_list.get_flashcard(flashcard_id)
        if card is None:
            raise RecordNotFoundError(f"Flashcard {flashcard_id} not found in list {list_id}")
        return self._replace_flashcard(vocab_list, card.with_changes(**changes))

    def delete_flashcard(self, list_id: str, flashcard_id: str) -> None:
        vocab_list = self.require_list(list_id)
        if vocab_list.get_flashcard(flashcard_id) is None:
            raise RecordNotFoundError(f"Flashcard {flashcard_id} not found in list {list_id}")
        updated = vocab_list.model_copy(
            update={
                "flashcards": tuple(c for c in vocab_list.flashcards if c.id != flashcard_id),
                "last_modified": now_ms(),
            }
        )
        self._replace_list(updated)

    def _replace_flashcard(self, vocab_list: VocabList, card: Flashcard) -> Flashcard:
        updated = vocab_list.model_copy(
            update={
                "flashcards": tuple(
                    card if existing.id == card.id else existing
                    for existing in vocab_list.flashcards
                ),
                "last_modified": now_ms(),
            }
        )
        self._replace_list(updated)
        return card

    def apply_review(
        self,
        list_id: str,
        flashcard_id: str,
        direction: StudyDirection,
        state: RetentionState,
    ) -> Flashcard:
        """Store a new retention state and bump the owning list in one update."""
        vocab_list = self.require_list(list_id)
        card = vocab_list.get_flashcard(flashcard_id)
        if card is None:
            raise RecordNotFoundError(f"Flashcard {flashcard_id} not found in list {list_id}")
        return self._replace_flashcard(vocab_list, card.with_retention(direction, state))

    # =========================================================================
    # Settings
    # =========================================================================

    def update_settings(self, **partial: Any) -> UserSettings:
        unknown = set(partial) - set(UserSettings.model_fields)
        if unknown:
            raise ValueError(f"Unknown settings: {sorted(unknown)}")
        self._settings = self._settings.with_changes(**partial)
        self._publish({ChangeKind.SETTINGS}, ChangeOrigin.LOCAL)
        return self._settings

    def reset_settings(self) -> UserSettings:
        self._settings = self._default_settings
        self._publish({ChangeKind.SETTINGS}, ChangeOrigin.LOCAL)
        return self._settings

    # =========================================================================
    # Daily Stats
    # =========================================================================

    def record_review(self, list_id: str, correct: bool, now: int | None = None) -> DailyStats:
        """Count one review for today (UTC) and for ``list_id``."""
        key = day_key(now_ms() if now is None else now)
        day = self._daily_stats.get(key, DailyStats(date=key)).with_review(list_id, correct)
        self._daily_stats[key] = day
        self._publish({ChangeKind.STATS}, ChangeOrigin.LOCAL, daily_stats=[day])
        return day
