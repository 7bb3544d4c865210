"""Change events published by AppState to its subscribers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from lexicard.core.models import DailyStats, UserSettings, VocabList


class ChangeKind(str, Enum):
    """Which part of the state a mutation touched."""

    LISTS = "lists"
    SETTINGS = "settings"
    STATS = "stats"


class ChangeOrigin(str, Enum):
    """
    Who produced a mutation.

    LOCAL: user action in this session
    MERGE: reconciliation applying a merged collection
    LOAD:  hydration from the local replica
    """

    LOCAL = "local"
    MERGE = "merge"
    LOAD = "load"


@dataclass(frozen=True)
class ChangeEvent:
    """Immutable snapshot of one applied mutation."""

    kinds: frozenset[ChangeKind]
    origin: ChangeOrigin
    lists: tuple[VocabList, ...]
    previous_lists: tuple[VocabList, ...]
    settings: UserSettings
    daily_stats: tuple[DailyStats, ...] = field(default=())

    def touches(self, kind: ChangeKind) -> bool:
        return kind in self.kinds

    @property
    def deleted_list_ids(self) -> list[str]:
        """Ids present before this mutation and absent after it."""
        current = {vocab_list.id for vocab_list in self.lists}
        return [
            vocab_list.id for vocab_list in self.previous_lists if vocab_list.id not in current
        ]
