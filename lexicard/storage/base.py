"""Protocol shared by the local and remote replica stores."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from lexicard.core.models import DailyStats, UserSettings, VocabList

# Inclusive day-key range covering every stored day
FIRST_DAY = "0000-01-01"
LAST_DAY = "9999-12-31"


@runtime_checkable
class ReplicaStore(Protocol):
    """
    Asynchronous capability interface over one replica.

    Failures surface as ReplicaError subclasses and are always recoverable.
    """

    async def load_lists(self) -> list[VocabList]:
        """
        Load the full list collection.

        Returns:
            Lists in stored order (malformed records are dropped)
        """
        ...

    async def save_lists(self, lists: Sequence[VocabList]) -> None:
        """
        Upsert lists by id.

        Safe to call repeatedly with the full current collection;
        last write wins at the whole-record level.
        """
        ...

    async def save_list(self, vocab_list: VocabList) -> None:
        """Upsert a single list."""
        ...

    async def delete_list(self, list_id: str) -> None:
        """Delete a list. Deleting a missing list succeeds."""
        ...

    async def load_settings(self) -> UserSettings | None:
        """Load the settings record, or None when the replica has none."""
        ...

    async def save_settings(self, settings: UserSettings) -> None:
        """Persist settings. Remote replicas strip the secret first."""
        ...

    async def load_daily_stats(self, start: str, end: str) -> list[DailyStats]:
        """
        Load daily counters for an inclusive range of UTC day keys.

        Args:
            start: First day (YYYY-MM-DD)
            end: Last day (YYYY-MM-DD)
        """
        ...

    async def save_daily_stats(self, stats: Sequence[DailyStats]) -> None:
        """Upsert daily counters by date."""
        ...

    async def clear_all(self) -> None:
        """Remove every record this replica holds."""
        ...

    async def close(self) -> None:
        """Release connections."""
        ...
