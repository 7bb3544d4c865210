"""
Records shared by the scheduler, the replicas and the reconciliation engine.

All records are frozen pydantic models. Readers always hold immutable
snapshots; every change produces a new value, via ``with_changes`` when
the values come from callers.
Wire names are camelCase so stored documents keep their established shape
(``lastModified``, ``srsNormal``, ``easeFactor`` ...).
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Iterable
from datetime import datetime, timezone
from enum import Enum
from typing import Any, TypeVar

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_serializer
from pydantic.alias_generators import to_camel

from lexicard.core.errors import DataShapeError

MS_PER_DAY = 24 * 60 * 60 * 1000


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def generate_id() -> str:
    """Client-generated, globally unique record id."""
    return uuid.uuid4().hex


def day_key(timestamp_ms: int) -> str:
    """UTC ISO date (YYYY-MM-DD) for an epoch-millisecond timestamp."""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).date().isoformat()


class Grade(str, Enum):
    """Self-assessed recall difficulty, ordered by severity."""

    AGAIN = "again"
    HARD = "hard"
    GOOD = "good"
    EASY = "easy"

    @property
    def is_correct(self) -> bool:
        return self in (Grade.GOOD, Grade.EASY)


class StudyDirection(str, Enum):
    """Study direction: source->target (normal) or target->source (reverse)."""

    NORMAL = "normal"
    REVERSE = "reverse"


class Record(BaseModel):
    """Base for stored records: frozen, camelCase on the wire, lenient on extras."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    @classmethod
    def from_document(cls, document: Any):
        """
        Parse a stored document.

        Raises:
            DataShapeError: If the document does not match the record shape
        """
        try:
            return cls.model_validate(document)
        except ValidationError as exc:
            raise DataShapeError(
                f"Malformed {cls.__name__} record ({exc.error_count()} errors)"
            ) from exc

    def with_changes(self, **changes: Any):
        """
        Copy with ``changes`` applied, validated like a fresh record.

        Raises:
            ValueError: If a changed value does not fit its field
        """
        try:
            return type(self).model_validate({**self.model_dump(), **changes})
        except ValidationError as exc:
            raise ValueError(
                f"Invalid {type(self).__name__} update ({exc.error_count()} errors): {exc}"
            ) from exc

    def to_document(self) -> dict[str, Any]:
        """Serialize to the JSON-compatible wire shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


RecordT = TypeVar("RecordT", bound=Record)


def load_records(model: type[RecordT], documents: Iterable[Any], source: str) -> list[RecordT]:
    """
    Parse a batch of stored documents, dropping malformed ones.

    A single bad record never fails the whole load; it is logged and skipped.
    """
    records: list[RecordT] = []
    for document in documents:
        try:
            records.append(model.from_document(document))
        except DataShapeError as exc:
            record_id = document.get("id") if isinstance(document, dict) else None
            logger.warning("Dropping record {} from {}: {}", record_id, source, exc)
    return records


class RetentionState(Record):
    """Spaced-repetition bookkeeping for one flashcard in one direction."""

    last_reviewed: int | None = None
    interval: float = Field(default=0.0, ge=0.0)
    ease_factor: float = Field(default=2.5, ge=1.3)
    repetitions: int = Field(default=0, ge=0)
    due_date: int | None = None

    @property
    def is_learning(self) -> bool:
        return self.interval < 1.0


class Flashcard(Record):
    """A single vocabulary item owned by exactly one list."""

    id: str
    source: str
    target: str
    gender: str | None = None
    part_of_speech: str | None = None
    example: str | None = None
    notes: str | None = None
    tags: frozenset[str] = frozenset()
    srs_normal: RetentionState = Field(default_factory=RetentionState)
    srs_reverse: RetentionState = Field(default_factory=RetentionState)

    @field_serializer("tags")
    def serialize_tags(self, tags: frozenset[str]) -> list[str]:
        return sorted(tags)

    def retention(self, direction: StudyDirection) -> RetentionState:
        """Retention state for a study direction."""
        return self.srs_normal if direction == StudyDirection.NORMAL else self.srs_reverse

    def with_retention(self, direction: StudyDirection, state: RetentionState) -> Flashcard:
        """Copy of this card with one direction's retention state replaced."""
        field_name = "srs_normal" if direction == StudyDirection.NORMAL else "srs_reverse"
        return self.model_copy(update={field_name: state})


class VocabList(Record):
    """A named, tagged collection of flashcards. ``id`` is the merge key."""

    id: str
    name: str
    tags: frozenset[str] = frozenset()
    created_at: int = 0
    last_modified: int | None = None
    flashcards: tuple[Flashcard, ...] = ()

    @field_serializer("tags")
    def serialize_tags(self, tags: frozenset[str]) -> list[str]:
        return sorted(tags)

    @property
    def merge_timestamp(self) -> int:
        """Merge vector: lastModified, falling back to createdAt for older records."""
        if self.last_modified is not None:
            return self.last_modified
        return self.created_at or 0

    def get_flashcard(self, flashcard_id: str) -> Flashcard | None:
        for card in self.flashcards:
            if card.id == flashcard_id:
                return card
        return None


class UserSettings(Record):
    """User preferences. ``api_key`` is a local-only secret."""

    api_key: str = ""
    source_lang: str = "en"
    target_lang: str = "es"
    keep_images: bool = False

    def without_secret(self) -> UserSettings:
        """Copy safe for the remote replica."""
        return self.model_copy(update={"api_key": ""})


class ListStats(Record):
    """Per-list review counters for one day."""

    reviews: int = 0
    correct: int = 0


class DailyStats(Record):
    """Aggregate review counters for one UTC day."""

    date: str
    reviews: int = 0
    correct: int = 0
    by_list: dict[str, ListStats] = Field(default_factory=dict)

    def with_review(self, list_id: str, correct: bool) -> DailyStats:
        """Copy with one review counted for the day and for ``list_id``."""
        hit = 1 if correct else 0
        per_list = self.by_list.get(list_id, ListStats())
        by_list = dict(self.by_list)
        by_list[list_id] = ListStats(reviews=per_list.reviews + 1, correct=per_list.correct + hit)
        return self.model_copy(
            update={
                "reviews": self.reviews + 1,
                "correct": self.correct + hit,
                "by_list": by_list,
            }
        )
