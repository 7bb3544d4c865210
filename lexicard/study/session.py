"""
Study sessions and the review entry point.

SessionController is the only writer of retention state: every review runs
the scheduler, stores the new state on the owning list and counts the review
in today's statistics.
"""

from __future__ import annotations

import random
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from loguru import logger

from lexicard.core.errors import RecordNotFoundError
from lexicard.core.models import Flashcard, Grade, StudyDirection, now_ms
from lexicard.srs.scheduler import SpacedRepetitionScheduler, due_cards
from lexicard.state.app_state import AppState


@dataclass
class StudySession:
    """Queue of cards for one sitting, in one direction."""

    direction: StudyDirection
    cards: list[Flashcard]
    list_id: str | None = None
    tag_filters: tuple[str, ...] = ()
    current_index: int = 0
    known_count: int = 0
    unknown_count: int = 0
    is_flipped: bool = False
    is_complete: bool = False
    reviewed_ids: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.cards:
            self.is_complete = True

    @property
    def current(self) -> Flashcard | None:
        if self.is_complete:
            return None
        return self.cards[self.current_index]

    @property
    def front(self) -> str:
        """Prompt side of the current card (source in normal mode, target in reverse)."""
        card = self.current
        if card is None:
            return ""
        return card.source if self.direction == StudyDirection.NORMAL else card.target

    @property
    def back(self) -> str:
        card = self.current
        if card is None:
            return ""
        return card.target if self.direction == StudyDirection.NORMAL else card.source

    @property
    def remaining(self) -> int:
        return 0 if self.is_complete else len(self.cards) - self.current_index

    def flip(self) -> None:
        self.is_flipped = not self.is_flipped

    def next_card(self) -> None:
        if self.is_complete:
            return
        if self.current_index + 1 >= len(self.cards):
            self.is_complete = True
        else:
            self.current_index += 1
        self.is_flipped = False

    def previous_card(self) -> None:
        if self.current_index > 0 and not self.is_complete:
            self.current_index -= 1
            self.is_flipped = False

    def shuffle(self, rng: random.Random | None = None) -> None:
        """Shuffle the queue and restart from the first card."""
        (rng or random).shuffle(self.cards)
        self.current_index = 0
        self.is_flipped = False


class SessionController:
    """Builds study queues and applies reviews to AppState."""

    def __init__(
        self,
        state: AppState,
        scheduler: SpacedRepetitionScheduler | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.state = state
        self.scheduler = scheduler or SpacedRepetitionScheduler()
        self.clock = clock

    def review(
        self,
        flashcard_id: str,
        grade: Grade,
        direction: StudyDirection = StudyDirection.NORMAL,
    ) -> Flashcard:
        """
        Grade one card in one direction.

        Raises:
            RecordNotFoundError: If no list owns ``flashcard_id``
        """
        found = self.state.find_flashcard(flashcard_id)
        if found is None:
            raise RecordNotFoundError(f"Flashcard {flashcard_id} not found")
        vocab_list, card = found
        grade = Grade(grade)
        now = self.clock()

        state = self.scheduler.compute_next(card.retention(direction), grade, now)
        updated = self.state.apply_review(vocab_list.id, card.id, direction, state)
        self.state.record_review(vocab_list.id, grade.is_correct, now)
        logger.debug(
            "Reviewed {} ({}) as {}: next in {:.4f} days",
            card.id,
            direction.value,
            grade.value,
            state.interval,
        )
        return updated

    def start_session(
        self,
        direction: StudyDirection = StudyDirection.NORMAL,
        list_id: str | None = None,
        tag_filters: Iterable[str] = (),
        due_only: bool = True,
    ) -> StudySession:
        """
        Build a study queue.

        Args:
            direction: Study direction
            list_id: Restrict to one list (None for all lists)
            tag_filters: Keep cards carrying any of these tags
            due_only: Only due cards, most overdue first

        Raises:
            RecordNotFoundError: If ``list_id`` is unknown
        """
        if list_id is not None:
            cards = list(self.state.require_list(list_id).flashcards)
        else:
            cards = [card for _, card in self.state.all_flashcards()]

        tags = tuple(tag_filters)
        if tags:
            cards = [card for card in cards if any(tag in card.tags for tag in tags)]
        if due_only:
            cards = due_cards(cards, direction, self.clock())

        logger.info("Study session started: {} cards ({})", len(cards), direction.value)
        return StudySession(direction=direction, cards=cards, list_id=list_id, tag_filters=tags)

    def answer(self, session: StudySession, grade: Grade) -> Flashcard | None:
        """Review the current card, count it as known or unknown, and advance."""
        card = session.current
        if card is None:
            return None
        grade = Grade(grade)
        updated = self.review(card.id, grade, session.direction)
        if grade.is_correct:
            session.known_count += 1
        else:
            session.unknown_count += 1
        session.reviewed_ids.append(card.id)
        session.next_card()
        return updated
