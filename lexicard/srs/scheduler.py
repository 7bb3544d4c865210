"""
Spaced Repetition Scheduler (modified SM-2, Anki-style).

Implements:
- Learning steps for new and lapsed cards (1 minute, 10 minutes)
- Graduation to day-scale review intervals
- Independent retention state per study direction
- Due-queue ordering and interval previews

Phases are implicit in the interval:
- Learning: interval < 1 day
- Review:   interval >= 1 day (graduated)

Grade 'again' always returns the card to learning (a lapse when the card
had graduated) and discards accumulated repetitions.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from lexicard.core.models import (
    MS_PER_DAY,
    Flashcard,
    Grade,
    RetentionState,
    StudyDirection,
    now_ms,
)

MINUTES_PER_DAY = 24 * 60


# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True)
class SRSConfig:
    """Configuration for the scheduling algorithm."""

    initial_ease: float = 2.5
    minimum_ease: float = 1.3
    ease_bonus: float = 0.15  # Added on 'easy'
    hard_ease_penalty: float = 0.15  # Subtracted on 'hard' (review phase)
    again_ease_penalty: float = 0.20  # Subtracted on 'again'
    learning_steps_minutes: tuple[float, ...] = (1.0, 10.0)
    graduating_interval: float = 1.0  # Days
    easy_bonus: float = 1.3
    hard_interval_multiplier: float = 1.2
    mature_interval: float = 21.0  # Days

    @classmethod
    def from_settings(cls, settings) -> SRSConfig:
        """Build from application settings (config.Settings)."""
        return cls(
            initial_ease=settings.srs_initial_ease,
            minimum_ease=settings.srs_minimum_ease,
            learning_steps_minutes=tuple(settings.srs_learning_steps_minutes),
            graduating_interval=settings.srs_graduating_interval_days,
            easy_bonus=settings.srs_easy_bonus,
            hard_interval_multiplier=settings.srs_hard_interval_multiplier,
            mature_interval=settings.srs_mature_interval_days,
        )

    def learning_step(self, index: int) -> float:
        """Learning step ``index`` expressed in days (clamped to the last step)."""
        steps = self.learning_steps_minutes
        return steps[min(index, len(steps) - 1)] / MINUTES_PER_DAY


# =============================================================================
# Scheduler
# =============================================================================


class SpacedRepetitionScheduler:
    """
    Pure calculator from (retention state, grade) to a new retention state.

    No I/O and no shared state: persisting the result is the caller's job.
    """

    def __init__(self, config: SRSConfig | None = None):
        """
        Initialize scheduler.

        Args:
            config: Custom configuration (uses defaults if None)
        """
        self.config = config or SRSConfig()

    def compute_next(
        self,
        state: RetentionState,
        grade: Grade,
        now: int | None = None,
    ) -> RetentionState:
        """
        Calculate the next retention state for a review.

        Args:
            state: Current state for one direction of a flashcard
            grade: User grade
            now: Review time in epoch ms (defaults to the wall clock)

        Returns:
            New RetentionState with interval, ease, repetitions and due date
        """
        cfg = self.config
        now = now_ms() if now is None else now
        grade = Grade(grade)

        interval = state.interval
        ease = state.ease_factor
        repetitions = state.repetitions

        if grade == Grade.AGAIN:
            new_repetitions = 0
            new_interval = cfg.learning_step(0)
            new_ease = max(cfg.minimum_ease, ease - cfg.again_ease_penalty)
        elif state.is_learning:
            new_ease = ease
            if grade == Grade.HARD:
                # Stay in learning on the second step
                new_interval = cfg.learning_step(1)
                new_repetitions = repetitions
            elif grade == Grade.GOOD:
                new_interval = cfg.graduating_interval
                new_repetitions = 1
            else:
                new_interval = cfg.graduating_interval * cfg.easy_bonus
                new_ease = ease + cfg.ease_bonus
                new_repetitions = 1
        else:
            new_repetitions = repetitions + 1
            if grade == Grade.HARD:
                new_interval = interval * cfg.hard_interval_multiplier
                new_ease = max(cfg.minimum_ease, ease - cfg.hard_ease_penalty)
            elif grade == Grade.GOOD:
                new_interval = interval * ease
                new_ease = ease
            else:
                new_interval = interval * ease * cfg.easy_bonus
                new_ease = ease + cfg.ease_bonus

        return RetentionState(
            last_reviewed=now,
            interval=new_interval,
            ease_factor=new_ease,
            repetitions=new_repetitions,
            due_date=now + round(new_interval * MS_PER_DAY),
        )

    def predict_intervals(
        self,
        state: RetentionState,
        now: int | None = None,
    ) -> dict[Grade, str]:
        """
        Preview the interval each grade would produce.

        Returns:
            Mapping of grade to a short label such as "10m" or "3d"
        """
        return {
            grade: format_interval(self.compute_next(state, grade, now).interval)
            for grade in Grade
        }

    def is_mature(self, card: Flashcard) -> bool:
        """True when either direction has reached the mature interval."""
        longest = max(card.srs_normal.interval, card.srs_reverse.interval)
        return longest >= self.config.mature_interval


# =============================================================================
# Due Predicates and Queues
# =============================================================================


def is_due(state: RetentionState, now: int) -> bool:
    """Never-reviewed states are always due; otherwise due once dueDate has passed."""
    return state.due_date is None or state.due_date <= now


def is_card_due(card: Flashcard, direction: StudyDirection, now: int) -> bool:
    """Check if a card is due in one direction."""
    return is_due(card.retention(direction), now)


def is_due_any_direction(card: Flashcard, now: int) -> bool:
    """A card is globally due when it is due in either direction."""
    return any(is_card_due(card, direction, now) for direction in StudyDirection)


def due_cards(
    cards: Iterable[Flashcard],
    direction: StudyDirection,
    now: int,
) -> list[Flashcard]:
    """
    Cards due in ``direction``, most overdue first.

    Never-reviewed cards sort as if due exactly ``now`` so they interleave
    with currently overdue cards instead of always trailing.
    """
    due = [card for card in cards if is_card_due(card, direction, now)]

    def sort_key(card: Flashcard) -> int:
        due_date = card.retention(direction).due_date
        return now if due_date is None else due_date

    return sorted(due, key=sort_key)


def new_cards(cards: Iterable[Flashcard], direction: StudyDirection) -> list[Flashcard]:
    """Cards never reviewed in ``direction``."""
    return [card for card in cards if card.retention(direction).last_reviewed is None]


def learning_cards(cards: Iterable[Flashcard], direction: StudyDirection) -> list[Flashcard]:
    """Reviewed cards still in the learning phase in ``direction``."""
    return [
        card
        for card in cards
        if card.retention(direction).last_reviewed is not None
        and card.retention(direction).is_learning
    ]


def format_interval(days: float) -> str:
    """
    Format an interval for display.

    Examples: 1m, 10m, 5h, 3d, 2mo, 1.5y
    """
    if days < 1 / 24:
        return f"{round(days * MINUTES_PER_DAY)}m"
    if days < 1:
        return f"{round(days * 24)}h"
    if days < 30:
        return f"{round(days)}d"
    if days < 365:
        return f"{round(days / 30)}mo"
    return f"{round(days / 365, 1)}y"
