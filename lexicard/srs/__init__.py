"""Spaced repetition scheduling."""

from lexicard.srs.scheduler import (
    SRSConfig,
    SpacedRepetitionScheduler,
    due_cards,
    format_interval,
    is_card_due,
    is_due,
    is_due_any_direction,
    learning_cards,
    new_cards,
)

__all__ = [
    "SRSConfig",
    "SpacedRepetitionScheduler",
    "due_cards",
    "format_interval",
    "is_card_due",
    "is_due",
    "is_due_any_direction",
    "learning_cards",
    "new_cards",
]
