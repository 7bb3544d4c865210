"""
Core Module - Shared records and error taxonomy.

Components:
- models: Frozen records (VocabList, Flashcard, RetentionState, UserSettings, DailyStats)
- errors: Replica, identity and data-shape errors
"""

from lexicard.core.errors import (
    AuthStateError,
    DataShapeError,
    LexicardError,
    RecordNotFoundError,
    ReplicaError,
    ResourceNotFoundError,
    TransientIOError,
)
from lexicard.core.models import (
    MS_PER_DAY,
    DailyStats,
    Flashcard,
    Grade,
    ListStats,
    RetentionState,
    StudyDirection,
    UserSettings,
    VocabList,
    day_key,
    generate_id,
    load_records,
    now_ms,
)

__all__ = [
    # Errors
    "AuthStateError",
    "DataShapeError",
    "LexicardError",
    "RecordNotFoundError",
    "ReplicaError",
    "ResourceNotFoundError",
    "TransientIOError",
    # Records
    "DailyStats",
    "Flashcard",
    "Grade",
    "ListStats",
    "RetentionState",
    "StudyDirection",
    "UserSettings",
    "VocabList",
    # Helpers
    "MS_PER_DAY",
    "day_key",
    "generate_id",
    "load_records",
    "now_ms",
]
