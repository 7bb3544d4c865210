"""Study sessions and progress statistics."""

from lexicard.study.session import SessionController, StudySession
from lexicard.study.stats import (
    ForecastDay,
    LearningOverview,
    ListProgress,
    ProgressMetrics,
    current_streak,
    learning_overview,
    progress_metrics,
    review_forecast,
    weekly_stats,
)

__all__ = [
    "ForecastDay",
    "LearningOverview",
    "ListProgress",
    "ProgressMetrics",
    "SessionController",
    "StudySession",
    "current_streak",
    "learning_overview",
    "progress_metrics",
    "review_forecast",
    "weekly_stats",
]
