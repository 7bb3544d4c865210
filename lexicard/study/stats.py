"""
Study statistics for the dashboard.

All day boundaries are UTC; day keys are ISO dates (YYYY-MM-DD).
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from lexicard.core.models import MS_PER_DAY, DailyStats, Flashcard, VocabList, day_key
from lexicard.srs.scheduler import is_due_any_direction

MAX_STREAK_DAYS = 365


@dataclass
class ListProgress:
    list_id: str
    list_name: str
    due_count: int
    total_cards: int


@dataclass
class LearningOverview:
    """Card counts by maturity (a card counts once, by its longest interval)."""

    new: int = 0
    learning: int = 0
    mature: int = 0


@dataclass
class ForecastDay:
    date: str  # ISO date, or "overdue"
    count: int
    is_today: bool = False
    is_overdue: bool = False


@dataclass
class ProgressMetrics:
    total_due: int
    due_by_list: list[ListProgress]
    weekly_reviews: int
    weekly_accuracy: int | None  # Percent, None without reviews
    current_streak: int
    daily_activity: list[DailyStats]
    learning_overview: LearningOverview = field(default_factory=LearningOverview)


def _day_start(now: int) -> datetime:
    moment = datetime.fromtimestamp(now / 1000, tz=timezone.utc)
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def weekly_stats(daily_stats: Mapping[str, DailyStats], now: int) -> list[DailyStats]:
    """Seven days ending today, oldest first, zero-filled."""
    today = _day_start(now)
    result = []
    for offset in range(6, -1, -1):
        key = (today - timedelta(days=offset)).date().isoformat()
        result.append(daily_stats.get(key) or DailyStats(date=key))
    return result


def current_streak(daily_stats: Mapping[str, DailyStats], now: int) -> int:
    """
    Consecutive days with at least one review, counting back from today.

    A today without reviews does not break the streak.
    """
    today = _day_start(now)
    streak = 0
    for offset in range(MAX_STREAK_DAYS):
        day = daily_stats.get((today - timedelta(days=offset)).date().isoformat())
        if day is not None and day.reviews > 0:
            streak += 1
        elif offset > 0:
            break
    return streak


def learning_overview(
    cards: Sequence[Flashcard], mature_interval: float = 21.0
) -> LearningOverview:
    overview = LearningOverview()
    for card in cards:
        reviewed = (
            card.srs_normal.last_reviewed is not None
            or card.srs_reverse.last_reviewed is not None
        )
        longest = max(card.srs_normal.interval, card.srs_reverse.interval)
        if longest >= mature_interval:
            overview.mature += 1
        elif reviewed:
            overview.learning += 1
        else:
            overview.new += 1
    return overview


def progress_metrics(
    lists: Sequence[VocabList],
    daily_stats: Mapping[str, DailyStats],
    now: int,
    mature_interval: float = 21.0,
) -> ProgressMetrics:
    """Dashboard summary across all lists."""
    cards = [card for vocab_list in lists for card in vocab_list.flashcards]
    week = weekly_stats(daily_stats, now)
    reviews = sum(day.reviews for day in week)
    correct = sum(day.correct for day in week)

    return ProgressMetrics(
        total_due=sum(1 for card in cards if is_due_any_direction(card, now)),
        due_by_list=[
            ListProgress(
                list_id=vocab_list.id,
                list_name=vocab_list.name,
                due_count=sum(1 for c in vocab_list.flashcards if is_due_any_direction(c, now)),
                total_cards=len(vocab_list.flashcards),
            )
            for vocab_list in lists
        ],
        weekly_reviews=reviews,
        weekly_accuracy=round(correct / reviews * 100) if reviews else None,
        current_streak=current_streak(daily_stats, now),
        daily_activity=week,
        learning_overview=learning_overview(cards, mature_interval),
    )


def _earliest_due(card: Flashcard) -> int | None:
    due_dates = [
        state.due_date
        for state in (card.srs_normal, card.srs_reverse)
        if state.due_date is not None
    ]
    return min(due_dates) if due_dates else None


def review_forecast(lists: Sequence[VocabList], now: int, days: int = 7) -> list[ForecastDay]:
    """
    Upcoming review load by earliest due date.

    Starts with an "overdue" bucket when any card was due before today.
    Never-reviewed cards count as due today.
    """
    cards = [card for vocab_list in lists for card in vocab_list.flashcards]
    today_start = int(_day_start(now).timestamp() * 1000)
    earliest = [_earliest_due(card) for card in cards]

    forecast: list[ForecastDay] = []
    overdue = sum(1 for due in earliest if due is not None and due < today_start)
    if overdue:
        forecast.append(ForecastDay(date="overdue", count=overdue, is_overdue=True))

    for offset in range(days):
        start = today_start + offset * MS_PER_DAY
        end = start + MS_PER_DAY
        count = sum(
            1
            for due in earliest
            if (due is None and offset == 0) or (due is not None and start <= due < end)
        )
        forecast.append(ForecastDay(date=day_key(start), count=count, is_today=offset == 0))
    return forecast
