"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import asyncio
import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from config import Settings  # noqa: E402
from lexicard.core.models import (  # noqa: E402
    DailyStats,
    Flashcard,
    RetentionState,
    UserSettings,
    VocabList,
)
from lexicard.state.app_state import AppState  # noqa: E402

NOW = 1_700_000_000_000


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (local SQLite + fake remote)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


# =============================================================================
# In-memory replica
# =============================================================================


class InMemoryReplicaStore:
    """
    ReplicaStore fake with call recording and failure injection.

    fail_on:  operation name -> exception raised on every call
    gates:    operation name -> asyncio.Event the call waits on before running
    """

    def __init__(self, lists=(), settings=None, daily_stats=(), strip_secret=False):
        self.lists = {vocab_list.id: vocab_list for vocab_list in lists}
        self.settings = settings
        self.daily_stats = {day.date: day for day in daily_stats}
        self.strip_secret = strip_secret
        self.calls = []
        self.fail_on = {}
        self.gates = {}
        self.closed = False

    async def _enter(self, op, *args):
        self.calls.append((op, *args))
        gate = self.gates.get(op)
        if gate is not None:
            await gate.wait()
        exc = self.fail_on.get(op)
        if exc is not None:
            raise exc

    def calls_to(self, op):
        return [call[1:] for call in self.calls if call[0] == op]

    async def load_lists(self):
        await self._enter("load_lists")
        return list(self.lists.values())

    async def save_lists(self, lists):
        await self._enter("save_lists", tuple(lists))
        for vocab_list in lists:
            self.lists[vocab_list.id] = vocab_list

    async def save_list(self, vocab_list):
        await self.save_lists([vocab_list])

    async def delete_list(self, list_id):
        await self._enter("delete_list", list_id)
        self.lists.pop(list_id, None)

    async def load_settings(self):
        await self._enter("load_settings")
        return self.settings

    async def save_settings(self, settings):
        await self._enter("save_settings", settings)
        self.settings = settings.without_secret() if self.strip_secret else settings

    async def load_daily_stats(self, start, end):
        await self._enter("load_daily_stats", start, end)
        return [day for key, day in sorted(self.daily_stats.items()) if start <= key <= end]

    async def save_daily_stats(self, stats):
        await self._enter("save_daily_stats", tuple(stats))
        for day in stats:
            self.daily_stats[day.date] = day

    async def clear_all(self):
        await self._enter("clear_all")
        self.lists.clear()
        self.settings = None

    async def close(self):
        self.closed = True


# =============================================================================
# Record factories
# =============================================================================


def make_card(card_id="c1", source="hello", target="hola", **fields):
    return Flashcard(id=card_id, source=source, target=target, **fields)


def make_list(list_id="l1", name=None, last_modified=None, created_at=0, cards=(), tags=()):
    return VocabList(
        id=list_id,
        name=name or f"List {list_id}",
        tags=frozenset(tags),
        created_at=created_at,
        last_modified=last_modified,
        flashcards=tuple(cards),
    )


def make_review_state(interval=3.0, ease=2.5, repetitions=2, due_date=None, last_reviewed=None):
    return RetentionState(
        last_reviewed=last_reviewed if last_reviewed is not None else NOW - 1000,
        interval=interval,
        ease_factor=ease,
        repetitions=repetitions,
        due_date=due_date,
    )


async def settle(rounds=5):
    """Let background tasks run a few scheduling rounds."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def settings(tmp_path):
    """Application settings isolated from the environment's .env file."""
    return Settings(
        _env_file=None,
        data_dir=tmp_path,
        local_database_url=f"sqlite:///{tmp_path / 'local.db'}",
        remote_api_url=None,
    )


@pytest.fixture
def sample_card():
    """Provide a sample flashcard for testing."""
    return make_card("card-001", "the house", "la casa", gender="f", part_of_speech="noun")


@pytest.fixture
def sample_list(sample_card):
    """Provide a sample list containing one card."""
    return make_list("list-001", name="Spanish basics", last_modified=NOW, created_at=NOW - 60_000,
                     cards=[sample_card], tags=["spanish"])


@pytest.fixture
def user_settings():
    return UserSettings(api_key="abc", source_lang="en", target_lang="es")


@pytest.fixture
def sample_stats():
    return DailyStats(date="2023-11-14", reviews=3, correct=2)


@pytest.fixture
def app_state():
    """AppState already hydrated (empty)."""
    state = AppState()
    state.mark_hydrated()
    return state


@pytest.fixture
def memory_store():
    return InMemoryReplicaStore()
