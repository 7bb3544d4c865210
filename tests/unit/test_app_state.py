"""
Unit tests for AppState mutations, queries and change events.
"""

import asyncio

import pytest

from conftest import NOW, make_card, make_list, make_review_state
from lexicard.core.errors import RecordNotFoundError
from lexicard.core.models import Grade, RetentionState, StudyDirection, UserSettings
from lexicard.state.app_state import AppState
from lexicard.state.events import ChangeKind, ChangeOrigin
from lexicard.study.session import SessionController


@pytest.fixture
def clock(monkeypatch):
    """Deterministic, advancing clock for lastModified stamps."""
    ticks = iter(range(NOW, NOW + 1_000_000, 1000))
    monkeypatch.setattr("lexicard.state.app_state.now_ms", lambda: next(ticks))


def drain_events(queue):
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


class TestListMutations:
    def test_create_list_publishes_event(self, app_state, clock):
        queue = app_state.subscribe()

        vocab_list = app_state.create_list("Verbs", tags=["a1"])

        assert app_state.lists == (vocab_list,)
        assert vocab_list.created_at == vocab_list.last_modified == NOW
        (event,) = drain_events(queue)
        assert event.kinds == frozenset({ChangeKind.LISTS})
        assert event.origin == ChangeOrigin.LOCAL
        assert event.previous_lists == ()
        assert event.lists == (vocab_list,)

    def test_update_list_bumps_last_modified(self, app_state, clock):
        created = app_state.create_list("Verbs")
        updated = app_state.update_list(created.id, name="Irregular verbs", tags=["b1"])

        assert updated.name == "Irregular verbs"
        assert updated.tags == frozenset({"b1"})
        assert updated.last_modified > created.last_modified
        assert app_state.get_list(created.id) == updated

    def test_update_unknown_field_rejected(self, app_state):
        created = app_state.create_list("Verbs")
        with pytest.raises(ValueError):
            app_state.update_list(created.id, id="other")

    def test_update_unknown_list(self, app_state):
        with pytest.raises(RecordNotFoundError):
            app_state.update_list("missing", name="x")

    def test_update_list_validates_values(self, app_state):
        created = app_state.create_list("Verbs")
        with pytest.raises(ValueError):
            app_state.update_list(created.id, name=None)
        assert app_state.get_list(created.id) == created

    def test_delete_list(self, app_state):
        created = app_state.create_list("Verbs")
        queue = app_state.subscribe()

        app_state.delete_list(created.id)

        assert app_state.lists == ()
        (event,) = drain_events(queue)
        assert event.deleted_list_ids == [created.id]

    def test_delete_unknown_list_is_noop(self, app_state):
        queue = app_state.subscribe()
        app_state.delete_list("missing")
        assert queue.empty()

    def test_import_lists_upserts(self, app_state):
        app_state.import_lists([make_list("a", name="A1"), make_list("b")])
        app_state.import_lists([make_list("a", name="A2"), make_list("c")])

        assert [v.id for v in app_state.lists] == ["a", "b", "c"]
        assert app_state.get_list("a").name == "A2"

    def test_clear_all(self, app_state):
        app_state.import_lists([make_list("a"), make_list("b")])
        app_state.clear_all()
        assert app_state.lists == ()


class TestFlashcardMutations:
    def test_add_flashcard(self, app_state, clock):
        vocab_list = app_state.create_list("Food")
        card = app_state.add_flashcard(vocab_list.id, "bread", "el pan", tags=["food"])

        stored = app_state.get_list(vocab_list.id)
        assert stored.flashcards == (card,)
        assert card.id
        assert card.tags == frozenset({"food"})
        assert stored.last_modified > vocab_list.last_modified

    def test_add_flashcards_keeps_given_ids(self, app_state):
        vocab_list = app_state.create_list("Food")
        added = app_state.add_flashcards(
            vocab_list.id, [make_card("x"), {"source": "milk", "target": "la leche"}]
        )

        assert added[0].id == "x"
        assert added[1].id and added[1].id != "x"
        assert len(app_state.get_list(vocab_list.id).flashcards) == 2

    def test_update_flashcard(self, app_state):
        app_state.import_lists([make_list("l", cards=[make_card("c")])])
        updated = app_state.update_flashcard("l", "c", target="adiós", notes="farewell")

        assert updated.target == "adiós"
        assert app_state.find_flashcard("c") == (app_state.get_list("l"), updated)

    def test_update_flashcard_coerces_retention(self, app_state):
        app_state.import_lists([make_list("l", cards=[make_card("c")])])

        updated = app_state.update_flashcard(
            "l", "c", srs_normal={"interval": 3.0, "easeFactor": 2.2, "repetitions": 2}
        )

        assert isinstance(updated.srs_normal, RetentionState)
        assert updated.srs_normal.ease_factor == 2.2
        reviewed = SessionController(app_state).review("c", Grade.GOOD)
        assert reviewed.srs_normal.repetitions == 3

    def test_update_flashcard_rejects_bad_retention(self, app_state):
        app_state.import_lists([make_list("l", cards=[make_card("c")])])
        with pytest.raises(ValueError):
            app_state.update_flashcard("l", "c", srs_normal={"easeFactor": 0.5})
        assert app_state.get_list("l").flashcards[0] == make_card("c")

    def test_update_unknown_flashcard(self, app_state):
        app_state.import_lists([make_list("l")])
        with pytest.raises(RecordNotFoundError):
            app_state.update_flashcard("l", "missing", target="x")

    def test_delete_flashcard(self, app_state):
        app_state.import_lists([make_list("l", cards=[make_card("c1"), make_card("c2")])])
        app_state.delete_flashcard("l", "c1")

        assert [c.id for c in app_state.get_list("l").flashcards] == ["c2"]
        with pytest.raises(RecordNotFoundError):
            app_state.delete_flashcard("l", "c1")

    def test_apply_review(self, app_state, clock):
        app_state.import_lists([make_list("l", last_modified=1, cards=[make_card("c")])])
        state = make_review_state(interval=4.0, due_date=NOW + 10)

        card = app_state.apply_review("l", "c", StudyDirection.REVERSE, state)

        assert card.srs_reverse == state
        assert app_state.get_list("l").flashcards[0].srs_reverse == state
        assert app_state.get_list("l").last_modified >= NOW


class TestQueries:
    def test_tags_sorted(self, app_state):
        app_state.import_lists(
            [
                make_list("a", tags=["z", "b"], cards=[make_card("c1", tags=["verb", "a1"])]),
                make_list("b", tags=["b"], cards=[make_card("c2", tags=["noun"])]),
            ]
        )

        assert app_state.list_tags() == ["b", "z"]
        assert app_state.flashcard_tags() == ["a1", "noun", "verb"]
        assert app_state.all_tags() == ["a1", "b", "noun", "verb", "z"]

    def test_all_flashcards_pairs_owner(self, app_state):
        app_state.import_lists([make_list("a", cards=[make_card("c1")]), make_list("b")])
        assert [(v.id, c.id) for v, c in app_state.all_flashcards()] == [("a", "c1")]
        assert app_state.find_flashcard("nope") is None


class TestSettingsAndStats:
    def test_update_settings(self, app_state):
        queue = app_state.subscribe()
        settings = app_state.update_settings(target_lang="it", api_key="k")

        assert settings.target_lang == "it"
        (event,) = drain_events(queue)
        assert event.kinds == frozenset({ChangeKind.SETTINGS})
        assert event.settings.api_key == "k"

    def test_update_settings_coerces_flags(self, app_state):
        assert app_state.update_settings(keep_images="no").keep_images is False
        assert app_state.update_settings(keep_images="yes").keep_images is True

    def test_update_settings_rejects_bad_values(self, app_state):
        before = app_state.settings
        with pytest.raises(ValueError):
            app_state.update_settings(keep_images="maybe")
        assert app_state.settings == before

    def test_update_unknown_setting(self, app_state):
        with pytest.raises(ValueError):
            app_state.update_settings(colour="blue")

    def test_reset_settings(self):
        defaults = UserSettings(target_lang="de")
        state = AppState(defaults)
        state.update_settings(target_lang="fr")
        assert state.reset_settings() == defaults

    def test_record_review(self, app_state):
        queue = app_state.subscribe()
        app_state.record_review("l1", correct=True, now=0)
        day = app_state.record_review("l1", correct=False, now=1000)

        assert day.date == "1970-01-01"
        assert (day.reviews, day.correct) == (2, 1)
        assert app_state.daily_stats["1970-01-01"] == day
        events = drain_events(queue)
        assert [e.kinds for e in events] == [frozenset({ChangeKind.STATS})] * 2
        assert events[-1].daily_stats == (day,)


class TestSubscriptionAndReadiness:
    def test_unsubscribe(self, app_state):
        queue = app_state.subscribe()
        app_state.unsubscribe(queue)
        app_state.create_list("x")

        assert queue.empty()
        assert app_state.subscriber_count == 0

    def test_hydrate_replaces_everything(self, app_state, user_settings, sample_stats):
        queue = app_state.subscribe()
        app_state.hydrate([make_list("a")], settings=user_settings, daily_stats=[sample_stats])

        (event,) = drain_events(queue)
        assert event.origin == ChangeOrigin.LOAD
        assert event.kinds == frozenset({ChangeKind.LISTS, ChangeKind.SETTINGS, ChangeKind.STATS})
        assert app_state.settings == user_settings
        assert app_state.daily_stats == {sample_stats.date: sample_stats}

    @pytest.mark.asyncio
    async def test_wait_hydrated(self):
        state = AppState()
        waiter = asyncio.create_task(state.wait_hydrated())
        await asyncio.sleep(0)
        assert not waiter.done()

        state.mark_hydrated()
        await asyncio.wait_for(waiter, timeout=1)
        assert state.is_hydrated
