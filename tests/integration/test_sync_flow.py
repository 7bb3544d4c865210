"""
Integration tests: two devices, SQLite local replicas and an in-process
document server behind httpx.MockTransport.
"""

import json

import httpx
import pytest
import typer

from config import Settings
from conftest import NOW, make_list
from lexicard.app import LexicardApp
from lexicard.cli import _sync_once
from lexicard.core.errors import TransientIOError
from lexicard.core.models import Grade
from lexicard.storage.remote_store import RemoteReplicaStore
from lexicard.sync.reconciliation import AuthStatus, FirstSyncChoice, OutcomeKind

BASE = "https://remote.test/api"


class FakeDocumentServer:
    """Per-user document store speaking the remote replica's REST layout."""

    def __init__(self):
        self.users = {}
        self.unavailable = False
        self.read_only = False
        self.requests = []

    def user(self, user_id):
        return self.users.setdefault(user_id, {"lists": {}, "settings": None, "dailyStats": {}})

    def __call__(self, request):
        self.requests.append(request)
        if self.unavailable or (self.read_only and request.method != "GET"):
            return httpx.Response(503)

        # /api/users/{uid}/<collection>[/<id>]
        parts = request.url.path.split("/")[3:]
        user = self.user(parts[0])
        collection, rest = parts[1], parts[2:]
        body = json.loads(request.content) if request.content else None

        if collection == "lists":
            if request.method == "GET":
                return self._documents(user["lists"])
            if request.method == "DELETE" and user["lists"].pop(rest[0], None) is not None:
                return httpx.Response(204)
        elif collection == "batch":
            for op in body["operations"]:
                _, list_id = op["path"].split("/")
                if op["op"] == "set":
                    user["lists"][list_id] = op["data"]
                else:
                    user["lists"].pop(list_id, None)
            return httpx.Response(200, json={"written": len(body["operations"])})
        elif collection == "settings":
            if request.method == "PUT":
                user["settings"] = body["data"]
                return httpx.Response(200, json={})
            if request.method == "GET" and user["settings"] is not None:
                return httpx.Response(200, json={"data": user["settings"]})
            if request.method == "DELETE" and user["settings"] is not None:
                user["settings"] = None
                return httpx.Response(204)
        elif collection == "dailyStats":
            if request.method == "PUT":
                user["dailyStats"][rest[0]] = body["data"]
                return httpx.Response(200, json={})
            start = request.url.params.get("start", "")
            end = request.url.params.get("end", "9999-12-31")
            days = {k: v for k, v in user["dailyStats"].items() if start <= k <= end}
            return self._documents(days)
        return httpx.Response(404, json={"error": "not found"})

    @staticmethod
    def _documents(collection):
        return httpx.Response(
            200,
            json={"documents": [{"id": key, "data": data} for key, data in collection.items()]},
        )


@pytest.fixture
def server():
    return FakeDocumentServer()


@pytest.fixture
def make_app(tmp_path, server):
    """Build a device: its own SQLite replica, sharing the fake server."""

    def factory(device):
        settings = Settings(
            _env_file=None,
            data_dir=tmp_path / device,
            local_database_url=f"sqlite:///{tmp_path / device / 'local.db'}",
            remote_api_url=None,
        )

        def remote_for(user_id):
            return RemoteReplicaStore(
                BASE, user_id, transport=httpx.MockTransport(server), backoff_seconds=0
            )

        return LexicardApp(settings, remote_factory=remote_for)

    return factory


class TestFirstDevice:
    @pytest.mark.asyncio
    async def test_adopt_local_then_replicate(self, make_app, server):
        async with make_app("laptop") as app:
            travel = app.state.create_list("Travel", tags=["a2"])
            card = app.state.add_flashcard(travel.id, "the ticket", "el billete")
            app.state.update_settings(api_key="secret", target_lang="es")
            app.session.review(card.id, Grade.GOOD)

            outcome = await app.reconciliation.sign_in("u1")
            assert outcome.kind == OutcomeKind.CONFLICT_AMBIGUITY
            assert outcome.local_list_count == 1
            assert server.user("u1")["lists"] == {}

            await app.reconciliation.resolve_first_sync(FirstSyncChoice.ADOPT_LOCAL)
            remote = server.user("u1")
            assert list(remote["lists"]) == [travel.id]
            assert remote["lists"][travel.id]["flashcards"][0]["srsNormal"]["repetitions"] == 1
            assert "apiKey" not in remote["settings"]

            app.state.add_flashcard(travel.id, "the platform", "el andén")
            app.session.review(card.id, Grade.HARD)
            await app.reconciliation.replication.drain()
            assert len(remote["lists"][travel.id]["flashcards"]) == 2
            assert len(remote["dailyStats"]) == 1

            outcome = await app.reconciliation.sign_out()
            assert outcome.kind == OutcomeKind.SIGNED_OUT
            assert app.reconciliation.status == AuthStatus.SIGNED_OUT
            assert len(app.state.get_list(travel.id).flashcards) == 2

            app.state.create_list("Offline only")
            await app.persister.drain()
            assert len(remote["lists"]) == 1

        async with make_app("laptop") as reopened:
            assert sorted(v.name for v in reopened.state.lists) == ["Offline only", "Travel"]
            assert reopened.state.settings.api_key == "secret"
            assert sum(day.reviews for day in reopened.state.daily_stats.values()) == 2

    @pytest.mark.asyncio
    async def test_delete_propagates(self, make_app, server):
        server.user("u1")["lists"]["shared"] = make_list("shared", last_modified=NOW).to_document()

        async with make_app("laptop") as app:
            await app.reconciliation.sign_in("u1")
            await app.reconciliation.wait_for_pushes()

            app.state.delete_list("shared")
            await app.reconciliation.replication.drain()

            assert server.user("u1")["lists"] == {}
            assert any(r.method == "DELETE" for r in server.requests)


class TestSecondDevice:
    @pytest.mark.asyncio
    async def test_fresh_device_receives_lists(self, make_app, server):
        async with make_app("laptop") as laptop:
            laptop.state.create_list("Verbs")
            await laptop.reconciliation.sign_in("u1")
            await laptop.reconciliation.resolve_first_sync(FirstSyncChoice.ADOPT_LOCAL)

        async with make_app("phone") as phone:
            outcome = await phone.reconciliation.sign_in("u1")
            await phone.reconciliation.wait_for_pushes()
            await phone.persister.drain()

            assert outcome.kind == OutcomeKind.MERGED
            assert [v.name for v in phone.state.lists] == ["Verbs"]
            assert [v.name for v in await phone.local_store.load_lists()] == ["Verbs"]
            assert phone.state.settings.api_key == ""

    @pytest.mark.asyncio
    async def test_list_deleted_elsewhere_is_dropped(self, make_app, server):
        async with make_app("phone") as phone:
            old = phone.state.create_list("Deleted on laptop")
            await phone.reconciliation.sign_in("u1")
            await phone.reconciliation.resolve_first_sync(FirstSyncChoice.ADOPT_LOCAL)
            await phone.reconciliation.sign_out()

        # Another device removed it and added a new one
        remote = server.user("u1")
        remote["lists"].clear()
        remote["lists"]["fresh"] = make_list("fresh", name="New on laptop", last_modified=NOW).to_document()

        async with make_app("phone") as phone:
            phone.reconciliation.recent_threshold_ms = 0
            outcome = await phone.reconciliation.sign_in("u1")
            await phone.persister.drain()

            assert outcome.merge.dropped == (old.id,)
            assert [v.name for v in phone.state.lists] == ["New on laptop"]
            assert [v.id for v in await phone.local_store.load_lists()] == ["fresh"]


class TestRemoteOutage:
    @pytest.mark.asyncio
    async def test_sign_in_aborts_and_keeps_local(self, make_app, server):
        server.unavailable = True

        async with make_app("laptop") as app:
            app.state.create_list("Mine")

            with pytest.raises(TransientIOError):
                await app.reconciliation.sign_in("u1")

            assert [v.name for v in app.state.lists] == ["Mine"]
            assert app.reconciliation.status == AuthStatus.SIGNED_OUT
            assert app.reconciliation.replication is None


class TestSyncCommand:
    @pytest.mark.asyncio
    async def test_sync_uploads_recent_local_list(self, make_app, server):
        server.user("u1")["lists"]["R"] = make_list("R", last_modified=1).to_document()

        async with make_app("laptop") as app:
            mine = app.state.create_list("Mine")
            await _sync_once(app, "u1")

            assert app.reconciliation.status == AuthStatus.SIGNED_OUT
        assert sorted(server.user("u1")["lists"]) == sorted(["R", mine.id])

    @pytest.mark.asyncio
    async def test_sync_exits_nonzero_when_upload_fails(self, make_app, server):
        server.user("u1")["lists"]["R"] = make_list("R", last_modified=1).to_document()
        server.read_only = True

        async with make_app("laptop") as app:
            mine = app.state.create_list("Mine")

            with pytest.raises(typer.Exit) as exc_info:
                await _sync_once(app, "u1")

            assert exc_info.value.exit_code == 1
            assert app.reconciliation.status == AuthStatus.SIGNED_OUT
            assert mine.id in [v.id for v in await app.local_store.load_lists()]
        assert list(server.user("u1")["lists"]) == ["R"]
