# test_sync_engine.py
# Description: Behaviour of the background sync engine against a fake sync endpoint.
#
# Imports
import asyncio
import json
from datetime import datetime, timezone
from unittest.mock import MagicMock
#
# Third-Party Imports
import httpx
import pytest
import pytest_asyncio
#
# Local Imports
from listbook.DB.List_Store import ListStore
from listbook.DB.Local_Storage_DB import StorageError
from listbook.Sync.Host_Bridge import HostBridge
from listbook.Sync.Sync_Client import ListSyncEngine, SyncStatus
from listbook.sync_api.client import ListSyncAPIClient
#
########################################################################################################################
#
# Fixtures and helpers:

pytestmark = pytest.mark.asyncio

SESSION_URL = "http://app.test"
API_URL = "http://api.test"
OLD = "2024-01-01T00:00:00.000Z"


def rec(record_id, rank, updated_at=OLD, **extra):
    record = {"id": record_id, "type": "list", "rank": rank, "folder": None, "updated_at": updated_at}
    record.update(extra)
    return record


def ids(records):
    return [r["id"] for r in records]


class FakeSyncServer:
    """In-process stand-in for the sync endpoint. POSTed records overwrite stored ones by id."""

    def __init__(self, remote=None):
        self.remote_by_id = {r["id"]: r for r in (remote or [])}
        self.requests = []
        self.get_status = 200
        self.post_status = 200
        self.post_delay = 0.0
        # Raw bytes to answer GETs with, bypassing JSON encoding
        self.get_body = None
        # When set, only these bearer tokens are accepted
        self.valid_tokens = None

    @property
    def posts(self):
        return [r for r in self.requests if r.method == "POST"]

    @property
    def gets(self):
        return [r for r in self.requests if r.method == "GET"]

    def posted_ids(self, index=-1):
        return ids(json.loads(self.posts[index].content)["lists"])

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.valid_tokens is not None:
            auth = request.headers.get("Authorization")
            if auth not in {f"Bearer {t}" for t in self.valid_tokens}:
                return httpx.Response(401, json={"detail": "token expired"})

        if request.method == "POST":
            if self.post_delay:
                await asyncio.sleep(self.post_delay)
            if self.post_status != 200:
                return httpx.Response(self.post_status, json={"detail": "push rejected"})
            for record in json.loads(request.content)["lists"]:
                self.remote_by_id[record["id"]] = record
            return httpx.Response(200, json={"ok": True})

        if self.get_status != 200:
            return httpx.Response(self.get_status, json={"detail": "unavailable"})
        if self.get_body is not None:
            return httpx.Response(200, content=self.get_body)
        return httpx.Response(200, json={"lists": list(self.remote_by_id.values())})


class RefreshingBridge(HostBridge):
    """Bearer-mode host. Answers refresh requests on the next loop iteration."""

    def __init__(self, token="old", new_token="new", channel=True, answer=True, respond=True):
        self.token = token
        self.new_token = new_token
        self.channel = channel
        self.answer = answer
        self.respond = respond
        self.engine = None
        self.refresh_requests = 0
        self.auth_failures = 0

    def get_access_token(self):
        return self.token

    def request_token_refresh(self):
        self.refresh_requests += 1
        if not self.channel:
            return False
        if self.respond:
            asyncio.get_running_loop().call_soon(self._finish)
        return True

    def _finish(self):
        if self.answer:
            self.token = self.new_token
        self.engine.complete_token_refresh(self.answer)

    def on_auth_failure(self):
        self.auth_failures += 1


@pytest.fixture
def server():
    return FakeSyncServer()


@pytest_asyncio.fixture
async def make_engine(server):
    engines = []

    def _make(bridge=None, **overrides):
        timings = dict(
            debounce_seconds=0.05,
            retry_interval_seconds=60.0,
            min_busy_seconds=0.0,
            token_refresh_timeout_seconds=0.1,
        )
        timings.update(overrides)
        client = ListSyncAPIClient(
            session_base_url=SESSION_URL,
            api_base_url=API_URL,
            transport=httpx.MockTransport(server.handler),
        )
        engine = ListSyncEngine(ListStore(":memory:"), client, bridge, **timings)
        if isinstance(bridge, RefreshingBridge):
            bridge.engine = engine
        engines.append(engine)
        return engine

    yield _make
    for engine in engines:
        await engine.aclose()
        engine.store.close()


########################################################################################################################
#
# Authentication probe

class TestCheckAuth:
    async def test_session_probe_is_cached(self, make_engine, server):
        engine = make_engine()
        assert await engine.check_auth() is True
        assert await engine.check_auth() is True
        assert len(server.gets) == 1
        assert str(server.gets[0].url) == f"{SESSION_URL}/api/builder/sync"
        assert "Authorization" not in server.gets[0].headers

    async def test_failed_probe_means_signed_out_until_reset(self, make_engine, server):
        server.get_status = 401
        engine = make_engine()
        assert await engine.check_auth() is False
        assert engine.get_state().is_authenticated is False
        # Session-mode 401 is not an auth error, just "signed out"
        assert engine.get_state().auth_error is False

        server.get_status = 200
        assert await engine.check_auth() is False
        engine.reset_auth_cache()
        assert await engine.check_auth() is True
        assert len(server.gets) == 2

    async def test_bearer_mode_needs_no_probe(self, make_engine, server):
        engine = make_engine(RefreshingBridge(token="tok"))
        assert engine.is_bearer_mode()
        assert await engine.check_auth() is True
        assert server.requests == []


########################################################################################################################
#
# Outbound path

class TestPush:
    async def test_debounce_coalesces_bursts_into_one_post(self, make_engine, server):
        engine = make_engine()
        for rank in ("a", "b", "c"):
            engine.push([rec("A", rank)])
            await asyncio.sleep(0.01)

        state = engine.get_state()
        assert state.status == SyncStatus.DEBOUNCE_PENDING
        assert state.has_pending_changes is True

        await asyncio.sleep(0.2)
        assert len(server.posts) == 1
        assert json.loads(server.posts[0].content)["lists"][0]["rank"] == "c"
        state = engine.get_state()
        assert state.status == SyncStatus.IDLE
        assert state.has_pending_changes is False
        assert state.last_synced_at is not None

    async def test_push_backfills_missing_timestamps(self, make_engine, server):
        engine = make_engine()
        engine.push([{"id": "A", "rank": "a"}])
        await asyncio.sleep(0.15)
        sent = json.loads(server.posts[0].content)["lists"][0]
        assert sent["updated_at"]

    async def test_failed_push_stays_pending_and_periodic_retry_delivers(self, make_engine, server):
        server.post_status = 500
        engine = make_engine(debounce_seconds=0.02, retry_interval_seconds=0.1)
        records = [rec("A", "a")]
        engine.store.save_lists(records)
        engine.push(records)

        await asyncio.sleep(0.06)
        assert len(server.posts) == 1
        assert engine.get_state().has_pending_changes is True
        assert engine.get_state().last_synced_at is None

        server.post_status = 200
        await asyncio.sleep(0.25)
        assert len(server.posts) >= 2
        assert engine.get_state().has_pending_changes is False

    async def test_session_mode_401_on_push_is_an_ordinary_failure(self, make_engine, server):
        server.post_status = 401
        engine = make_engine()
        engine.push([rec("A", "a")])
        await asyncio.sleep(0.15)
        state = engine.get_state()
        assert state.auth_error is False
        assert state.has_pending_changes is True

    async def test_push_during_flight_is_queued_and_replayed(self, make_engine, server):
        server.post_delay = 0.2
        engine = make_engine(debounce_seconds=0.01)
        engine.push([rec("A", "a")])
        await asyncio.sleep(0.05)
        assert engine.get_state().is_syncing is True

        engine.push([rec("A", "a"), rec("B", "b")])
        await asyncio.sleep(0.25)
        # First POST finished, queued payload is going out: still dirty
        assert len(server.posts) == 2
        assert engine.get_state().has_pending_changes is True

        await asyncio.sleep(0.3)
        assert server.posted_ids(-1) == ["A", "B"]
        assert engine.get_state().has_pending_changes is False
        assert engine.get_state().is_syncing is False

    async def test_syncing_stays_visible_for_minimum_busy_time(self, make_engine, server):
        engine = make_engine(min_busy_seconds=0.2)
        records = [rec("A", "a")]
        engine.store.save_lists(records)
        engine.push(records)

        loop = asyncio.get_running_loop()
        started = loop.time()
        task = asyncio.create_task(engine.flush_pending_sync())
        await asyncio.sleep(0.05)
        assert engine.get_state().status == SyncStatus.SYNCING

        assert await task is True
        assert loop.time() - started >= 0.19
        assert engine.get_state().status == SyncStatus.IDLE

    async def test_only_the_latest_queued_payload_is_sent(self, make_engine, server):
        server.post_delay = 0.2
        engine = make_engine()
        first = asyncio.create_task(engine._sync_now([rec("A", "a")]))
        await asyncio.sleep(0.05)

        assert await engine._sync_now([rec("A", "a"), rec("B", "b")]) is False
        assert await engine._sync_now([rec("A", "a"), rec("B", "b"), rec("C", "c")]) is False
        assert await first is True

        assert len(server.posts) == 2
        assert server.posted_ids(0) == ["A"]
        assert server.posted_ids(1) == ["A", "B", "C"]

    async def test_flush_without_pending_changes_does_nothing(self, make_engine, server):
        engine = make_engine()
        assert await engine.flush_pending_sync() is False
        assert server.requests == []


########################################################################################################################
#
# Inbound path

class TestPull:
    async def test_pull_merges_remote_into_local(self, make_engine, server):
        server.remote_by_id = {"R": rec("R", "0B")}
        engine = make_engine(RefreshingBridge(token="tok"))
        merged = await engine.pull([rec("L", "m")])
        assert ids(merged) == ["R", "L"]
        assert server.gets[0].headers["Authorization"] == "Bearer tok"
        assert str(server.gets[0].url) == f"{API_URL}/api/v1/builder/sync"

    async def test_pull_failure_returns_local_unchanged(self, make_engine, server):
        server.get_status = 503
        engine = make_engine(RefreshingBridge(token="tok"))
        local = [rec("L", "m")]
        assert await engine.pull(local) == local
        assert engine.get_state().is_syncing is False

    async def test_undecodable_body_returns_local(self, make_engine, server):
        server.get_body = b'{"lists": [{"id": "\xff\xfe"}]}'
        engine = make_engine(RefreshingBridge(token="tok"))
        local = [rec("L", "m")]
        assert await engine.pull(local) == local
        assert engine.get_state().auth_error is False

    async def test_pull_when_signed_out_skips_the_network(self, make_engine, server):
        server.get_status = 401
        engine = make_engine()
        local = [rec("L", "m")]
        assert await engine.pull(local) == local
        # Only the auth probe went out
        assert len(server.requests) == 1


########################################################################################################################
#
# Bearer token refresh

class TestTokenRefresh:
    async def test_401_refreshes_once_and_retries(self, make_engine, server):
        server.valid_tokens = {"new"}
        server.remote_by_id = {"R": rec("R", "a")}
        bridge = RefreshingBridge(token="old", new_token="new")
        engine = make_engine(bridge)

        merged = await engine.pull([])
        assert ids(merged) == ["R"]
        assert bridge.refresh_requests == 1
        assert [r.headers["Authorization"] for r in server.gets] == ["Bearer old", "Bearer new"]
        assert engine.get_state().auth_error is False

    async def test_concurrent_401s_share_one_refresh(self, make_engine, server):
        server.valid_tokens = {"new"}
        server.remote_by_id = {"R": rec("R", "a")}
        bridge = RefreshingBridge(token="old", respond=False)
        engine = make_engine(bridge, token_refresh_timeout_seconds=1.0)

        pulls = asyncio.gather(*(engine.pull([]) for _ in range(3)))
        await asyncio.sleep(0.05)
        assert bridge.refresh_requests == 1

        bridge.token = "new"
        engine.complete_token_refresh(True)
        results = await pulls
        assert [ids(r) for r in results] == [["R"], ["R"], ["R"]]
        assert bridge.refresh_requests == 1
        assert engine.get_state().auth_error is False

    async def test_no_refresh_channel_enters_auth_error(self, make_engine, server):
        server.valid_tokens = set()
        bridge = RefreshingBridge(channel=False)
        engine = make_engine(bridge)

        local = [rec("L", "a")]
        assert await engine.pull(local) == local
        state = engine.get_state()
        assert state.auth_error is True
        assert state.status == SyncStatus.AUTH_ERROR
        assert bridge.auth_failures == 1

    async def test_refresh_timeout_enters_auth_error(self, make_engine, server):
        server.valid_tokens = {"new"}
        bridge = RefreshingBridge(respond=False)
        engine = make_engine(bridge, token_refresh_timeout_seconds=0.05)

        await engine.pull([])
        assert engine.get_state().auth_error is True
        assert bridge.auth_failures == 1

    async def test_second_401_after_refresh_enters_auth_error(self, make_engine, server):
        server.valid_tokens = {"something-else"}
        bridge = RefreshingBridge(token="old", new_token="still-bad")
        engine = make_engine(bridge)

        await engine.pull([])
        assert bridge.refresh_requests == 1
        assert len(server.gets) == 2
        assert engine.get_state().auth_error is True

    async def test_push_in_auth_error_only_marks_pending(self, make_engine, server):
        server.valid_tokens = set()
        engine = make_engine(RefreshingBridge(channel=False))
        await engine.pull([])
        request_count = len(server.requests)

        engine.push([rec("A", "a")])
        state = engine.get_state()
        assert state.has_pending_changes is True
        assert state.status == SyncStatus.AUTH_ERROR
        assert engine._debounce_task is None
        assert engine._periodic_task is None

        await asyncio.sleep(0.15)
        assert len(server.requests) == request_count

    async def test_reset_auth_resumes(self, make_engine, server):
        server.valid_tokens = set()
        bridge = RefreshingBridge(channel=False)
        engine = make_engine(bridge)
        await engine.pull([])
        assert engine.get_state().auth_error is True

        server.valid_tokens = None
        engine.reset_auth()
        state = engine.get_state()
        assert state.auth_error is False
        assert state.is_authenticated is True
        assert engine._periodic_task is not None


########################################################################################################################
#
# Forced sync

class TestForceSync:
    async def test_force_sync_pushes_pulls_and_saves(self, make_engine, server):
        server.remote_by_id = {"B": rec("B", "c")}
        engine = make_engine()
        engine.store.save_lists([rec("A", "m")])

        result = await engine.force_sync()
        assert ids(result) == ["B", "A"]
        assert server.posted_ids(0) == ["A"]
        assert ids(engine.store.load_lists()) == ["B", "A"]
        state = engine.get_state()
        assert state.has_pending_changes is False
        assert state.last_synced_at is not None

    async def test_force_sync_hides_tombstones_but_keeps_them_stored(self, make_engine, server):
        engine = make_engine()
        engine.store.save_lists([rec("A", "m"), rec("D", "n", _deleted=True)])

        result = await engine.force_sync()
        assert ids(result) == ["A"]
        assert ids(engine.store.load_lists()) == ["A", "D"]

    async def test_force_sync_clears_auth_error(self, make_engine, server):
        engine = make_engine()
        engine.store.save_lists([rec("A", "m")])
        engine._handle_auth_failure()
        assert engine.get_state().auth_error is True

        result = await engine.force_sync()
        assert ids(result) == ["A"]
        assert engine.get_state().auth_error is False

    async def test_force_sync_failure_returns_none(self, make_engine, server):
        engine = make_engine()
        assert await engine.check_auth() is True
        server.post_status = 500
        engine.store.save_lists([rec("A", "m")])
        assert await engine.force_sync() is None
        assert engine.get_state().is_syncing is False

    async def test_force_sync_with_undecodable_body_returns_none(self, make_engine, server):
        engine = make_engine(RefreshingBridge(token="tok"))
        engine.store.save_lists([rec("A", "m")])
        server.get_body = b"\xff\xfe not json"
        assert await engine.force_sync() is None
        assert ids(engine.store.load_lists()) == ["A"]
        assert engine.get_state().is_syncing is False

    async def test_force_sync_signed_out_returns_none(self, make_engine, server):
        server.get_status = 401
        engine = make_engine()
        assert await engine.force_sync() is None
        assert server.posts == []


########################################################################################################################
#
# Observer channel, maintenance, construction

class TestSubscribe:
    async def test_listener_gets_current_state_then_changes(self, make_engine, server):
        engine = make_engine()
        seen = []
        unsubscribe = engine.subscribe(seen.append)
        assert len(seen) == 1
        assert seen[0].status == SyncStatus.IDLE

        engine.push([rec("A", "a")])
        assert seen[-1].status == SyncStatus.DEBOUNCE_PENDING

        unsubscribe()
        count = len(seen)
        await asyncio.sleep(0.15)
        assert len(seen) == count

    async def test_raising_listener_does_not_break_others(self, make_engine, server):
        engine = make_engine()

        def bad_listener(state):
            raise ValueError("listener bug")

        seen = []
        engine.subscribe(bad_listener)
        engine.subscribe(seen.append)
        engine.push([rec("A", "a")])
        assert seen[-1].has_pending_changes is True

    async def test_listener_sees_idle_when_debounced_push_is_skipped(self, make_engine, server):
        server.get_status = 401
        engine = make_engine()
        seen = []
        engine.subscribe(seen.append)
        engine.push([rec("A", "a")])
        await asyncio.sleep(0.2)

        assert engine.get_state().status == SyncStatus.IDLE
        assert seen[-1].status == SyncStatus.IDLE
        assert seen[-1].has_pending_changes is True
        assert server.posts == []


class TestCleanup:
    async def test_expired_tombstones_are_removed(self, make_engine):
        engine = make_engine()
        engine.store.save_lists([rec("A", "a"), rec("D", "b", _deleted=True)])
        now = datetime(2024, 3, 1, tzinfo=timezone.utc)
        assert engine.cleanup_deleted_lists(now=now) == 1
        assert ids(engine.store.load_lists()) == ["A"]

    async def test_cleanup_skipped_while_changes_pending(self, make_engine):
        engine = make_engine(debounce_seconds=10.0)
        records = [rec("A", "a"), rec("D", "b", _deleted=True)]
        engine.store.save_lists(records)
        engine.push(records)
        now = datetime(2024, 3, 1, tzinfo=timezone.utc)
        assert engine.cleanup_deleted_lists(now=now) == 0
        assert ids(engine.store.load_lists()) == ["A", "D"]

    async def test_storage_error_is_logged_and_skipped(self, make_engine):
        engine = make_engine()
        engine.store.load_lists = MagicMock(side_effect=StorageError("disk gone"))
        assert engine.cleanup_deleted_lists() == 0


async def test_from_settings_builds_client_and_timings(server):
    settings = {
        "session_base_url": "http://settings.test/",
        "api_base_url": "http://api.settings.test",
        "debounce_seconds": 2.5,
        "retry_interval_seconds": 30.0,
        "min_busy_seconds": 0.1,
        "token_refresh_timeout_seconds": 4.0,
        "tombstone_retention_days": 3,
        "request_timeout_seconds": 5.0,
    }
    store = ListStore(":memory:")
    engine = ListSyncEngine.from_settings(settings, store, transport=httpx.MockTransport(server.handler))
    try:
        assert engine.debounce_seconds == 2.5
        assert engine.retry_interval_seconds == 30.0
        assert engine.tombstone_retention.days == 3
        assert engine.api_client.endpoint_for() == "http://settings.test/api/builder/sync"
        assert engine.api_client.endpoint_for("tok") == "http://api.settings.test/api/v1/builder/sync"
        assert engine.is_bearer_mode() is False
    finally:
        await engine.aclose()
        store.close()

#
# End of test_sync_engine.py
########################################################################################################################
