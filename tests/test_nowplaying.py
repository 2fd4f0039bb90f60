"""Tests for the now-playing publisher."""

from unittest.mock import AsyncMock

import pytest
from aiohttp import web
from aiohttp import test_utils

from tapedeck.nowplaying import NowPlayingPublisher, NowPlayingSnapshot

from conftest import make_song


class FakeDelegate:
    def __init__(self, id="subsonic", playing=True):
        self.id = id
        self.snapshot = NowPlayingSnapshot(
            song=make_song(1), queue_position=0, queue_length=3,
            elapsed=12.34, total=100.0, is_playing=playing, state="playing" if playing else "paused",
            source=id,
        )
        self.dispatch = AsyncMock(return_value={"status": "ok"})

    def now_playing(self):
        return self.snapshot


@pytest.fixture
def publisher():
    return NowPlayingPublisher(port=0, host="127.0.0.1", tick=0.01)


class TestDelegate:
    def test_no_delegate_snapshot_is_none(self, publisher):
        assert publisher.current_snapshot() is None

    def test_registration_replaces_silently(self, publisher):
        a, b = FakeDelegate("a"), FakeDelegate("b")
        publisher.set_delegate(a)
        publisher.set_delegate(b)
        assert publisher.delegate is b
        assert publisher.current_snapshot().source == "b"

    def test_clear_only_given_delegate(self, publisher):
        a, b = FakeDelegate("a"), FakeDelegate("b")
        publisher.set_delegate(b)
        publisher.clear_delegate(a)
        assert publisher.delegate is b
        publisher.clear_delegate()
        assert publisher.delegate is None


class TestPublish:
    @pytest.mark.asyncio
    async def test_sinks_receive_snapshot(self, publisher):
        publisher.set_delegate(FakeDelegate())
        sink = AsyncMock()
        publisher.add_sink(sink)
        await publisher.publish("playing")
        data, reason = sink.await_args.args
        assert reason == "playing"
        assert data["song"]["id"] == "s1"
        assert data["queue_length"] == 3
        assert data["elapsed"] == 12.3
        assert data["is_playing"] is True

    @pytest.mark.asyncio
    async def test_idle_snapshot(self, publisher):
        sink = AsyncMock()
        publisher.add_sink(sink)
        await publisher.publish()
        assert sink.await_args.args[0] == {"state": "idle", "song": None}

    @pytest.mark.asyncio
    async def test_failing_sink_does_not_stop_others(self, publisher):
        publisher.set_delegate(FakeDelegate())
        broken = AsyncMock(side_effect=RuntimeError("boom"))
        good = AsyncMock()
        publisher.add_sink(broken)
        publisher.add_sink(good)
        await publisher.publish()
        good.assert_awaited_once()


class TestRemoteCommands:
    @pytest.mark.asyncio
    async def test_forwarded_to_delegate(self, publisher):
        delegate = FakeDelegate()
        publisher.set_delegate(delegate)
        await publisher.handle_remote("previous")
        delegate.dispatch.assert_awaited_once_with("prev", {})
        await publisher.handle_remote("seek", {"position": 30})
        delegate.dispatch.assert_awaited_with("seek", {"position": 30})

    @pytest.mark.asyncio
    async def test_unknown_command(self, publisher):
        publisher.set_delegate(FakeDelegate())
        result = await publisher.handle_remote("eject")
        assert result["status"] == "error"

    @pytest.mark.asyncio
    async def test_nothing_playing(self, publisher):
        result = await publisher.handle_remote("play")
        assert result["status"] == "error"


class TestTick:
    @pytest.mark.asyncio
    async def test_tick_while_playing(self, publisher):
        delegate = FakeDelegate(playing=True)
        publisher.set_delegate(delegate)
        sink = AsyncMock()
        publisher.add_sink(sink)
        await publisher.tick_once()
        delegate.dispatch.assert_awaited_once_with("tick", {})
        assert sink.await_args.args[1] == "progress"

    @pytest.mark.asyncio
    async def test_no_tick_while_paused(self, publisher):
        delegate = FakeDelegate(playing=False)
        publisher.set_delegate(delegate)
        await publisher.tick_once()
        delegate.dispatch.assert_not_awaited()


class TestHTTP:
    @pytest.mark.asyncio
    async def test_now_playing_and_command(self, publisher):
        delegate = FakeDelegate()
        publisher.set_delegate(delegate)
        async with test_utils.TestClient(test_utils.TestServer(publisher.make_app())) as client:
            resp = await client.get("/now_playing")
            assert resp.status == 200
            body = await resp.json()
            assert body["song"]["title"] == "Song 1"

            resp = await client.post("/command", json={"command": "next"})
            assert resp.status == 200
            delegate.dispatch.assert_awaited_once()
            assert delegate.dispatch.await_args.args[0] == "next"

            resp = await client.post("/command", data="not json")
            assert resp.status == 400

    @pytest.mark.asyncio
    async def test_websocket_gets_initial_snapshot(self, publisher):
        publisher.set_delegate(FakeDelegate())
        async with test_utils.TestClient(test_utils.TestServer(publisher.make_app())) as client:
            ws = await client.ws_connect("/ws")
            msg = await ws.receive_json()
            assert msg["type"] == "now_playing"
            assert msg["reason"] == "client_connect"
            await ws.close()

    @pytest.mark.asyncio
    async def test_extra_routes_registered(self, publisher):
        async def ping(request):
            return web.json_response({"pong": True})

        publisher.add_routes(lambda app: app.router.add_get("/ping", ping))
        async with test_utils.TestClient(test_utils.TestServer(publisher.make_app())) as client:
            resp = await client.get("/ping")
            assert (await resp.json()) == {"pong": True}
