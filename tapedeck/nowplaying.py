# Tapedeck
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Now-playing publisher.

Exactly one delegate (the active playback service) at a time; registering
a new one silently replaces the old.  The delegate provides:

    now_playing()          -> NowPlayingSnapshot | None   (pure read)
    dispatch(cmd, data)    -> dict                        (serialized command)

Pushes:
  - once immediately on every playback state change (the delegate calls
    ``publish()``)
  - every ``tick`` seconds while playing; the tick itself is a "tick"
    command sent through the delegate's mailbox so it is serialized with
    user commands
  - artwork, once per song change, fetched through an LRU cache

Consumers:
  - sinks registered with ``add_sink(callback)`` (the OS media-control
    collaborator): ``async callback(snapshot_dict, reason)``
  - WebSocket clients on ``/ws``

HTTP (aiohttp):
    GET  /now_playing     current snapshot (or {"state": "idle"})
    POST /command         {"command": "play"|"pause"|"toggle"|"next"|"previous"|"seek", "position": s}
    GET  /ws              push channel
"""

import asyncio
import json
import logging
from dataclasses import dataclass

import aiohttp
from aiohttp import web

from tapedeck.lib.artwork import ArtworkCache, fetch_artwork
from tapedeck.lib.config import cfg
from tapedeck.models import UniversalSong

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8780
DEFAULT_TICK = 1.0

# Remote command → playback service command
REMOTE_COMMANDS = {
    "play": "play",
    "pause": "pause",
    "toggle": "toggle",
    "next": "next",
    "previous": "prev",
    "seek": "seek",
}


@dataclass(frozen=True)
class NowPlayingSnapshot:
    song: UniversalSong | None
    queue_position: int
    queue_length: int
    elapsed: float
    total: float
    is_playing: bool
    state: str = "idle"
    source: str = ""
    queue_elapsed: float = 0.0
    queue_total: float = 0.0
    shuffle: bool = False
    repeat: str = "off"
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "song": self.song.to_dict() if self.song else None,
            "queue_position": self.queue_position,
            "queue_length": self.queue_length,
            "elapsed": round(self.elapsed, 1),
            "total": self.total,
            "is_playing": self.is_playing,
            "state": self.state,
            "source": self.source,
            "queue_elapsed": round(self.queue_elapsed, 1),
            "queue_total": self.queue_total,
            "shuffle": self.shuffle,
            "repeat": self.repeat,
            "error": self.error,
        }


class NowPlayingPublisher:
    def __init__(self, http_session: aiohttp.ClientSession | None = None,
                 port: int | None = None, host: str | None = None,
                 tick: float | None = None):
        self.port = port if port is not None else cfg("publisher", "port", default=DEFAULT_PORT)
        self.host = host or cfg("publisher", "host", default="0.0.0.0")
        self.tick = tick if tick is not None else cfg("publisher", "tick", default=DEFAULT_TICK)
        self._http_session = http_session
        self._delegate = None
        self._sinks = []
        self._ws_clients: set[web.WebSocketResponse] = set()
        self._artwork_cache = ArtworkCache()
        self._last_song_id = None
        self._tick_task = None
        self._artwork_task = None
        self._runner: web.AppRunner | None = None
        self._extra_routes = []

    # ── Delegate ──

    @property
    def delegate(self):
        return self._delegate

    def set_delegate(self, delegate) -> None:
        if delegate is self._delegate:
            return
        previous = self._delegate
        self._delegate = delegate
        self._last_song_id = None
        logger.info("Now-playing delegate: %s -> %s",
                    getattr(previous, "id", None), getattr(delegate, "id", None))

    def clear_delegate(self, delegate=None) -> None:
        """Drop the delegate (only *delegate*, if given)."""
        if delegate is not None and delegate is not self._delegate:
            return
        self._delegate = None
        self._last_song_id = None

    def current_snapshot(self) -> NowPlayingSnapshot | None:
        if self._delegate is None:
            return None
        return self._delegate.now_playing()

    # ── Push ──

    def add_sink(self, callback) -> None:
        self._sinks.append(callback)

    async def publish(self, reason: str = "update") -> None:
        snapshot = self.current_snapshot()
        data = snapshot.to_dict() if snapshot else {"state": "idle", "song": None}
        for sink in list(self._sinks):
            try:
                await sink(data, reason)
            except Exception:
                logger.exception("Now-playing sink failed")
        await self.broadcast("now_playing", data, reason=reason)

        song = snapshot.song if snapshot else None
        song_id = song.id if song else None
        if song_id != self._last_song_id:
            self._last_song_id = song_id
            if song is not None and song.artwork_url:
                self._schedule_artwork(song)

    async def broadcast(self, event_type: str, data, reason: str | None = None) -> None:
        """Push an event to all connected WebSocket clients."""
        if not self._ws_clients:
            return
        payload = {"type": event_type, "data": data}
        if reason:
            payload["reason"] = reason
        message = json.dumps(payload)

        disconnected = set()
        for ws in self._ws_clients:
            try:
                await ws.send_str(message)
            except (ConnectionError, RuntimeError):
                disconnected.add(ws)
        self._ws_clients -= disconnected
        logger.debug("Broadcast %s to %d clients", event_type, len(self._ws_clients))

    def _schedule_artwork(self, song: UniversalSong):
        if self._artwork_task and not self._artwork_task.done():
            self._artwork_task.cancel()
        self._artwork_task = asyncio.create_task(self._push_artwork(song))

    async def _push_artwork(self, song: UniversalSong):
        artwork = await fetch_artwork(song.artwork_url, self._artwork_cache, self._http_session)
        if artwork is None:
            return
        await self.broadcast("artwork", {"song_id": song.id, **artwork})

    # ── Remote commands ──

    async def handle_remote(self, command: str, data: dict | None = None) -> dict:
        """Forward a remote-control command to the delegate's mailbox."""
        cmd = REMOTE_COMMANDS.get(command)
        if cmd is None:
            return {"status": "error", "message": f"Unknown command: {command}"}
        if self._delegate is None:
            return {"status": "error", "message": "Nothing is playing"}
        return await self._delegate.dispatch(cmd, data or {})

    # ── Progress tick ──

    async def _tick_loop(self):
        while True:
            await asyncio.sleep(self.tick)
            await self.tick_once()

    async def tick_once(self):
        delegate = self._delegate
        if delegate is None:
            return
        snapshot = delegate.now_playing()
        if snapshot is None or not snapshot.is_playing:
            return
        await delegate.dispatch("tick", {})
        await self.publish("progress")

    # ── HTTP + WebSocket server ──

    def add_routes(self, register) -> None:
        """*register(app)* is called with the aiohttp app before it starts."""
        self._extra_routes.append(register)

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/now_playing", self._handle_now_playing)
        app.router.add_post("/command", self._handle_command)
        app.router.add_get("/ws", self._handle_ws)
        for register in self._extra_routes:
            register(app)
        return app

    async def start(self, serve: bool = True):
        if serve:
            self._runner = web.AppRunner(self.make_app())
            await self._runner.setup()
            site = web.TCPSite(self._runner, self.host, self.port)
            await site.start()
            logger.info("Now-playing API on port %d", self.port)
        self._tick_task = asyncio.create_task(self._tick_loop())

    async def stop(self):
        for task in (self._tick_task, self._artwork_task):
            if task:
                task.cancel()
        self._tick_task = self._artwork_task = None
        for ws in list(self._ws_clients):
            await ws.close()
        self._ws_clients.clear()
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    async def _handle_now_playing(self, request: web.Request) -> web.Response:
        snapshot = self.current_snapshot()
        data = snapshot.to_dict() if snapshot else {"state": "idle", "song": None}
        return web.json_response(data)

    async def _handle_command(self, request: web.Request) -> web.Response:
        try:
            data = await request.json()
        except ValueError:
            return web.json_response({"status": "error", "message": "Invalid JSON"}, status=400)
        result = await self.handle_remote(data.get("command", ""), data)
        status = 400 if result.get("status") == "error" else 200
        return web.json_response(result, status=status)

    async def _handle_ws(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self._ws_clients.add(ws)
        logger.info("WebSocket client connected (%d total)", len(self._ws_clients))
        try:
            snapshot = self.current_snapshot()
            await ws.send_json({
                "type": "now_playing",
                "reason": "client_connect",
                "data": snapshot.to_dict() if snapshot else {"state": "idle", "song": None},
            })
            # Push-only
            async for _ in ws:
                pass
        finally:
            self._ws_clients.discard(ws)
            logger.info("WebSocket client disconnected (%d remaining)", len(self._ws_clients))
        return ws
