# Tapedeck
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
SourceBase — one playback service per backend.

A service owns a backend adapter, a play queue and a playback state
machine, and shares the media engine, the audio session arbiter and the
now-playing publisher with the other services.

Subclass contract:

    class MySource(SourceBase):
        id   = "subsonic"      # backend tag, also the arbiter owner tag
        name = "Subsonic"      # display name

Serialization: every mutation of the queue, the machine or arbiter
ownership is a command processed by the service's single mailbox task:

    await service.dispatch("next")            # enqueue and wait for the result
    service.post("media_event", {...})        # enqueue, don't wait

Media engine events and arbiter stop notifications are posted, never
awaited, so nothing running inside the mailbox can wait on the mailbox.

Library calls (browse, search, resolving a container's songs) run outside
the mailbox as tracked tasks.  ``cancel_pending()`` cancels them and bumps
the generation; a resolved queue is committed with the generation it
started under and dropped if that is no longer current.

Optional overrides:
    on_start()                — called after the mailbox is running
    on_stop()                 — called during shutdown
    on_track_started(song)    — a song began playing (runs as its own task)
    handle_extra_command(c,d) — commands the base does not know; return dict or None
"""

import asyncio
import logging
from dataclasses import dataclass

from tapedeck.errors import (
    AuthenticationFailed,
    EntityNotFound,
    NotAuthenticated,
    PlaybackFailed,
    TapedeckError,
)
from tapedeck.models import UniversalAlbum, UniversalArtist, UniversalPlaylist
from tapedeck.nowplaying import NowPlayingSnapshot
from tapedeck.play_queue import QueueManager
from tapedeck.playback import PlaybackMachine, PlaybackState

log = logging.getLogger(__name__)

CONTAINER_KINDS = ("album", "artist", "playlist")


@dataclass
class Command:
    name: str
    data: dict
    future: asyncio.Future | None = None


def error_result(e: TapedeckError) -> dict:
    return {"status": "error", "error": type(e).__name__,
            "message": e.user_message, "detail": e.message}


class SourceBase:
    # ── Subclass must set these ──
    id: str = ""
    name: str = ""

    def __init__(self, adapter, engine, arbiter, publisher, queue: QueueManager | None = None):
        self.adapter = adapter
        self.engine = engine
        self.arbiter = arbiter
        self.publisher = publisher
        self.queue = queue or QueueManager()
        self.machine = PlaybackMachine(self.queue, engine, on_change=self._on_state_change,
                                       owns_output=self.owns_output)
        self._mailbox: asyncio.Queue = asyncio.Queue()
        self._mailbox_task: asyncio.Task | None = None
        self._generation = 0
        self._pending: set[asyncio.Task] = set()
        self._started_song_id = None
        arbiter.register(self.id, self._on_session_revoked)

    # ── Lifecycle ──

    @property
    def running(self) -> bool:
        return self._mailbox_task is not None and not self._mailbox_task.done()

    async def start(self):
        self._mailbox_task = asyncio.create_task(self._run_mailbox())
        log.info("%s service started", self.name)
        await self.on_start()

    async def stop(self):
        """Shutdown hook — override on_stop() for cleanup."""
        self.cancel_pending()
        if self.running:
            await self.dispatch("stop")
            self._mailbox_task.cancel()
            try:
                await self._mailbox_task
            except asyncio.CancelledError:
                pass
        self._mailbox_task = None
        self.arbiter.unregister(self.id)
        await self.on_stop()

    async def connect(self) -> bool:
        """Authenticate the adapter; False if the backend is unreachable."""
        ok = await self.adapter.check_availability()
        await self.broadcast("source_state", {"available": ok})
        return ok

    # ── Mailbox ──

    async def dispatch(self, cmd: str, data: dict | None = None) -> dict:
        """Run *cmd* on the mailbox task and return its result dict."""
        if not self.running:
            raise RuntimeError(f"{self.name} service is not running")
        future = asyncio.get_running_loop().create_future()
        self._mailbox.put_nowait(Command(cmd, data or {}, future))
        return await future

    def post(self, cmd: str, data: dict | None = None) -> None:
        self._mailbox.put_nowait(Command(cmd, data or {}))

    async def _run_mailbox(self):
        while True:
            command = await self._mailbox.get()
            try:
                result = await self.handle_command(command.name, command.data)
                response = {"status": "ok", "command": command.name}
                if result:
                    response.update(result)
            except asyncio.CancelledError:
                if command.future and not command.future.done():
                    command.future.cancel()
                raise
            except TapedeckError as e:
                log.warning("%s: %s failed: %s", self.name, command.name, e.message)
                response = error_result(e)
            except Exception as e:
                log.exception("Command error")
                response = {"status": "error", "message": str(e)}
            if command.future and not command.future.done():
                command.future.set_result(response)

    # ── Command handling (mailbox task only) ──

    async def handle_command(self, cmd: str, data: dict) -> dict | None:
        if cmd == "set_queue":
            return await self._commit_queue(data)
        elif cmd == "play":
            self._acquire_output()
            await self.machine.play()
        elif cmd == "pause":
            await self.machine.pause()
        elif cmd == "toggle":
            if not self.machine.is_playing:
                self._acquire_output()
            await self.machine.toggle()
        elif cmd == "next":
            self._acquire_output()
            return {"moved": await self.machine.skip_next()}
        elif cmd == "prev":
            self._acquire_output()
            return {"moved": await self.machine.skip_previous()}
        elif cmd == "jump":
            self._acquire_output()
            return {"moved": await self.machine.jump_to(int(data.get("index", 0)))}
        elif cmd == "retry":
            self.refresh_current_stream(data.get("stream_url"))
            self._acquire_output()
            await self.machine.load_current()
        elif cmd == "seek":
            if "delta" in data:
                ok = await self.machine.seek_by(float(data["delta"]))
            else:
                ok = await self.machine.seek(float(data.get("position", 0)))
            return {"seeked": ok, "elapsed": self.machine.elapsed}
        elif cmd == "stop":
            await self.machine.stop()
            self.arbiter.release(self.id)
            if self.publisher.delegate is self:
                await self.publisher.publish("stopped")
        elif cmd == "shuffle":
            self.queue.toggle_shuffle(bool(data.get("on", not self.queue.shuffle)))
            await self._queue_changed()
        elif cmd == "repeat":
            self.queue.set_repeat_mode(data.get("mode", "off"))
            await self._queue_changed()
        elif cmd == "media_event":
            await self.machine.handle_event(data.get("event", ""), data.get("data") or {})
        elif cmd == "revoke":
            log.info("%s: audio session taken by %s", self.name, data.get("owner"))
            await self.machine.detach()
        elif cmd == "tick":
            await self.machine.position()
        elif cmd == "status":
            return self.handle_status()
        else:
            result = await self.handle_extra_command(cmd, data)
            if result is None:
                raise PlaybackFailed(f"Unknown command: {cmd}")
            return result
        return None

    async def _commit_queue(self, data: dict) -> dict:
        if data.get("generation", self._generation) != self._generation:
            log.info("%s: dropping stale queue (generation %s, now %s)",
                     self.name, data.get("generation"), self._generation)
            return {"status": "cancelled"}
        # Validate before touching anything: set_queue raises on an unplayable queue
        self.queue.set_queue(data.get("songs") or (), int(data.get("start", 0)))
        self._acquire_output()
        await self.machine.load_current()
        await self._queue_changed()
        return {"queue_length": len(self.queue), "index": self.queue.index}

    def refresh_current_stream(self, url: str | None = None) -> None:
        """Rebuild the current song's stream URL (session tokens expire)."""
        song = self.queue.current
        if song is None:
            return
        url = url or self.adapter.stream_url(song)
        if url and url != song.stream_url:
            self.queue.replace_current(song.with_stream(url))

    async def _queue_changed(self):
        await self.broadcast("queue_changed", self.queue.snapshot().to_dict())
        if self.publisher.delegate is self:
            await self.publisher.publish("queue")

    # ── Audio session ──

    def owns_output(self) -> bool:
        return self.arbiter.owner == self.id

    def _acquire_output(self):
        self.arbiter.request(self.id)
        self.engine.set_listener(self._on_media_event)
        self.publisher.set_delegate(self)

    def _on_session_revoked(self, new_owner: str):
        self.post("revoke", {"owner": new_owner})

    async def _on_media_event(self, event: str, data: dict):
        self.post("media_event", {"event": event, "data": data})

    async def _on_state_change(self, previous: PlaybackState, state: PlaybackState):
        if state is PlaybackState.LOADING:
            self._started_song_id = None
        elif state is PlaybackState.PLAYING:
            song = self.machine.song
            if song is not None and song.id != self._started_song_id:
                self._started_song_id = song.id
                self._track(self._track_started(song))
        elif state is PlaybackState.FAILED:
            song = self.machine.song
            await self.broadcast("playback_failed", {
                "message": PlaybackFailed.user_message,
                "detail": self.machine.error,
                "song": song.to_dict() if song else None,
            })
        if self.publisher.delegate is self:
            await self.publisher.publish(state.value)

    async def _track_started(self, song):
        try:
            await self.on_track_started(song)
        except TapedeckError as e:
            log.warning("%s: track-start hook failed: %s", self.name, e)

    # ── Library (outside the mailbox, cancellable) ──

    def _track(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def cancel_pending(self) -> None:
        """Cancel in-flight library calls; stale queue commits are dropped."""
        self._generation += 1
        for task in list(self._pending):
            task.cancel()
        log.info("%s: cancelled pending work (generation %d)", self.name, self._generation)

    async def _with_reauth(self, fn, *args):
        if not self.adapter.authenticated:
            await self.adapter.authenticate()
        try:
            return await fn(*args)
        except AuthenticationFailed:
            raise
        except NotAuthenticated as e:
            log.info("%s: session rejected (%s), signing in again", self.name, e.message)
            await self.adapter.authenticate()
            return await fn(*args)

    async def library_call(self, fn, *args):
        """Run an adapter call as a tracked task, re-authenticating once."""
        return await self._track(self._with_reauth(fn, *args))

    async def browse(self, kind: str) -> list:
        listers = {
            "album": self.adapter.list_albums,
            "artist": self.adapter.list_artists,
            "playlist": self.adapter.list_playlists,
        }
        if kind not in listers:
            raise ValueError(f"Unknown library kind: {kind}")
        return await self.library_call(listers[kind])

    async def search(self, query: str):
        return await self.library_call(self.adapter.search, query)

    def _songs_fetcher(self, container, kind: str | None):
        if isinstance(container, UniversalAlbum) or kind == "album":
            return self.adapter.songs_for_album
        if isinstance(container, UniversalArtist) or kind == "artist":
            return self.adapter.songs_for_artist
        if isinstance(container, UniversalPlaylist) or kind == "playlist":
            return self.adapter.songs_for_playlist
        raise ValueError(f"Cannot load songs for {container!r}")

    async def load_container(self, container, start_index: int = 0,
                             kind: str | None = None) -> dict:
        """Resolve a container's songs and make them the queue.

        The queue only changes when the whole song list resolved; on failure
        the previous queue keeps playing.
        """
        generation = self._generation
        fetch = self._songs_fetcher(container, kind)
        task = self._track(self._with_reauth(fetch, container))
        try:
            songs = await task
        except asyncio.CancelledError:
            if task.cancelled() and generation != self._generation:
                return {"status": "cancelled"}
            raise
        except TapedeckError as e:
            log.warning("%s: could not load songs: %s", self.name, e.message)
            return error_result(e)

        if not songs:
            label = getattr(container, "name", container)
            await self.broadcast("no_songs", {"container": label})
            return {"status": "empty", "message": EntityNotFound.user_message}
        return await self.play_songs(songs, start_index, generation=generation)

    async def play_songs(self, songs, start_index: int = 0, generation: int | None = None) -> dict:
        return await self.dispatch("set_queue", {
            "songs": tuple(songs),
            "start": start_index,
            "generation": self._generation if generation is None else generation,
        })

    # ── Snapshot / status ──

    def now_playing(self) -> NowPlayingSnapshot | None:
        song = self.queue.current
        if song is None:
            return None
        machine = self.machine
        total = machine.duration if machine.song is not None and machine.song.id == song.id else song.duration
        return NowPlayingSnapshot(
            song=song,
            queue_position=self.queue.index,
            queue_length=len(self.queue),
            elapsed=machine.elapsed,
            total=max(1.0, total),
            is_playing=machine.is_playing,
            state=machine.state.value,
            source=self.id,
            queue_elapsed=self.queue.elapsed_duration(machine.elapsed),
            queue_total=self.queue.total_duration(),
            shuffle=self.queue.shuffle,
            repeat=self.queue.repeat.value,
            error=machine.error,
        )

    def handle_status(self) -> dict:
        current = self.queue.current
        return {
            "source": self.id,
            "name": self.name,
            "authenticated": self.adapter.authenticated,
            "owns_output": self.owns_output(),
            "state": self.machine.state.value,
            "queue_length": len(self.queue),
            "index": self.queue.index,
            "song": current.to_dict() if current else None,
        }

    async def broadcast(self, event_type: str, data: dict):
        """Push a service event to UI clients through the publisher."""
        await self.publisher.broadcast(event_type, {"source": self.id, **data})

    # ── Subclass hooks (override as needed) ──

    async def on_start(self):
        """Called after the mailbox is running."""

    async def on_stop(self):
        """Called during shutdown."""

    async def on_track_started(self, song):
        """A song started playing."""

    async def handle_extra_command(self, cmd: str, data: dict) -> dict | None:
        """Commands the base does not handle.  Return None if unknown."""
        return None
