# Tapedeck
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Playback state machine.

    Idle ─load→ Loading ─ready→ Ready ─autoplay→ Playing ⇄ Paused
                   │                               │
                   └─error→ Failed                 └─end→ Finished
    any ─stop→ Stopped

On Finished the machine asks the queue to advance and loads the next song,
or stays Finished when the queue is done.  On Failed it does nothing else:
the queue index stays where it is until the user skips or retries.

The machine drives the shared media engine only while *attached*.  It
attaches when it loads a song and detaches when another backend takes the
audio session (``detach()``); a detached machine never touches the engine
again until it loads something itself.  Engine events carry the token of
the load that produced them; events for any other token are ignored.

Not thread-safe and not re-entrant: the owning playback service calls it
from one task.
"""

import logging
from enum import Enum

from tapedeck.lib.media_engine import MediaEngine
from tapedeck.play_queue import QueueManager

logger = logging.getLogger(__name__)


class PlaybackState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    PLAYING = "playing"
    PAUSED = "paused"
    FINISHED = "finished"
    FAILED = "failed"
    STOPPED = "stopped"


SEEKABLE = (PlaybackState.READY, PlaybackState.PLAYING, PlaybackState.PAUSED)
ACTIVE = (PlaybackState.LOADING, PlaybackState.READY, PlaybackState.PLAYING)


class PlaybackMachine:
    def __init__(self, queue: QueueManager, engine: MediaEngine,
                 on_change=None, autoplay: bool = True, owns_output=None):
        self.queue = queue
        self.engine = engine
        self.autoplay = autoplay
        self.state = PlaybackState.IDLE
        self.song = None
        self.duration = 0.0
        self.error: str | None = None
        self._on_change = on_change
        self._owns_output = owns_output
        self._token = None
        self._attached = False
        self._position = 0.0
        self._resume_at = 0.0

    @property
    def is_playing(self) -> bool:
        return self.state is PlaybackState.PLAYING

    @property
    def attached(self) -> bool:
        if self._owns_output is not None and not self._owns_output():
            return False
        return self._attached

    async def _set_state(self, state: PlaybackState):
        previous = self.state
        if previous is state:
            return
        self.state = state
        logger.info("Playback: %s -> %s", previous.value, state.value)
        if self._on_change:
            await self._on_change(previous, state)

    # ── Loading ──

    async def load_current(self, resume_at: float = 0.0):
        """Load the queue's current song.  Completion arrives as a ready/error event."""
        song = self.queue.current
        if song is None:
            await self.stop()
            return
        self.song = song
        self.duration = song.duration
        self.error = None
        self._position = 0.0
        self._resume_at = resume_at
        if not song.playable:
            self.error = f"'{song.title}' has no stream URL"
            await self._set_state(PlaybackState.FAILED)
            return
        self._attached = True
        await self._set_state(PlaybackState.LOADING)
        # The ready event may already be queued when load() returns; it is
        # matched against this token when processed.
        self._token = await self.engine.load(song.stream_url)

    async def handle_event(self, event: str, data: dict):
        if not self.attached or data.get("token") != self._token:
            logger.debug("Ignoring stale media event %s", event)
            return
        if event == "ready":
            await self._on_ready(data)
        elif event == "error":
            await self._on_error(data)
        elif event == "end":
            await self._on_end()

    async def _on_ready(self, data):
        if self.state is not PlaybackState.LOADING:
            return
        duration = data.get("duration") or 0.0
        if duration > 0:
            self.duration = float(duration)
        await self._set_state(PlaybackState.READY)
        if self._resume_at > 0:
            await self.seek(self._resume_at)
            self._resume_at = 0.0
        if self.autoplay:
            await self.engine.play()
            await self._set_state(PlaybackState.PLAYING)

    async def _on_error(self, data):
        if self.state not in (*ACTIVE, PlaybackState.PAUSED):
            return
        self.error = data.get("message") or "media engine error"
        logger.warning("Playback failed for '%s': %s",
                       self.song.title if self.song else "?", self.error)
        await self._set_state(PlaybackState.FAILED)

    async def _on_end(self):
        if self.state is not PlaybackState.PLAYING:
            return
        self._position = self.duration
        await self._set_state(PlaybackState.FINISHED)
        if self.queue.advance():
            await self.load_current()
        else:
            logger.info("End of queue")

    # ── Transport ──

    async def play(self):
        """Start or resume.  Reloads the current song when nothing is loaded."""
        if self.attached:
            if self.state in (PlaybackState.PAUSED, PlaybackState.READY):
                await self.engine.play()
                await self._set_state(PlaybackState.PLAYING)
                return
            if self.state in (PlaybackState.PLAYING, PlaybackState.LOADING):
                return
        if self.queue.current is not None:
            resume = self._position if self.state is PlaybackState.PAUSED else 0.0
            await self.load_current(resume_at=resume)

    async def pause(self):
        if self.state is not PlaybackState.PLAYING:
            return
        if self.attached:
            self._position = await self.engine.position()
            await self.engine.pause()
        await self._set_state(PlaybackState.PAUSED)

    async def toggle(self):
        if self.state is PlaybackState.PLAYING:
            await self.pause()
        else:
            await self.play()

    async def seek(self, seconds: float) -> bool:
        if self.state not in SEEKABLE or not self.attached:
            return False
        upper = self.duration if self.duration > 0 else max(0.0, float(seconds))
        target = max(0.0, min(float(seconds), upper))
        await self.engine.seek(target)
        self._position = target
        return True

    async def seek_by(self, delta: float) -> bool:
        return await self.seek(await self.position() + delta)

    async def stop(self):
        if self.attached:
            await self.engine.stop()
        self._attached = False
        self._token = None
        await self._set_state(PlaybackState.STOPPED)

    async def skip_next(self) -> bool:
        if self.queue.skip_next():
            await self.load_current()
            return True
        if self.queue.current is not None:
            if self.attached:
                await self.engine.stop()
            self._attached = False
            self._token = None
            await self._set_state(PlaybackState.FINISHED)
        return False

    async def skip_previous(self) -> bool:
        if self.queue.skip_previous():
            await self.load_current()
            return True
        return False

    async def jump_to(self, index: int) -> bool:
        if self.queue.jump_to(index):
            await self.load_current()
            return True
        return False

    async def detach(self):
        """Another backend took the audio session: let go of the engine."""
        if not self._attached:
            return
        self._attached = False
        self._token = None
        if self.state in ACTIVE:
            await self._set_state(PlaybackState.PAUSED)

    # ── Reads ──

    async def position(self) -> float:
        if self.attached and self.state in SEEKABLE:
            self._position = await self.engine.position()
        return self.elapsed

    @property
    def elapsed(self) -> float:
        """Last known position, clamped to the song length."""
        if self.duration > 0:
            return max(0.0, min(self._position, self.duration))
        return max(0.0, self._position)
