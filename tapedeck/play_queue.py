# Tapedeck
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
The play queue: one ordered list of songs, a position, shuffle and repeat.

The queue does not care which backend the songs came from.  All methods are
synchronous, so on the event loop each call is atomic; the owning playback
service makes sure only its mailbox task calls the mutators.

Invariants:
  - when non-empty, 0 <= index < len(active)
  - shuffle on/off never changes which song is current
  - shuffle off restores the exact pre-shuffle order
  - the current song always has a stream URL (unplayable songs are skipped)
"""

import logging
import random
from dataclasses import dataclass
from enum import Enum

from tapedeck.errors import PlaybackFailed
from tapedeck.models import UniversalSong

logger = logging.getLogger(__name__)

# Used for the total when no song reports a duration
FALLBACK_SONG_DURATION = 180


class RepeatMode(str, Enum):
    OFF = "off"
    ALL = "all"
    ONE = "one"


@dataclass(frozen=True)
class QueueSnapshot:
    songs: tuple
    index: int
    shuffle: bool
    repeat: RepeatMode

    @property
    def current(self) -> UniversalSong | None:
        if not self.songs:
            return None
        return self.songs[self.index]

    def to_dict(self) -> dict:
        return {
            "songs": [s.to_dict() for s in self.songs],
            "index": self.index,
            "shuffle": self.shuffle,
            "repeat": self.repeat.value,
        }


class QueueManager:
    def __init__(self, rng: random.Random | None = None):
        self._rng = rng or random.Random()
        self.active: tuple = ()
        self.original: tuple = ()
        self.index = 0
        self.shuffle = False
        self.repeat = RepeatMode.OFF
        self._saved_index = 0

    # ── Reads ──

    @property
    def current(self) -> UniversalSong | None:
        if not self.active:
            return None
        return self.active[self.index]

    def __len__(self):
        return len(self.active)

    def snapshot(self) -> QueueSnapshot:
        return QueueSnapshot(self.active, self.index, self.shuffle, self.repeat)

    def total_duration(self) -> float:
        total = sum(s.duration for s in self.active)
        if total == 0 and self.active:
            return float(len(self.active) * FALLBACK_SONG_DURATION)
        return total

    def elapsed_duration(self, position: float = 0.0) -> float:
        """Seconds from the start of the queue to *position* in the current song."""
        if not self.active:
            return 0.0
        return sum(s.duration for s in self.active[:self.index]) + max(0.0, position)

    # ── Mutations ──

    def set_queue(self, songs, start_index: int = 0) -> UniversalSong:
        """Replace the queue.  Raises PlaybackFailed if nothing is playable."""
        songs = tuple(songs)
        if not songs:
            raise PlaybackFailed("Cannot start an empty queue")
        start = max(0, min(start_index, len(songs) - 1))
        if not songs[start].playable:
            alt = self._find_playable(songs, start)
            if alt is None:
                raise PlaybackFailed("No song in this queue has a stream URL")
            logger.info("Song %d is not playable, starting at %d", start, alt)
            start = alt

        self.original = songs
        self.active = songs
        self.index = start
        self._saved_index = start
        if self.shuffle:
            self._shuffle_active()
        logger.info("Queue set: %d songs, starting at %d (shuffle=%s)",
                    len(songs), self.index, self.shuffle)
        return self.current

    def clear(self):
        self.active = ()
        self.original = ()
        self.index = 0
        self._saved_index = 0

    def toggle_shuffle(self, on: bool):
        if on == self.shuffle:
            return
        self.shuffle = on
        if not self.active:
            return
        if on:
            self.original = self.active
            self._saved_index = self.index
            self._shuffle_active()
        else:
            playing = self.current
            self.active = self.original
            self.index = self._locate(playing)
        logger.info("Shuffle: %s", "on" if on else "off")

    def set_repeat_mode(self, mode):
        self.repeat = RepeatMode(mode)
        logger.info("Repeat: %s", self.repeat.value)

    def advance(self) -> bool:
        """End of track.  Returns True if something should (re)start playing."""
        if not self.active:
            return False
        if self.repeat is RepeatMode.ONE:
            return True
        return self._forward()

    def skip_next(self) -> bool:
        if not self.active:
            return False
        return self._forward()

    def skip_previous(self) -> bool:
        if not self.active:
            return False
        prev = self._step_playable(self.index, -1)
        if prev is None:
            return False
        self.index = prev
        return True

    def replace_current(self, song: UniversalSong) -> None:
        """Swap in a new view of the current song (same identity)."""
        current = self.current
        if current is None or current.id != song.id:
            raise ValueError("replace_current() must keep the current song")
        self.active = self.active[:self.index] + (song,) + self.active[self.index + 1:]
        self.original = tuple(song if s.id == song.id else s for s in self.original)

    def jump_to(self, index: int) -> bool:
        """Move to *index* in the active order if that song is playable."""
        if not 0 <= index < len(self.active) or not self.active[index].playable:
            return False
        self.index = index
        return True

    # ── Internals ──

    def _forward(self) -> bool:
        nxt = self._step_playable(self.index, 1)
        if nxt is not None:
            self.index = nxt
            return True
        if self.repeat is RepeatMode.ALL:
            first = self._step_playable(-1, 1)
            if first is not None:
                self.index = first
                return True
        return False

    def _step_playable(self, start: int, step: int) -> int | None:
        i = start + step
        while 0 <= i < len(self.active):
            if self.active[i].playable:
                return i
            i += step
        return None

    @staticmethod
    def _find_playable(songs, start: int) -> int | None:
        for i in list(range(start, len(songs))) + list(range(0, start)):
            if songs[i].playable:
                return i
        return None

    def _shuffle_active(self):
        playing = self.active[self.index]
        rest = list(self.active[:self.index] + self.active[self.index + 1:])
        self._rng.shuffle(rest)
        self.active = (playing, *rest)
        self.index = 0

    def _locate(self, song: UniversalSong | None) -> int:
        if song is not None:
            for i, s in enumerate(self.original):
                if s.id == song.id:
                    return i
        return max(0, min(self._saved_index, len(self.original) - 1))
