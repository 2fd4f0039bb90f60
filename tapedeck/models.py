# Tapedeck
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Universal media model shared by every backend.

Adapters turn backend responses into these values; everything downstream
(queue, playback, now-playing) only ever sees them.  All values are frozen:
a changed view (e.g. a song with a freshly resolved artwork URL) is a new
value built with ``dataclasses.replace``.

Synthetic identity:

    synthetic_id("Imagine Dragons", "Night Visions")
        → "imagine_dragons_night_visions"

Case and whitespace never change the result.  Two different albums that
share an artist and title collide; backends without real IDs accept that.
"""

from dataclasses import dataclass, field, replace
from typing import Any

# Backend tags
SUBSONIC = "subsonic"
AUDIO_STATION = "audiostation"
LOCAL = "local"

BACKENDS = (SUBSONIC, AUDIO_STATION, LOCAL)

UNKNOWN_ARTIST = "Unknown Artist"
UNKNOWN_ALBUM = "Unknown Album"


def normalize_name(text: str | None) -> str:
    """Casefold and collapse runs of whitespace."""
    if not text:
        return ""
    return " ".join(text.split()).casefold()


def synthetic_id(artist: str | None, title: str | None = None) -> str:
    """Deterministic identity for entities the backend gives no ID for."""
    parts = [normalize_name(artist)]
    if title is not None:
        parts.append(normalize_name(title))
    return "_".join(parts).replace(" ", "_")


def _clamp_duration(value) -> float:
    try:
        seconds = float(value or 0)
    except (TypeError, ValueError):
        return 0.0
    return seconds if seconds > 0 else 0.0


@dataclass(frozen=True)
class UniversalSong:
    id: str
    title: str
    artist: str = UNKNOWN_ARTIST
    album: str | None = None
    duration: float = 0.0
    track_number: int | None = None
    artwork_url: str | None = None
    stream_url: str | None = None
    source: str = ""
    native: Any = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, "duration", _clamp_duration(self.duration))

    @property
    def playable(self) -> bool:
        return bool(self.stream_url)

    def with_artwork(self, url: str | None) -> "UniversalSong":
        return replace(self, artwork_url=url)

    def with_stream(self, url: str | None) -> "UniversalSong":
        return replace(self, stream_url=url)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "artist": self.artist,
            "album": self.album,
            "duration": self.duration,
            "track_number": self.track_number,
            "artwork_url": self.artwork_url,
            "source": self.source,
            "playable": self.playable,
        }


@dataclass(frozen=True)
class _Container:
    """Fields shared by albums, playlists and artists."""

    id: str
    name: str
    subtitle: str = ""
    songs: tuple = ()
    song_count: int = 0
    duration: float = 0.0
    artwork_url: str | None = None
    source: str = ""
    native: Any = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, "songs", tuple(self.songs))
        object.__setattr__(self, "duration", _clamp_duration(self.duration))
        if self.songs and not self.song_count:
            object.__setattr__(self, "song_count", len(self.songs))

    def with_songs(self, songs):
        """Return a copy holding *songs*, with aggregates recomputed."""
        songs = tuple(songs)
        return replace(
            self,
            songs=songs,
            song_count=len(songs),
            duration=sum(s.duration for s in songs),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "subtitle": self.subtitle,
            "song_count": self.song_count,
            "duration": self.duration,
            "artwork_url": self.artwork_url,
            "source": self.source,
        }


@dataclass(frozen=True)
class UniversalAlbum(_Container):
    year: int | None = None
    genre: str | None = None

    @property
    def artist(self) -> str:
        return self.subtitle


@dataclass(frozen=True)
class UniversalPlaylist(_Container):

    @property
    def curator(self) -> str:
        return self.subtitle


@dataclass(frozen=True)
class UniversalArtist(_Container):
    album_count: int = 0

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["album_count"] = self.album_count
        return d


@dataclass(frozen=True)
class SearchResults:
    songs: tuple = ()
    albums: tuple = ()
    artists: tuple = ()

    def __post_init__(self):
        for name in ("songs", "albums", "artists"):
            object.__setattr__(self, name, tuple(getattr(self, name)))

    @property
    def empty(self) -> bool:
        return not (self.songs or self.albums or self.artists)

    def to_dict(self) -> dict:
        return {
            "songs": [s.to_dict() for s in self.songs],
            "albums": [a.to_dict() for a in self.albums],
            "artists": [a.to_dict() for a in self.artists],
        }
